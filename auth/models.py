"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
signup helpers do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass
class User:
    """A user account that can log in through the auth pipeline.

    Either username or email identifies the user at login; which one is
    chosen by AuthConfig.unique_id.

    password_hash is None until a password has been set.
    confirmation_* fields back the email confirmation flow; reset_* fields
    back the password reset flow. All timestamps are ISO 8601 UTC strings.
    """

    username: str | None = None
    email: str | None = None
    role: str = "user"
    id: int | None = None
    password_hash: str | None = None
    confirmation_token: str | None = None
    confirmation_sent_at: str | None = None
    confirmed_at: str | None = None
    reset_token: str | None = None
    reset_sent_at: str | None = None
    created_at: str | None = None


USER_FIELDS: frozenset[str] = frozenset(f.name for f in fields(User))
