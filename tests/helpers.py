"""
tests/helpers.py -- Constants and builders shared by several test modules.
"""

from __future__ import annotations

from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import AuthConfig

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
PASSWORD = "correct horse battery"


def make_user(store: UserStore, config: AuthConfig, **fields) -> User:
    """Insert a user whose password is PASSWORD and return the stored record."""
    fields.setdefault("username", "fred")
    fields.setdefault("email", f"{fields['username']}@example.com")
    fields.setdefault("role", "user")
    user = User(password_hash=hash_password(PASSWORD, config.crypto_mod), **fields)
    return store.get_by_id(store.create_user(user))


class SentMail:
    """Mailer double that records (to, kind, query) for each link issued."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def __call__(self, to: str, kind: str, query: str) -> None:
        self.sent.append((to, kind, query))
