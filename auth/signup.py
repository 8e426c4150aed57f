"""
auth/signup.py -- Helpers for creating users and running confirm/reset flows.

User creation:
    cs = Changeset(User()).cast(params, ["username", "email"])
    cs = create_user(cs, params, config, min_length=12)
    if cs.valid:
        key, link = gen_token_link(cs.get_change("email"))
        add_confirm_token(cs, key)
        store.create_user(cs.apply())

The password itself is a virtual field. Only its hash, written to
AuthConfig.hash_name, ever reaches the store.

Token links:
  gen_token_link() draws 24 bytes from the secrets module (never the random
  module) and returns (key, query_string). The key is staged on the user with
  add_confirm_token() / add_reset_token() and checked later with
  verify_link_token(), in constant time and within key_expiry_minutes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import quote_plus

from auth.changeset import Changeset
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import AuthConfig

logger = logging.getLogger("tokengate.auth.signup")

TOKEN_BYTES = 24
_LINK_KINDS = ("confirmation", "reset")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Password staging
# ---------------------------------------------------------------------------


def create_user(
    changeset: Changeset,
    params: dict,
    config: AuthConfig,
    min_length: int | None = None,
    max_length: int | None = None,
) -> Changeset:
    """Stage and validate the password, then stage its hash.

    Length bounds default to AuthConfig.min_length / max_length (8 and 80).
    The hash is only computed when the changeset is valid and a password was
    supplied; otherwise the hash field is left as it was.
    """
    min_len = config.min_length if min_length is None else min_length
    max_len = config.max_length if max_length is None else max_length
    changeset.cast(params, ["password"]).validate_length("password", min=min_len, max=max_len)
    return put_pass_hash(changeset, config)


def put_pass_hash(changeset: Changeset, config: AuthConfig) -> Changeset:
    password = changeset.get_change("password")
    if changeset.valid and password:
        changeset.put_change(config.hash_name, hash_password(password, config.crypto_mod))
    return changeset


def add_confirm_token(changeset: Changeset, key: str) -> Changeset:
    """Stage a confirmation key and the time it was sent."""
    return changeset.put_change("confirmation_token", key).put_change("confirmation_sent_at", _now_iso())


def add_reset_token(changeset: Changeset, key: str) -> Changeset:
    """Stage a password-reset key and the time it was sent."""
    return changeset.put_change("reset_token", key).put_change("reset_sent_at", _now_iso())


# ---------------------------------------------------------------------------
# Store-backed flows
# ---------------------------------------------------------------------------


def reset_password(store: UserStore, user: User, password: str, config: AuthConfig) -> User:
    """Write the new password hash and clear the reset key in one transaction.

    Both updates commit together or not at all. Raises StoreError (or its
    subclass RecordNotFound) if either step fails; nothing is committed then.
    """
    new_hash = hash_password(password, config.crypto_mod)
    with store.transaction() as tx:
        user = tx.update_or_fail(user, **{config.hash_name: new_hash})
        user = tx.update_or_fail(user, reset_token=None, reset_sent_at=None)
    logger.info("Password reset for user id=%s", user.id)
    return user


def confirm_email(store: UserStore, user: User) -> User:
    """Mark the user's email as confirmed and retire the confirmation key."""
    return store.update_or_fail(
        user,
        confirmed_at=_now_iso(),
        confirmation_token=None,
        confirmation_sent_at=None,
    )


# ---------------------------------------------------------------------------
# Token links
# ---------------------------------------------------------------------------


def gen_token_link(user_id: str, unique_id: str = "email") -> tuple[str, str]:
    """Return (key, query_string) for a confirmation or reset link.

    user_id is the identifier value (e.g. the email address) and unique_id
    names it in the link, e.g. unique_id="username" gives "username=fred&key=...".
    """
    key = base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii")
    return key, f"{unique_id}={quote_plus(user_id)}&key={key}"


def verify_link_token(user: User, key: str, kind: str = "confirmation", max_age_minutes: int = 60) -> bool:
    """Return True if key matches the user's staged key and is not stale.

    kind is "confirmation" or "reset".
    """
    if kind not in _LINK_KINDS:
        raise ValueError(f"kind must be one of {_LINK_KINDS}")
    stored = getattr(user, f"{kind}_token")
    sent_at = getattr(user, f"{kind}_sent_at")
    if not stored or not sent_at or not key:
        return False
    if not hmac.compare_digest(stored.encode("utf-8"), key.encode("utf-8")):
        return False
    age = datetime.now(timezone.utc) - datetime.fromisoformat(sent_at)
    return age <= timedelta(minutes=max_age_minutes)
