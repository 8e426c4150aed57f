"""
auth/passwords.py -- Password hashing for the configured crypto module.

Two hash functions are supported, selected by AuthConfig.crypto_mod:

  bcrypt -- the default. Used directly, without a passlib wrapper.
  pbkdf2 -- PBKDF2-HMAC-SHA512 through passlib, for deployments that cannot
            ship the bcrypt wheel. Stored in passlib's
            $pbkdf2-sha512$<rounds>$<salt>$<checksum> format.

verify_password() lets passlib identify the scheme of the stored hash, so a
deployment can switch crypto_mod without invalidating existing passwords.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt
from passlib.context import CryptContext

PBKDF2_ROUNDS = 160_000

pbkdf2_context = CryptContext(schemes=["pbkdf2_sha512"], pbkdf2_sha512__rounds=PBKDF2_ROUNDS)

# bcrypt only uses the first 72 bytes; bcrypt >= 4.1 rejects longer input.
_BCRYPT_MAX_BYTES = 72


def hash_password(plain: str, crypto_mod: str = "bcrypt") -> str:
    """Return a salted hash of the plaintext password."""
    if crypto_mod == "bcrypt":
        return bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt()).decode("utf-8")
    if crypto_mod == "pbkdf2":
        return pbkdf2_context.hash(plain)
    raise ValueError(f"Unsupported crypto_mod: {crypto_mod!r}")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the stored hash.

    Malformed hashes never verify.
    """
    try:
        if pbkdf2_context.identify(hashed):
            return pbkdf2_context.verify(plain, hashed)
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        return False
