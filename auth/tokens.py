"""
auth/tokens.py -- JWT issuance, verification and revocation.

Security design decisions:
  JWT: python-jose, HS512 by default or HS256 (AuthConfig.token_alg). Tokens
       carry the caller's claims (id, identifier, optional role) plus iat,
       nbf and exp as integer epoch seconds. nbf = now + nbf_delay and
       exp = nbf + validity.

  Verification returns None on any failure -- expired, not yet valid, bad
       signature, malformed or revoked all look the same to the caller, so
       a client cannot learn why its token was refused.

  Revocation: invalidate() adds the token to a RevokedTokenStore. The row
       keeps the token's exp so it can be purged once the token has expired
       anyway. A failed denylist write is logged, not raised.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError

from auth.store import RevokedTokenStore
from core.config import TOKEN_ALGORITHMS, AuthConfig

logger = logging.getLogger("tokengate.auth.tokens")

# Registered claims set by issue(); stripped from the identity handed to routes.
TIMESTAMP_CLAIMS = ("iat", "nbf", "exp")


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def generate_token(
    claims: dict[str, Any],
    secret_key: str,
    algorithm: str = "HS512",
    nbf_delay_minutes: int = 0,
    valid_minutes: int = 120,
) -> str:
    """Encode a signed JWT for claims.

    Args:
        claims:            Identity claims (id, username, role...).
        secret_key:        HMAC signing key.
        algorithm:         "HS512" or "HS256".
        nbf_delay_minutes: Minutes before the token becomes usable. Negative
                           values backdate the token.
        valid_minutes:     Lifetime counted from nbf.
    """
    if algorithm not in TOKEN_ALGORITHMS:
        raise ValueError(f"Unsupported token algorithm: {algorithm!r}")
    now = _now()
    nbf = now + nbf_delay_minutes * 60
    payload = {**claims, "iat": now, "nbf": nbf, "exp": nbf + valid_minutes * 60}
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_token(token: str, secret_key: str, algorithm: str = "HS512") -> dict[str, Any] | None:
    """Decode and verify a JWT. Returns the full payload or None on any failure."""
    try:
        return jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as exc:
        logger.debug("Token rejected: %s", exc.__class__.__name__)
        return None


class JwtCapabilities:
    """TokenCapabilities backed by python-jose and a revoked-token store."""

    def __init__(self, config: AuthConfig, revoked: RevokedTokenStore) -> None:
        self._config = config
        self._revoked = revoked

    def issue(self, claims: dict[str, Any]) -> str:
        return generate_token(
            claims,
            self._config.secret_key,
            algorithm=self._config.token_alg,
            valid_minutes=self._config.token_validity_minutes,
        )

    def verify(self, token: str) -> dict[str, Any] | None:
        payload = decode_token(token, self._config.secret_key, self._config.token_alg)
        if payload is None:
            return None
        try:
            revoked = self._revoked.contains(token)
        except SQLAlchemyError:
            # Fail closed: an unreachable denylist must not let a revoked token through.
            logger.exception("Revoked-token lookup failed; treating token as invalid")
            return None
        if revoked:
            logger.debug("Token rejected: revoked")
            return None
        return {k: v for k, v in payload.items() if k not in TIMESTAMP_CLAIMS}

    def invalidate(self, token: str) -> None:
        """Revoke token until its own expiry.

        The signature is not checked: a forged token gains nothing from being
        revoked. Undecodable tokens are ignored since they can never verify.
        A denylist write failure is logged, not raised: logout still clears
        the client side, and the token lapses at its own exp.
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return
        expires_at = claims.get("exp")
        if not isinstance(expires_at, int):
            expires_at = _now() + self._config.token_validity_minutes * 60
        try:
            self._revoked.add(token, expires_at)
        except SQLAlchemyError:
            logger.exception("Could not record revoked token")
