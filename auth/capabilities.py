"""
auth/capabilities.py -- The token operations the auth pipeline depends on.

Authenticate, Login and Logout never call a JWT library themselves. They
receive an object implementing TokenCapabilities at construction time, which
keeps them independent of the signing scheme. auth.tokens.JwtCapabilities is
the production implementation; tests may pass any object with these methods.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TokenCapabilities(Protocol):
    def verify(self, token: str) -> dict[str, Any] | None:
        """Return the token's claims, or None if the token must be rejected."""
        ...

    def issue(self, claims: dict[str, Any]) -> str:
        """Return a new signed token carrying claims."""
        ...

    def invalidate(self, token: str) -> None:
        """Make token fail verification from now on."""
        ...
