"""
auth/authenticate.py -- Attach the caller's identity to every request.

Two token locations are checked in priority order:
  1. "access_token" cookie -- set by the login response in cookie mode.
  2. Authorization: Bearer <token> header -- clients that keep the token
     themselves (client storage mode).

The verified claims land in request.state.current_user; anything else
(no token, expired, not yet valid, bad signature, revoked) leaves None.
Downstream handlers cannot tell these cases apart, and neither can the client.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from auth.capabilities import TokenCapabilities

COOKIE_NAME = "access_token"
_BEARER_PREFIX = "Bearer "


def extract_token(request: Request) -> str | None:
    """Return the token from the access_token cookie, else the Bearer header."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith(_BEARER_PREFIX):
        return auth_header[len(_BEARER_PREFIX) :] or None
    return None


class Authenticate:
    """Middleware step that sets request.state.current_user.

    Usage:
        authenticate = Authenticate(capabilities)
        app.add_middleware(BaseHTTPMiddleware, dispatch=authenticate.dispatch)
    """

    def __init__(self, capabilities: TokenCapabilities) -> None:
        self._capabilities = capabilities

    def authenticate(self, request: Request) -> Request:
        """Annotate request with the verified identity, or None. Never raises."""
        if getattr(request.state, "auth_skip", False):
            return request
        token = extract_token(request)
        request.state.current_user = self._capabilities.verify(token) if token else None
        return request

    async def dispatch(self, request: Request, call_next):
        return await call_next(await run_in_threadpool(self.authenticate, request))
