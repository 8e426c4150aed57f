"""
auth/logout.py -- End the session of the presented token.

The token (cookie first, then Bearer header) is revoked so it cannot be
used again even though it has not expired. In cookie mode the cookie is
deleted as well; in client mode the client must drop its own copy, the
server has no say over it.

Revocation failures are handled by the capabilities object, so the user
always gets a cleared identity and cookie.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from fastapi import Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.authenticate import COOKIE_NAME, extract_token
from auth.capabilities import TokenCapabilities
from core.config import AuthConfig

LOGOUT_MESSAGE = "You have been logged out"


class Logout:
    def __init__(self, config: AuthConfig, capabilities: TokenCapabilities) -> None:
        self._config = config
        self._capabilities = capabilities

    async def __call__(self, request: Request) -> Response:
        token = extract_token(request)
        if token:
            await run_in_threadpool(self._capabilities.invalidate, token)
        request.state.current_user = None

        if self._config.redirects:
            resp: Response = RedirectResponse(self._config.redirect_pages["logout"], status_code=303)
        else:
            resp = JSONResponse({"message": LOGOUT_MESSAGE})
        if self._config.use_cookie:
            resp.delete_cookie(COOKIE_NAME)
        return resp
