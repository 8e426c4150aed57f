"""
auth/loginout_check.py -- Route login/logout requests before authentication.

Dispatch is on the last non-empty path segment, so /login, /admin/login and
/login/ all count as login paths:

  "login"  + POST  -> Login's response; the route is never reached.
  "login"  + other -> current_user=None and auth_skip=True, then the route
                      (typically the login page) runs.
  "logout"         -> current_user=None, Logout's response.
  anything else    -> passed through untouched. Authenticate handles it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request, Response

Handler = Callable[[Request], Awaitable[Response]]


def last_segment(path: str) -> str | None:
    segments = [s for s in path.split("/") if s]
    return segments[-1] if segments else None


class LoginoutCheck:
    """Middleware dispatch for login/logout paths.

    Usage:
        check = LoginoutCheck(Login(config, store, caps), Logout(config, caps))
        app.add_middleware(BaseHTTPMiddleware, dispatch=check)
    """

    def __init__(self, login: Handler, logout: Handler) -> None:
        self._login = login
        self._logout = logout

    async def __call__(self, request: Request, call_next) -> Response:
        segment = last_segment(request.url.path)
        if segment == "login":
            if request.method == "POST":
                return await self._login(request)
            request.state.current_user = None
            request.state.auth_skip = True
            return await call_next(request)
        if segment == "logout":
            request.state.current_user = None
            return await self._logout(request)
        return await call_next(request)
