"""
auth/tools.py -- Small response helpers shared by the auth routes.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import RedirectResponse

from core.config import AuthConfig


def redirect_to_login(request: Request, config: AuthConfig) -> RedirectResponse:
    """Return a 301 to the configured login page on the request's host.

    The scheme is always http, whatever the request came in on. Deployments
    behind TLS termination rely on the proxy upgrading the redirect.
    """
    uri = f"http://{request.url.hostname}{config.login_page}"
    return RedirectResponse(uri, status_code=301)
