"""
auth/login.py -- Credential check and token issuance for POST .../login.

LoginoutCheck only hands POST requests to Login; every other method on a
login path is passed through to the route that renders the login page.

Credentials are read from a JSON body or a form body:
    {"<unique_id>": "...", "password": "..."}
unique_id comes from AuthConfig (default "username").

Security:
  [C1] Timing equalization. The password is always run through the hash
       function, against a dummy hash when the user does not exist, so
       response time does not reveal whether an identifier is registered.
  Wrong identifier and wrong password produce the same "bad_credentials"
  response.
  [M5] Cache-Control: no-store on every login response.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.authenticate import COOKIE_NAME
from auth.capabilities import TokenCapabilities
from auth.models import User
from auth.passwords import hash_password, verify_password
from auth.store import UserStore
from core.config import AuthConfig

logger = logging.getLogger("tokengate.auth.login")


def set_auth_cookie(response: Response, token: str, config: AuthConfig) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token validity so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=config.secure_cookies,
        max_age=config.token_validity_minutes * 60,
    )


async def _read_credentials(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return dict(form)


class Login:
    """Handle a login POST and return the response to send.

    Usage:
        login = Login(config, user_store, capabilities)
        response = await login(request)
    """

    def __init__(self, config: AuthConfig, store: UserStore, capabilities: TokenCapabilities) -> None:
        self._config = config
        self._store = store
        self._capabilities = capabilities
        # Computed once so the first failed login is not measurably slower [C1].
        self._dummy_hash = hash_password("tokengate_timing_dummy", config.crypto_mod)

    def authenticate_user(self, identifier: str, password: str) -> User | None:
        """Return the user whose stored hash matches password, or None."""
        user = self._store.get_by(self._config.unique_id, identifier)
        stored_hash = getattr(user, self._config.hash_name, None) if user is not None else None
        if stored_hash is None:
            # Equalize timing -- do NOT return before hashing [C1]
            verify_password(password, self._dummy_hash)
            return None
        if not verify_password(password, stored_hash):
            return None
        return user

    async def __call__(self, request: Request) -> Response:
        request.state.current_user = None
        credentials = await _read_credentials(request)
        identifier = credentials.get(self._config.unique_id)
        password = credentials.get("password")

        user = None
        if isinstance(identifier, str) and isinstance(password, str) and identifier and password:
            user = await run_in_threadpool(self.authenticate_user, identifier, password)
        if user is None:
            logger.info("Login failed for %s=%r", self._config.unique_id, identifier)
            return self._failure()

        claims = {"id": user.id, self._config.unique_id: getattr(user, self._config.unique_id), "role": user.role}
        token = self._capabilities.issue(claims)
        logger.info("Login succeeded for user id=%s", user.id)
        return self._success(user, token)

    def _success(self, user: User, token: str) -> Response:
        config = self._config
        if not config.use_cookie:
            resp: Response = JSONResponse(
                {"access_token": token, "token_type": "bearer", "expires_in": config.token_validity_minutes * 60}
            )
        elif config.redirects:
            target = config.redirect_pages.get(user.role, config.redirect_pages["default"])
            resp = RedirectResponse(target, status_code=303)
            set_auth_cookie(resp, token, config)
        else:
            resp = JSONResponse(
                {
                    "message": "Login successful",
                    config.unique_id: getattr(user, config.unique_id),
                    "role": user.role,
                }
            )
            set_auth_cookie(resp, token, config)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    def _failure(self) -> Response:
        if self._config.redirects:
            resp: Response = RedirectResponse(f"{self._config.login_page}?error=bad_credentials", status_code=303)
        else:
            resp = JSONResponse(
                status_code=401,
                content={"error": {"code": "bad_credentials", "message": "Invalid credentials."}},
            )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
