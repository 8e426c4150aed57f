"""
auth/pipeline.py -- Mount the auth middleware on a Starlette/FastAPI app.

Request order through the pipeline:
  1. LoginoutCheck -- answers POST .../login and .../logout itself, marks
     GET .../login as skipped, passes everything else on.
  2. Authenticate  -- sets request.state.current_user for the route.

Starlette wraps middleware so that the LAST one added is the OUTERMOST, so
Authenticate is added first and LoginoutCheck second.

AuthConfig.unique_id and hash_name are checked against the user store's
columns before anything is mounted. A value the store cannot serve fails
at startup rather than on every login or signup.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware

from auth.authenticate import Authenticate
from auth.capabilities import TokenCapabilities
from auth.login import Login
from auth.loginout_check import LoginoutCheck
from auth.logout import Logout
from auth.store import HASH_COLUMNS, LOGIN_ID_COLUMNS, UserStore
from core.config import AuthConfig


def check_store_fields(config: AuthConfig) -> None:
    """Raise ValueError if unique_id or hash_name is not a usable user column."""
    if config.unique_id not in LOGIN_ID_COLUMNS:
        raise ValueError(f"unique_id must be one of {sorted(LOGIN_ID_COLUMNS)}, got {config.unique_id!r}")
    if config.hash_name not in HASH_COLUMNS:
        raise ValueError(f"hash_name must be one of {sorted(HASH_COLUMNS)}, got {config.hash_name!r}")


def install_auth_pipeline(
    app: Starlette,
    config: AuthConfig,
    store: UserStore,
    capabilities: TokenCapabilities,
) -> LoginoutCheck:
    """Add Authenticate and LoginoutCheck to app. Returns the router for inspection."""
    check_store_fields(config)
    authenticate = Authenticate(capabilities)
    check = LoginoutCheck(Login(config, store, capabilities), Logout(config, capabilities))
    app.add_middleware(BaseHTTPMiddleware, dispatch=authenticate.dispatch)
    app.add_middleware(BaseHTTPMiddleware, dispatch=check)
    return check
