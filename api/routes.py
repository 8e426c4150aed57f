"""
api/routes.py -- HTTP endpoints around the auth pipeline.

POST /login and every /logout request never reach this router: the
LoginoutCheck middleware answers them. The routes here cover what the
pipeline leaves to the application.

Routes:
  GET  /login                          -- login page stub (auth skipped)
  GET  /account                        -- 301 to the login page when anonymous
  GET  /api/v1/me                      -- verified claims (requires auth)
  GET  /api/v1/admin                   -- admin-only probe (requires role=admin)
  POST /api/v1/users                   -- signup; sends a confirmation link
  GET  /api/v1/confirm                 -- confirm an email with ?email=&key=
  POST /api/v1/password-reset/request  -- send a reset link (always 202)
  POST /api/v1/password-reset          -- set a new password with a reset key

Security:
  [H2] signup and reset endpoints are rate limited (SIGNUP_RATE_LIMIT).
  The reset request answers 202 whether or not the email is registered, so
  it cannot be used to enumerate accounts.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    ResetRequest,
    SignupRequest,
    SignupResponse,
)
from auth.changeset import Changeset
from auth.dependencies import get_current_user, require_role, try_get_current_user
from auth.errors import StoreError
from auth.models import User
from auth.signup import (
    add_confirm_token,
    add_reset_token,
    confirm_email,
    create_user,
    gen_token_link,
    reset_password,
    verify_link_token,
)
from auth.store import UserStore
from auth.tools import redirect_to_login
from core.config import AuthConfig, get_settings

logger = logging.getLogger("tokengate.api.routes")

router = APIRouter()


def _signup_limit() -> str:
    return get_settings().signup_rate_limit


def _validation_error(errors: dict[str, list[str]]) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(code="validation_error", message="Request validation failed.", fields=errors)
        ).model_dump(exclude_none=True),
    )


def _invalid_key() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "invalid_key", "message": "The link is invalid or has expired."},
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/login", include_in_schema=False)
def login_page(request: Request, error: str | None = None) -> dict:
    """Placeholder for the login form. POST to the same path to log in."""
    config: AuthConfig = request.app.state.auth_config
    return {"message": "Please log in", "fields": [config.unique_id, "password"], "error": error}


@router.get("/account", include_in_schema=False)
def account(request: Request):
    user = try_get_current_user(request)
    if user is None:
        return redirect_to_login(request, request.app.state.auth_config)
    return {"user": user}


@router.get("/api/v1/me", response_model=MeResponse, tags=["Auth"])
def me(user: dict = Depends(get_current_user)) -> dict:
    """Return the claims of the verified token."""
    return user


@router.get("/api/v1/admin", response_model=MessageResponse, tags=["Auth"])
def admin_probe(user: dict = Depends(require_role("admin"))) -> MessageResponse:
    return MessageResponse(message=f"Welcome, user {user['id']}")


# ---------------------------------------------------------------------------
# Signup and confirmation
# ---------------------------------------------------------------------------


@limiter.limit(_signup_limit)
@router.post("/api/v1/users", status_code=201, response_model=SignupResponse, tags=["Signup"])
def signup(request: Request, body: SignupRequest):
    """Create an unconfirmed user and send the confirmation link."""
    config: AuthConfig = request.app.state.auth_config
    store: UserStore = request.app.state.user_store

    if store.get_by("username", body.username) or store.get_by("email", body.email):
        raise HTTPException(
            status_code=409,
            detail={"code": "user_exists", "message": "Username or email already registered."},
        )

    params = body.model_dump()
    changeset = Changeset(User()).cast(params, ["username", "email", "password"])
    changeset.validate_required(["username", "email", "password"])
    changeset = create_user(changeset, params, config)
    if not changeset.valid:
        return _validation_error(changeset.errors)

    key, query = gen_token_link(body.email)
    add_confirm_token(changeset, key)
    user = changeset.apply()
    try:
        user.id = store.create_user(user)
    except StoreError:
        # Lost a race with a concurrent signup for the same name.
        raise HTTPException(
            status_code=409,
            detail={"code": "user_exists", "message": "Username or email already registered."},
        ) from None

    request.app.state.mailer(body.email, "confirmation", query)
    logger.info("User created (id=%s)", user.id)
    return SignupResponse(id=user.id, username=user.username, email=user.email, role=user.role)


@router.get("/api/v1/confirm", response_model=MessageResponse, tags=["Signup"])
def confirm(request: Request, email: str, key: str) -> MessageResponse:
    config: AuthConfig = request.app.state.auth_config
    store: UserStore = request.app.state.user_store

    user = store.get_by("email", email)
    if user is None or not verify_link_token(user, key, "confirmation", config.key_expiry_minutes):
        raise _invalid_key()
    confirm_email(store, user)
    return MessageResponse(message="Account confirmed")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_signup_limit)
@router.post("/api/v1/password-reset/request", status_code=202, response_model=MessageResponse, tags=["Signup"])
def request_reset(request: Request, body: ResetRequest) -> MessageResponse:
    store: UserStore = request.app.state.user_store

    user = store.get_by("email", body.email)
    if user is not None:
        key, query = gen_token_link(body.email)
        changeset = add_reset_token(Changeset(user), key)
        store.update_or_fail(user, **changeset.changes)
        request.app.state.mailer(body.email, "reset", query)
    return MessageResponse(message="If the address is registered, a reset link has been sent")


@limiter.limit(_signup_limit)
@router.post("/api/v1/password-reset", response_model=MessageResponse, tags=["Signup"])
def do_reset(request: Request, body: ResetPasswordRequest):
    config: AuthConfig = request.app.state.auth_config
    store: UserStore = request.app.state.user_store

    user = store.get_by("email", body.email)
    if user is None or not verify_link_token(user, body.key, "reset", config.key_expiry_minutes):
        raise _invalid_key()

    changeset = Changeset(user).cast({"password": body.password}, ["password"])
    changeset.validate_required(["password"]).validate_length("password", min=config.min_length, max=config.max_length)
    if not changeset.valid:
        return _validation_error(changeset.errors)

    try:
        reset_password(store, user, body.password, config)
    except StoreError:
        logger.exception("Password reset failed for user id=%s", user.id)
        raise HTTPException(
            status_code=409,
            detail={"code": "reset_failed", "message": "Password could not be reset. Try again."},
        ) from None
    return MessageResponse(message="Password updated")
