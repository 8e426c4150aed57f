"""
API request and response models for the tokengate HTTP endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
apart from the dataclasses in auth/models.py, which own the internal domain
representation. Password length is NOT checked here: the signup helpers
validate it against AuthConfig so the bounds live in one place.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Signup / confirmation / reset
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    # Bounds enforced by auth.signup.create_user against AuthConfig.
    password: str = Field(max_length=1024)


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str


class ResetRequest(BaseModel):
    """Request body for POST /api/v1/password-reset/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/password-reset."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    key: str = Field(min_length=1, max_length=64)
    password: str = Field(max_length=1024)


class MeResponse(BaseModel):
    """Response for GET /api/v1/me -- the verified token claims."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: int
    role: Optional[str] = None
