"""
API request and response models for EduMate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.credentials import MAX_PASSWORD_BYTES, password_fits

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    if not password_fits(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return value


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, v: str) -> str:
        return _check_password_bytes(v)


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    max_length counts characters; the validator also enforces bcrypt's
    72-byte limit, which a shorter non-ASCII password can exceed.
    """

    username: str = Field(min_length=3, max_length=255, pattern=r"^[A-Za-z0-9_.@-]+$")
    password: str = Field(min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, v: str) -> str:
        return _check_password_bytes(v)


class UserPatch(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: str


class ProfileResponse(BaseModel):
    """Identity of the caller, as established by the bearer token."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    role: str


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    is_active: bool
    created_at: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RootResponse(BaseModel):
    """Response for GET /."""

    model_config = ConfigDict(frozen=True)

    service: str
    version: str
    status: str = "ok"


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail
