"""
api/routes/auth.py -- Public authentication endpoints under /api/auth.

Routes:
  POST /api/auth/register  -- create a "user" account; 201
  POST /api/auth/login     -- password login; returns a bearer token
  POST /api/auth/logout    -- acknowledges; nothing to clear server-side

Everything here is public (the /api/auth/** access rule). The gatekeeper
still runs first, so a caller that sends a valid bearer token arrives with
request.state.principal set.

Security:
  [H2] POST /login is rate-limited to 10 requests/minute per client.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Wrong username and wrong password return the same "bad_credentials" error.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MessageResponse, RegisterRequest, UserResponse
from auth.credentials import PasswordEncoder, authenticate_user
from auth.dependencies import get_optional_principal
from auth.models import Principal, User
from auth.store import UserStore
from auth.tokens import create_access_token

logger = logging.getLogger("edumate.auth")

router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a regular account. Admin accounts are never self-registered."""
    user_store: UserStore = request.app.state.user_store
    encoder: PasswordEncoder = request.app.state.password_encoder

    new_user = User(username=body.username, role="user", hashed_password=encoder.hash(body.password))
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc

    created = user_store.get_by_id(user_id)
    logger.info("Registered user %s (id=%d)", created.username, created.id)
    return UserResponse(
        id=created.id,
        username=created.username,
        role=created.role,
        is_active=created.is_active,
        created_at=created.created_at or "",
    )


@limiter.limit("10/minute")  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    The token is returned in the body only. No cookie is set: the session
    policy is stateless and clients send the token back in the Authorization
    header on every request.
    """
    settings = request.app.state.settings
    user = authenticate_user(
        request.app.state.user_store,
        request.app.state.password_encoder,
        body.username,
        body.password,
    )
    if user is None:
        logger.info("Failed login for username %r", body.username)
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    token = create_access_token(settings, user.id, user.username, user.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            username=user.username,
            role=user.role,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout", response_model=MessageResponse)
async def logout(principal: Principal | None = Depends(get_optional_principal)) -> MessageResponse:
    """Acknowledge logout. Tokens are stateless; the client discards its copy."""
    if principal is not None:
        logger.info("Logout for %s", principal.username)
    return MessageResponse(message="Logged out.")
