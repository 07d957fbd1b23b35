"""
api/routes/admin.py -- Account administration under /api/admin.

Routes:
  GET   /api/admin/users       -- list all accounts
  PATCH /api/admin/users/{id}  -- enable or disable an account

Role enforcement lives in the access rules (/api/admin/** requires "admin"),
so a non-admin token gets 403 from the gatekeeper before these handlers run.

[M4] PATCH blocks self-deactivation so an admin cannot lock themselves out.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import UserPatch, UserResponse
from auth.dependencies import get_principal
from auth.models import Principal, User
from auth.store import UserStore

logger = logging.getLogger("edumate.auth")

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
async def list_users(request: Request, principal: Principal = Depends(get_principal)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    principal: Principal = Depends(get_principal),
) -> UserResponse:
    """Enable or disable an account. Disabled accounts fail token verification at once."""
    user_store: UserStore = request.app.state.user_store

    if not body.is_active and user_id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    if not user_store.set_active(user_id, body.is_active):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    logger.info("%s set is_active=%s on user id=%d", principal.username, body.is_active, user_id)
    return _user_to_response(user_store.get_by_id(user_id))


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        role=user.role,
        is_active=user.is_active,
        created_at=user.created_at or "",
    )
