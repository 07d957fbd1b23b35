"""
api/routes/profile.py -- The caller's own identity.

GET /api/profile is covered by the default "authenticated" rule, so the
gatekeeper has already rejected anonymous callers with 401 by the time the
handler runs.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import ProfileResponse
from auth.dependencies import get_principal
from auth.models import Principal

router = APIRouter()


@router.get("/profile", response_model=ProfileResponse)
async def profile(principal: Principal = Depends(get_principal)) -> ProfileResponse:
    return ProfileResponse(user_id=principal.user_id, username=principal.username, role=principal.role)
