"""
auth/dependencies.py -- FastAPI Depends() helpers for route handlers.

The gatekeeper middleware has already decided whether the request may reach
a handler and stored the verified Principal (or None) on request.state.
These helpers only read that result; they never re-verify tokens.

get_optional_principal() is the soft variant (None for anonymous requests).
get_principal() raises HTTP 401 if no Principal is attached. Behind the
gatekeeper that only happens when a route is wired to a public path by
mistake.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Principal


def get_optional_principal(request: Request) -> Principal | None:
    """Return the Principal the gatekeeper attached, or None."""
    return getattr(request.state, "principal", None)


def get_principal(request: Request) -> Principal:
    """Require an authenticated Principal. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    principal = get_optional_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
