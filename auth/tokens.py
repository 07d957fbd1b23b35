"""
auth/tokens.py -- JWT issue/verify and the bearer token verification stage.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, username (sub), role and expiry. Verification returns None on
       any failure -- the gatekeeper turns a missing Principal into a 401.

  Transport: Authorization: Bearer <token> only. Cookies are never read, so
       there is no ambient credential a cross-site form could replay. This is
       what lets CSRF protection stay off.

  Statelessness: nothing is stored per token. Every request re-establishes
       its Principal from the presented token plus a user lookup, so disabling
       an account takes effect on the next request.

Layer rule: no imports from api/. Settings is passed in explicitly; this
module never reaches for a global configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import Principal

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("edumate.auth")

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(settings: Settings, user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and expiry.

    Args:
        settings:       Source of SECRET_KEY and the default lifetime.
        user_id:        Numeric user ID stored in the DB.
        username:       Stored as the JWT subject claim.
        role:           "admin" or "user".
        expire_seconds: Lifetime override. 0 (default) uses
                        Settings.token_expire_seconds. Negative values
                        produce an already-expired token (tests use this).
    """
    duration = expire_seconds if expire_seconds != 0 else settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not all(claim in payload for claim in ("sub", "user_id", "role")):
        return None
    return payload


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token from an Authorization: Bearer header, or None.

    The scheme is matched case-insensitively (RFC 7235). Any other scheme,
    or a Bearer header with nothing after it, counts as no token.
    """
    auth_header = headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


# ---------------------------------------------------------------------------
# Verification stage
# ---------------------------------------------------------------------------


class TokenVerifier:
    """Turns a request's bearer token into a Principal.

    Contract: given the request headers, return a Principal for a valid token
    belonging to an active account, otherwise None. Absence of a token is not
    an error here; whether anonymity is acceptable is the access rules' call.
    """

    def __init__(self, settings: Settings, user_store: UserStore) -> None:
        self._settings = settings
        self._user_store = user_store

    def __call__(self, headers: Mapping[str, str]) -> Principal | None:
        token = extract_bearer_token(headers)
        if token is None:
            return None
        payload = decode_access_token(self._settings, token)
        if payload is None:
            logger.debug("Bearer token rejected: signature, expiry or claims invalid")
            return None
        user = self._user_store.get_by_id(payload["user_id"])
        if user is None or not user.is_active:
            logger.debug("Bearer token rejected: user %s missing or inactive", payload["user_id"])
            return None
        return Principal.from_user(user)
