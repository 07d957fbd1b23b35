"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the gatekeeper and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A persisted EduMate account.

    hashed_password is the bcrypt-encoded credential; the plaintext is never
    stored or logged.
    """

    username: str
    role: str  # "admin", "user"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to a single request.

    Built by the token-verification stage from a valid bearer token and
    discarded when the request ends. Nothing about it is kept server-side.
    """

    user_id: int
    username: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(user_id=user.id, username=user.username, role=user.role)
