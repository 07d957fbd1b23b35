"""
auth/credentials.py -- Password encoding and conventional username/password login.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force expensive for low-entropy secrets. The work factor is
       BCRYPT_ROUNDS from Settings, fixed for the life of the encoder. Hashes
       carry their own cost, so raising the factor never invalidates stored
       hashes.

  Timing equalization [C1]: authenticate_user() always runs one bcrypt check,
       against a per-encoder dummy hash when the username is unknown, so
       response time does not reveal whether a username exists.

  Length: bcrypt accepts at most 72 bytes of input, and the limit is in
       UTF-8 bytes, not characters. The API models reject longer passwords
       with a 422; hash() refuses them and verify() treats them as a mismatch.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("edumate.auth")

MAX_PASSWORD_BYTES = 72


def password_fits(plain: str) -> bool:
    """True if the UTF-8 encoding of the password is within bcrypt's input limit."""
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


class PasswordEncoder:
    """One-way adaptive hash for stored credentials.

    hash() salts every call, so two hashes of the same password differ;
    verify() is the only valid comparison.
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first failed login is not measurably slower
        # than later ones [C1].
        self._dummy_hash = self.hash("edumate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of the plaintext password."""
        if not password_fits(plain):
            raise ValueError(f"Password is longer than {MAX_PASSWORD_BYTES} bytes.")
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash. Malformed hashes never match."""
        if not password_fits(plain):
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed; treating as mismatch")
            return False

    def burn(self, plain: str) -> None:
        """Spend one bcrypt check's worth of time without matching anything."""
        self.verify(plain, self._dummy_hash)


def authenticate_user(store: UserStore, encoder: PasswordEncoder, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization [C1].

    - Unknown username: bcrypt runs against the dummy hash (same cost).
    - Wrong password: bcrypt runs against the real hash (same cost).

    Returns the User on success, None on any failure. Inactive accounts fail
    the same way as wrong passwords.
    """
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        encoder.burn(password)
        return None
    if not encoder.verify(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user
