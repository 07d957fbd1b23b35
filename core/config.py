"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for EduMate happen here. No module should
call os.getenv() or os.environ.get() directly -- build a Settings value once
and pass it to whoever needs it.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      app factory calls it; everything downstream receives the instance as an
      argument (or reads it from app.state).

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cors_allowed_origins -> CORS_ALLOWED_ORIGINS).

  Validators: misconfiguration fails fast at startup. An allowed-origins string
      that parses to nothing is rejected rather than silently permitting no
      origins.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright.
  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.
  [C2] A wildcard origin cannot be combined with credentialed CORS. Browsers
       refuse the combination anyway; refusing it here surfaces the mistake.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("edumate.config")

DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173"


def split_origins(raw: str) -> list[str]:
    """Split a comma-separated origin list, trimming whitespace and empties."""
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    cors_allowed_origins: str = DEFAULT_ALLOWED_ORIGINS

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    # bcrypt work factor (log2 of the iteration count).
    bcrypt_rounds: int = 10
    # Empty means "auth/edumate_auth.db next to the store module".
    auth_db_url: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("cors_allowed_origins")
    @classmethod
    def validate_origins(cls, value: str) -> str:
        origins = split_origins(value)
        if not origins:
            raise ValueError("CORS_ALLOWED_ORIGINS must name at least one origin.")
        if "*" in origins:
            raise ValueError("CORS_ALLOWED_ORIGINS cannot contain '*' because credentials are allowed [C2].")
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_rounds(cls, value: int) -> int:
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("token_expire_seconds")
    @classmethod
    def validate_expiry(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def allowed_origins(self) -> list[str]:
        return split_origins(self.cors_allowed_origins)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: build Settings(...) directly and hand it to create_app() instead
    of relying on the cached instance.
    """
    return Settings()
