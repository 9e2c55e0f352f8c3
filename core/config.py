"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Credvault happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  - Secrets shorter than 32 chars are rejected outright. HS256 signing
    relies on key entropy -- a short key weakens every issued token.

  - The access and refresh secrets must differ. A leaked access secret
    must not be usable to forge refresh tokens, and vice versa.

  - Lifetimes stay strings at the boundary ("15m", "7d") and are parsed
    into seconds once, via the *_seconds properties below.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.duration import (
    DEFAULT_ACCESS_SECONDS,
    DEFAULT_REFRESH_SECONDS,
    DEFAULT_RESET_SECONDS,
    parse_duration,
)

logger = logging.getLogger("credvault.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'credvault.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_access_expires: str = "15m"
    jwt_refresh_secret: str = ""
    jwt_refresh_expires: str = "7d"

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Each step doubles the work.
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    password_reset_expires: str = "1h"

    # ------------------------------------------------------------------
    # Rate limiting (transport layer only)
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    password_reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_expires_seconds(self) -> int:
        return parse_duration(self.jwt_access_expires, DEFAULT_ACCESS_SECONDS)

    @property
    def refresh_expires_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_expires, DEFAULT_REFRESH_SECONDS)

    @property
    def reset_expires_seconds(self) -> int:
        return parse_duration(self.password_reset_expires, DEFAULT_RESET_SECONDS)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Issued tokens will not survive a restart -- acceptable locally.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing.
        """
        for field_name in ("jwt_access_secret", "jwt_refresh_secret"):
            value = getattr(self, field_name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field_name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, field_name, value)
                logger.warning(
                    "Using auto-generated %s. Issued tokens will not survive a restart.",
                    field_name.upper(),
                )
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{field_name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
