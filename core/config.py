"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the coin server happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_secret -> ACCESS_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  Two signing secrets: ACCESS_SECRET signs short-lived access tokens,
  REFRESH_SECRET signs long-lived refresh tokens. They must differ, otherwise
  a refresh token would verify as an access token.

  Secrets shorter than 32 chars are rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("coinserver.config")

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
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    access_secret: str = ""
    refresh_secret: str = ""
    access_token_expire_seconds: int = Field(default=30 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt work factor. 14 is ~1s per hash on commodity hardware; tests
    # drop this to 4 through BCRYPT_ROUNDS.
    bcrypt_rounds: int = Field(default=14, ge=4, le=31)

    # ------------------------------------------------------------------
    # Backing services
    # ------------------------------------------------------------------

    # Empty means the SQLite file next to auth/store.py.
    database_url: str = ""
    # "memory://" selects the in-process session cache (dev and tests only).
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Auth gate
    # ------------------------------------------------------------------

    # When True the gate confirms the session id in the cache on every
    # protected request, so logout and refresh rotation take effect at once.
    auth_gate_checks_session: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret.
        """
        for name in ("access_secret", "refresh_secret"):
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    f"Set {name.upper()} in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("WARNING: Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
        if len(self.access_secret) < _MIN_SECRET_LENGTH or len(self.refresh_secret) < _MIN_SECRET_LENGTH:
            raise ValueError("ACCESS_SECRET and REFRESH_SECRET must be at least 32 characters.")
        if self.access_secret == self.refresh_secret:
            raise ValueError("ACCESS_SECRET and REFRESH_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
