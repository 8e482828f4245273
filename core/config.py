"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keyward happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The API
      lifespan reads it once and hands the values to each component it
      constructs; auth/ components never call get_settings() themselves.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the DEBUG-conditional signing
      key logic: dev mode generates keys with a warning, production mode
      refuses to start without them.

Security notes:
  [M6] Signing keys shorter than 32 chars are rejected outright. HMAC-SHA256
       JWT signing relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       JWT_REFRESH_SECRET is a hard startup failure.

  [M8] The access and refresh keys must differ, otherwise an access token
       would verify as a refresh token signature-wise.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'keyward_auth.db'}"


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
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_issuer: str = "keyward-auth"
    jwt_audience: str = "keyward-client"
    access_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=30 * 24 * 3600, gt=0)
    # Off by default: a refresh only re-issues the access token and the same
    # refresh token stays valid until its session expires.
    rotate_refresh_tokens: bool = False

    # ------------------------------------------------------------------
    # Passwords and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_login_attempts: int = Field(default=5, ge=1)
    lock_duration_seconds: int = Field(default=30 * 60, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    default_rate_limit: str = "100/15minutes"
    login_rate_limit: str = "5/hour"
    register_rate_limit: str = "3/hour"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    session_purge_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing key policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate random keys with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            key is missing.
        """
        for name in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
