"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Taskforge happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. A missing or short JWT_SECRET is a hard
      startup failure, never a per-request error.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("taskforge.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'taskforge_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except jwt_secret has a default so Settings() can be
    instantiated in test environments by exporting JWT_SECRET alone.
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
    # Empty string is the sentinel for "not configured". The validator
    # below raises, so callers never see "".
    jwt_secret: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    jwt_expire_seconds: int = 7 * 24 * 3600
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Google sign-in (optional -- empty client id disables POST /auth/google)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    google_jwks_cache_seconds: int = 3600

    # ------------------------------------------------------------------
    # Rate limiting -- requests allowed per window, per client address
    # ------------------------------------------------------------------

    rate_limit_window_seconds: int = 15 * 60
    register_rate_limit: int = 5
    login_rate_limit: int = 10
    oauth_rate_limit: int = 10
    general_rate_limit: int = 100
    # limits storage URI; "redis://host:6379" shares counters across workers
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Refuse to start without a usable signing secret.

        Tokens are stateless, so the secret is the only thing standing between
        a client and a forged session. A short key weakens HS256 signing.
        """
        if not self.jwt_secret:
            raise ValueError(
                "JWT_SECRET is required. Set JWT_SECRET in your environment or .env file."
            )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        limits = (self.register_rate_limit, self.login_rate_limit, self.oauth_rate_limit, self.general_rate_limit)
        if self.rate_limit_window_seconds < 1 or min(limits) < 1:
            raise ValueError("Rate limits and RATE_LIMIT_WINDOW_SECONDS must be at least 1.")
        if self.debug and self.bcrypt_rounds < 12:
            logger.warning("BCRYPT_ROUNDS=%d is below the production cost factor of 12", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
