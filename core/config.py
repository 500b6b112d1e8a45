"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_ttl_seconds -> SESSION_TTL_SECONDS). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Token lifetimes and the bcrypt cost factor
      are checked here so a bad deployment fails at startup, not on first login.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")


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
    log_level: str = "INFO"
    database_url: str = "sqlite:///authgate.db"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Fast cache
    # ------------------------------------------------------------------

    cache_backend: Literal["redis", "memory"] = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_username: str = ""
    redis_password: str = ""
    cache_socket_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_hash_rounds: int = 12
    password_min_length: int = 8
    password_require_special: bool = False

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 60 * 60
    confirmation_ttl_seconds: int = 60 * 60 * 24
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Outbound mail
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    front_app_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def session_ttl_ms(self) -> int:
        """Session lifetime in milliseconds, the unit browser-side clients expect."""
        return self.session_ttl_seconds * 1000

    @property
    def redis_url(self) -> str:
        auth = ""
        if self.redis_password:
            auth = f"{self.redis_username}:{self.redis_password}@"
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Reject configurations that would make every token invalid or hashing unusable.

        bcrypt accepts cost factors 4..31; anything else raises deep inside the
        library on the first registration, far from the misconfiguration.
        The in-process memory cache is not shared between workers, so it is
        only expected in debug mode and tests.
        """
        if self.session_ttl_seconds <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be positive.")
        if self.confirmation_ttl_seconds <= 0:
            raise ValueError("CONFIRMATION_TTL_SECONDS must be positive.")
        if not 4 <= self.password_hash_rounds <= 31:
            raise ValueError("PASSWORD_HASH_ROUNDS must be between 4 and 31.")
        if self.password_min_length < 1:
            raise ValueError("PASSWORD_MIN_LENGTH must be at least 1.")
        if self.cache_backend == "memory" and not self.debug:
            logger.warning(
                "WARNING: CACHE_BACKEND=memory outside debug mode. "
                "Cached sessions are not shared between worker processes."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
