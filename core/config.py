"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PimpMyPack happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.
The signing secret in particular is only ever read from Settings and handed to
AccessTokenCodec at construction time.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_minutes -> ACCESS_TOKEN_MINUTES).

  @model_validator(mode="after"): dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pimpmypack.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'pimpmypack.db'}"


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
    stage: str = "local"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    db_query_timeout_seconds: float = Field(default=5.0, gt=0)

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_minutes: int = Field(default=15, gt=0)
    refresh_token_days: int = Field(default=1, gt=0)
    refresh_token_remember_me_days: int = Field(default=30, gt=0)
    cleanup_interval_hours: float = Field(default=24, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    refresh_rate_limit_requests: int = Field(default=10, gt=0)
    refresh_rate_limit_window_seconds: float = Field(default=60, gt=0)
    # 0 means "same as refresh_rate_limit_requests".
    refresh_rate_limit_burst: int = Field(default=0, ge=0)
    # Buckets idle for this many windows are dropped by the sweeper.
    rate_limit_idle_windows: int = Field(default=10, gt=0)
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    # 0 disables the admin role cache; every admin request re-queries the store.
    role_cache_ttl_seconds: float = Field(default=30, ge=0)

    # ------------------------------------------------------------------
    # Mail (empty server means log-only dev mode)
    # ------------------------------------------------------------------

    mail_server: str = ""
    mail_port: int = 587
    mail_username: str = ""
    mail_password: str = ""
    mail_identity: str = ""
    public_base_url: str = "http://localhost:8080"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters. HS256 signing
            relies on key entropy.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Access tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
