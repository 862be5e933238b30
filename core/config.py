"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the TechGadgets back-office happen here.
No module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

How settings are resolved:
  get_settings() builds Settings on first call and caches it (lru_cache).
  Values come from the environment or a .env file; each field maps to the
  upper-cased env var (secret_key -> SECRET_KEY, lockout_threshold ->
  LOCKOUT_THRESHOLD). The after-validator checks the signing key once every
  field is resolved. Dev mode generates one with a warning; production
  refuses to start without one.

Lockout thresholds and token lifetimes are configuration inputs. The engine
classes take them as constructor arguments and fall back to these settings;
nothing in auth/ hardcodes a number.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or client/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("techgadgets.config")


class Settings(BaseSettings):
    """Back-office settings. Every field has a default, so tests need no .env."""

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
    database_url: str = "sqlite:///techgadgets_auth.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_issuer: str = "techgadgets-api"
    jwt_audience: str = "techgadgets-admin"
    access_token_minutes: int = 60
    refresh_token_days: int = 7
    # Presenting a dead refresh token revokes every live token of its owner.
    refresh_reuse_revokes_family: bool = True

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    lockout_threshold: int = 5
    lockout_minutes: int = 30

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    # Operations declared with sensitivity >= this value re-resolve grants
    # from the role graph instead of trusting the access token claims.
    fresh_grants_sensitivity: int = 2

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    default_role: str = "customer"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:5173", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator(
        "access_token_minutes",
        "refresh_token_days",
        "lockout_threshold",
        "lockout_minutes",
    )
    @classmethod
    def must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters. HS256 signing
            relies on key entropy.
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


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
