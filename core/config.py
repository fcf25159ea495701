"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AccessLedger happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning; production mode refuses to start without one.

Settings is the raw environment view. The auth flow never reads it directly:
api/main.py builds an AuthConfig (auth/orchestrator.py) and a PasswordPolicy
(auth/validation.py) from it at startup and passes those objects in.

Security notes:
  SECRET_KEY signs the session cookie. Keys shorter than 32 chars are
  rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or history/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accessledger.config")

_DATA_DIR = Path(__file__).resolve().parent.parent

# bcrypt rejects or truncates input past this many bytes
BCRYPT_MAX_BYTES = 72


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    auth_db_url: str = f"sqlite:///{_DATA_DIR / 'accessledger_auth.db'}"
    history_db_url: str = f"sqlite:///{_DATA_DIR / 'accessledger_history.db'}"

    # ------------------------------------------------------------------
    # Sessions and navigation
    # ------------------------------------------------------------------

    # JSON list in the environment, e.g. ALLOWED_HOSTS='["auth.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    secure_cookies: bool = False
    session_max_age_seconds: int = 8 * 3600
    menu_path: str = "/menu"
    login_path: str = "/login"

    # ------------------------------------------------------------------
    # Password policy (signup only; login accepts any non-empty password)
    # ------------------------------------------------------------------

    password_min_length: int = 8
    password_max_length: int = BCRYPT_MAX_BYTES
    password_require_letter: bool = True
    password_require_digit: bool = True

    # ------------------------------------------------------------------
    # Audit history
    # ------------------------------------------------------------------

    # True: the response waits until the history row is written.
    # False: the write runs as a background task and failures are only logged.
    history_wait: bool = True

    # ------------------------------------------------------------------
    # Rate limiting / registration
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_password_policy(self) -> "Settings":
        if self.password_min_length < 1:
            raise ValueError("PASSWORD_MIN_LENGTH must be at least 1.")
        if self.password_max_length < self.password_min_length:
            raise ValueError("PASSWORD_MAX_LENGTH must not be below PASSWORD_MIN_LENGTH.")
        if self.password_max_length > BCRYPT_MAX_BYTES:
            raise ValueError(f"PASSWORD_MAX_LENGTH must not exceed {BCRYPT_MAX_BYTES} (bcrypt input limit).")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
