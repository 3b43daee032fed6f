"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AdvisorGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

The two bypass switches (DISABLE_IP_CHECKS and SKIP_MIDDLEWARE) are ordinary
named fields. They reach the orchestrator and the session guard through
constructor arguments, never through ambient reads mid-request.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Session JWT
       signing relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [B1] The backdoor path is off unless BACKDOOR_ENABLED=true AND at least one
       permissible operator email is configured.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("advisorgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'advisorgate_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. List fields are read as JSON
    from the environment, e.g. SERVE_COUNTRIES='["US", "CA"]'.
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
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "session_token"
    # 7 days, matching the session lifetime of the web front end.
    session_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Authentication pipeline
    # ------------------------------------------------------------------

    disable_ip_checks: bool = False
    # X-Forwarded-For is client-controlled unless a proxy chain of known length
    # appends to it. Enable only behind such a chain and set its length.
    trust_forwarded_headers: bool = False
    trusted_proxy_count: int = 1
    serve_countries: list[str] = []
    deny_countries: list[str] = []

    backdoor_enabled: bool = False
    permissible_backdoor_emails: list[str] = []
    backdoor_operator_domain: str = ""

    # ------------------------------------------------------------------
    # Session guard middleware
    # ------------------------------------------------------------------

    skip_middleware: bool = False
    landing_path: str = "/entries"
    signin_path: str = "/signin"
    default_country: str = "CA"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    account_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("serve_countries", "deny_countries")
    @classmethod
    def upper_country_codes(cls, values: list[str]) -> list[str]:
        return [v.strip().upper() for v in values if v.strip()]

    @field_validator("permissible_backdoor_emails")
    @classmethod
    def lower_backdoor_emails(cls, values: list[str]) -> list[str]:
        return [v.strip().lower() for v in values if v.strip()]

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start without one.
        Both modes: reject keys shorter than 32 characters [M6].
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
    def warn_on_bypass_flags(self) -> "Settings":
        """Log loudly when a security bypass flag is switched on."""
        if self.disable_ip_checks:
            logger.warning("DISABLE_IP_CHECKS is set -- IP allow-listing is off for non-backdoor logins")
        if self.skip_middleware:
            logger.warning("SKIP_MIDDLEWARE is set -- the session guard passes every request through")
        if self.backdoor_enabled and not self.permissible_backdoor_emails:
            logger.warning("BACKDOOR_ENABLED is set but PERMISSIBLE_BACKDOOR_EMAILS is empty -- backdoor stays off")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
