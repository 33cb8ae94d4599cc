"""
core/config.py -- idgate settings, read from the environment by pydantic-settings.

Every environment read goes through get_settings(); nothing else in the tree
touches os.environ. Field names map one-to-one onto variable names
(token_validity_days <- TOKEN_VALIDITY_DAYS) and an optional .env file in the
working directory is honoured.

get_settings() is cached with lru_cache, so Settings is built once per process.
The lifespan in api/main.py and the CLI both read it exactly once to wire the
TokenService; the signing key is never re-read or regenerated afterwards.
Rotating SECRET_KEY therefore means a restart, and every outstanding token
stops verifying.

Startup checks (Settings.check_startup_policy):
  - SECRET_KEY missing: generated with a warning when DEBUG=true, fatal otherwise
  - SECRET_KEY under 32 characters: fatal in every mode
  - OTP_FIXED_CODE: digits only; warned about outside DEBUG

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("idgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'idgate.db'}"
_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Runtime configuration for the API, the CLI and the identity core.

    Every field has a default so tests can build Settings() with nothing but
    DEBUG=true in the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    # "" means unset; check_startup_policy replaces or rejects it.
    secret_key: str = ""
    log_level: str = "INFO"

    # Identity store
    database_url: str = _DEFAULT_DB_URL
    db_pool_size: int = 5  # ignored for SQLite

    # Session tokens
    token_validity_days: int = Field(default=200, ge=1)

    # One-time passcodes
    otp_length: int = Field(default=6, ge=4, le=10)
    otp_fixed_code: str = ""  # development only: every challenge uses this code

    # Per-client token bucket on /auth
    rate_limit_per_second: float = Field(default=2.0, gt=0)
    rate_limit_burst: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def check_startup_policy(self) -> "Settings":
        """Refuse configurations that would make tokens or passcodes forgeable."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Export a random key of at least "
                    f"{_MIN_KEY_LENGTH} characters, or set DEBUG=true to use a throwaway one."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG: signing tokens with a generated SECRET_KEY; they will not survive a restart.")
        if len(self.secret_key) < _MIN_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        if self.otp_fixed_code:
            if not self.otp_fixed_code.isdigit():
                raise ValueError("OTP_FIXED_CODE must contain digits only.")
            if not self.debug:
                logger.warning("OTP_FIXED_CODE is set outside DEBUG; every passcode is predictable.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first call.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
