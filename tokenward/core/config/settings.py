"""Main settings and configuration management.

This module composes the settings mixins (app, auth, redis) into a single
`Settings` class, loads them from environment variables and .env files, and
exposes a `settings` singleton for the composition root.

Environment Support:
- Development: Uses .env
- Test: Uses .env.test when present
- Staging: Uses .env.staging when present
- Production: Uses .env.production when present
"""

import logging
import os
from datetime import timedelta
from pathlib import Path

from pydantic_settings import SettingsConfigDict

from .app import AppSettings
from .auth import AuthSettings
from .redis import RedisSettings

logger = logging.getLogger(__name__)
logging.getLogger("passlib").setLevel(logging.ERROR)

ENV_FILES = {
    "development": ".env",
    "test": ".env.test",
    "staging": ".env.staging",
    "production": ".env.production",
}


class Settings(AppSettings, AuthSettings, RedisSettings):
    """The settings class that aggregates every configuration section.

    Security Note:
        - Signing keys and store passwords are `SecretStr` and never logged.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.REFRESH_TOKEN_EXPIRE_DAYS)

    @property
    def password_reset_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES)

    @property
    def email_verification_token_ttl(self) -> timedelta:
        return timedelta(hours=self.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS)

    @property
    def max_token_ttl(self) -> timedelta:
        """Longest lifetime any issued token can have; bounds revocation retention."""
        return max(
            self.access_token_ttl,
            self.refresh_token_ttl,
            self.password_reset_token_ttl,
            self.email_verification_token_ttl,
        )


def create_settings(**overrides) -> Settings:
    """Create a settings instance for the environment named by ``APP_ENV``.

    Args:
        **overrides: Explicit field values, taking precedence over the environment.

    Returns:
        Settings: Configured settings instance
    """
    env = os.getenv("APP_ENV", "development")
    env_file = ENV_FILES.get(env, ".env")

    if env != "development" and Path(env_file).exists():
        logger.info(f"Loading environment configuration from {env_file}")
        return Settings(_env_file=env_file, **overrides)
    if Path(".env").exists():
        logger.info(f"Loading environment configuration from .env (environment: {env})")
        return Settings(**overrides)
    logger.info(f"No .env file found, using environment variables only (environment: {env})")
    return Settings(**overrides)


# Singleton used by the composition root.
settings = create_settings()
