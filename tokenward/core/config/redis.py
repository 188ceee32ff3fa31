"""
Store backend and Redis settings.
"""
import logging
import os

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """
    Defines which backend holds the shared session state and how to reach Redis.

    Security Note:
        - REDIS_PASSWORD must be set in staging/production.
        - Use ``REDIS_SSL=true`` (rediss://) when Redis is reached over an
          untrusted network.
    """
    STORE_BACKEND: str = Field(default="memory", pattern="^(memory|redis)$")

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = Field(ge=1, le=65535, default=6379)
    REDIS_DB: int = Field(ge=0, default=0)
    REDIS_PASSWORD: SecretStr = Field(default=SecretStr(""), validate_default=True)
    REDIS_SSL: bool = False
    REDIS_URL: str = Field(default="", validate_default=True)
    REDIS_KEY_PREFIX: str = "tw"

    # Retry policy for store round trips
    STORE_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    STORE_RETRY_WAIT_SECONDS: float = Field(default=0.05, ge=0)
    STORE_RETRY_MAX_WAIT_SECONDS: float = Field(default=1.0, ge=0)

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_url(cls, v: str | None, info: ValidationInfo) -> str:
        """
        Assembles the Redis connection URL if not provided explicitly.

        Args:
            v: Explicitly provided URL or None.
            info: Validation context with other field values.

        Returns:
            Assembled or provided Redis URL.
        """
        if v:
            return v

        values = info.data
        protocol = "rediss" if values.get("REDIS_SSL") else "redis"
        redis_password = values.get("REDIS_PASSWORD")
        secret = redis_password.get_secret_value() if isinstance(redis_password, SecretStr) else ""
        password = f":{secret}@" if secret else ""

        url = (
            f"{protocol}://{password}{values.get('REDIS_HOST')}:"
            f"{values.get('REDIS_PORT')}/{values.get('REDIS_DB', 0)}"
        )
        logger.debug("Assembled REDIS_URL (password masked for security).")
        return url

    @field_validator("REDIS_PASSWORD")
    @classmethod
    def validate_redis_password(cls, value: SecretStr, info: ValidationInfo) -> SecretStr:
        """
        Ensures REDIS_PASSWORD is set when staging/production use the Redis backend.

        Raises:
            ValueError: If password is not set in staging/production.
        """
        app_env = info.data.get("APP_ENV") or os.getenv("APP_ENV", "development")
        uses_redis = info.data.get("STORE_BACKEND") == "redis"
        if uses_redis and app_env in ["staging", "production"] and not value.get_secret_value():
            logger.error(f"REDIS_PASSWORD must be set in {app_env} environment.")
            raise ValueError("REDIS_PASSWORD must be set in staging/production environments")
        return value
