"""
Application-wide settings.
"""
from pydantic import Field
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Defines process-wide settings: project identity, environment and logging.

    Security Note:
        - Keep LOG_LEVEL at INFO or above in production; DEBUG output includes
          masked token identifiers that are still useful for correlation.
    """
    PROJECT_NAME: str = "tokenward"
    VERSION: str = "0.1.0"
    APP_ENV: str = Field(default="development", pattern="^(development|test|staging|production)$")
    DEBUG: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    DEFAULT_LANGUAGE: str = "en"
