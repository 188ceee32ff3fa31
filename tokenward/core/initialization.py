"""Application initialization.

Configures structured logging from the active settings before any facade is
built. Settings read ``.env`` files themselves through pydantic-settings.
"""

from typing import Optional

from tokenward.core.config.settings import Settings
from tokenward.core.config.settings import settings as default_settings
from tokenward.core.logging import configure_logging


def initialize_application(settings: Optional[Settings] = None) -> Settings:
    """Configure logging and return the active settings."""
    settings = settings or default_settings
    configure_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    return settings
