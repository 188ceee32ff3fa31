"""
Logging configuration module for structured logging.

This module configures structlog for the package: ISO timestamps, the log
level, and either JSON output (production) or human-readable console output
(development). Modules obtain loggers with ``structlog.get_logger(__name__)``;
``configure_logging`` only has to run once, at the composition root.
"""

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configures the logging system.

    Args:
        log_level: Minimum level emitted by the standard library root logger.
        json_logs: Render JSON lines when True, console output otherwise.
    """
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()
