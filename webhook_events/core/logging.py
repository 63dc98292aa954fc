"""
Loguru configuration.
"""

import sys

from loguru import logger

from webhook_events.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        backtrace=settings.DEBUG,
        diagnose=settings.DEBUG,
    )
    logger.debug(f"Logging configured at level {settings.LOG_LEVEL.upper()}")
