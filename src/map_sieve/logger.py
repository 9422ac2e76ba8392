"""Logging configuration and utilities.

This module sets up the logging configuration for the application. Modules log
through `logging.getLogger(__name__)`.
"""

import logging
import sys

from .config import LoggingSettings

_NOISY_LOGGERS = ("google_genai", "httpx", "httpcore")


def configure_logging(
    level: str | None = None,
    format_string: str | None = None,
    settings: LoggingSettings | None = None,
) -> None:
    """Configure logging for the application.

    Arguments passed to the function win over the given settings, which in turn
    fall back to the LoggingSettings defaults.

    Args:
        level: Optional logging level (e.g., "DEBUG", "INFO").
        format_string: Optional logging format string.
        settings: Optional logging settings, usually ``get_settings().logging``.
    """
    settings = settings or LoggingSettings()

    log_level = level or settings.level
    log_format = format_string or settings.format

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info("Logging configured with level: %s", log_level)
