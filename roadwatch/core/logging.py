"""
RoadWatch AI - Logging Configuration
Centralized logging setup for the application.

Levels come from the Settings handed to setup_logging, so an app built with
its own settings does not inherit the environment's log level.
"""

import logging
import sys
from typing import Optional
from functools import lru_cache

from roadwatch.core.config import Settings, get_settings

APP_LOGGER = "roadwatch"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

# Third-party loggers kept at WARNING unless asked otherwise
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "google",
    "sqlalchemy.engine",
)


def resolve_level(name: Optional[str]) -> int:
    """Numeric level for a level name; unknown names fall back to INFO."""
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    settings: Optional[Settings] = None,
    level: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Configure and return the application logger.

    Safe to call more than once: the root handler is only installed by the
    first call, later calls only adjust levels.

    Args:
        settings: Settings providing log_level and db_echo (defaults to environment)
        level: Explicit level overriding settings.log_level
        format_string: Custom format string for log messages

    Returns:
        Configured logger instance
    """
    settings = settings or get_settings()
    level_name = level or settings.log_level
    log_level = resolve_level(level_name)

    logging.basicConfig(
        level=log_level,
        format=format_string or LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(log_level)
    if logging.getLevelName(log_level) != level_name.upper():
        logger.warning(f"Unknown log level '{level_name}', using INFO")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.db_echo:
        # SQL echo is only visible at INFO
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return logger


@lru_cache()
def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
