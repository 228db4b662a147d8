"""
Logging setup for threadbot.

LoggingConfig applies a dictConfig once per process; modules then use
get_logger() or logging.getLogger(__name__).
"""

from __future__ import annotations

import logging
import logging.config
from typing import Optional

from threadbot.config import get_settings

LOGGER_NAME = "threadbot"


class LoggingConfig:
    """Configure the root and threadbot loggers from settings."""

    _configured = False

    def __init__(self, level: Optional[str] = None) -> None:
        if LoggingConfig._configured and level is None:
            return
        level = (level or get_settings().log_level or "INFO").upper()
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "default": {
                        "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                    },
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "formatter": "default",
                    },
                },
                "root": {"handlers": ["console"], "level": "WARNING"},
                "loggers": {
                    LOGGER_NAME: {"level": level},
                    # httpx logs every request at INFO
                    "httpx": {"level": "WARNING"},
                },
            }
        )
        LoggingConfig._configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
