"""Logging helpers for Turnstile."""
from __future__ import annotations

from logging.config import dictConfig


DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
    "loggers": {
        "turnstile.ratelimit": {"level": "NOTSET"},
    },
}


def setup_logging(level: str = "INFO", *, ratelimit_level: str | None = None) -> None:
    """Configure application logging using dictConfig.

    ``ratelimit_level`` lets the per-request decision log be turned up (for
    instance to ``DEBUG``) without flooding the rest of the application.
    """

    config = DEFAULT_LOGGING_CONFIG.copy()
    config = {**config, "root": {**config["root"], "level": level.upper()}}
    if ratelimit_level:
        config["loggers"] = {"turnstile.ratelimit": {"level": ratelimit_level.upper()}}
    dictConfig(config)
