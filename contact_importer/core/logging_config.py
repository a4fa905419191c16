"""
Logging setup shared by the API, the import console and the pipeline.

Everything goes to one stdout handler. Chatty client libraries (the Anthropic
SDK logs each HTTP request at INFO) are held at WARNING unless the
application itself runs at DEBUG.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Iterable, Optional


LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic")

_configured_level: Optional[str] = None


def build_logging_config(log_level: str, noisy_loggers: Iterable[str] = NOISY_LOGGERS) -> Dict[str, Any]:
    """Return the dictConfig document for the given level."""
    library_level = log_level if log_level == "DEBUG" else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "standard",
                "level": log_level,
            }
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": library_level} for name in noisy_loggers},
    }


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the shared logging configuration once per process.

    Args:
        level: Log level name such as "DEBUG" or "INFO". Defaults to INFO.
    """
    global _configured_level

    if _configured_level is not None:
        return

    log_level = (level or "INFO").upper()
    dictConfig(build_logging_config(log_level))
    logging.getLogger("contact_importer").setLevel(log_level)

    _configured_level = log_level
