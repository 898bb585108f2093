"""Logging setup shared by the API server and the client."""

import logging
import logging.config
from typing import Any, Dict

QUIET_MODULES = ["pymongo", "httpx", "httpcore", "passlib"]


def build_logging_config(level: str) -> Dict[str, Any]:
    level = level.upper()
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {
                "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "simple",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {},
    }
    for name in QUIET_MODULES:
        config["loggers"][name] = {"level": "WARNING"}
    return config


def configure_logging(level: str = "INFO") -> None:
    """Apply the logging configuration. Safe to call more than once."""
    logging.config.dictConfig(build_logging_config(level))
    logging.getLogger(__name__).debug("Logging configured at %s", level.upper())
