from __future__ import annotations

import logging
import logging.config

ROOT_LOGGER = "decoy"


def logging_config(level: str = "INFO") -> dict:
    """dictConfig payload shared by the app and uvicorn's loggers."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            ROOT_LOGGER: {"handlers": ["stderr"], "level": level, "propagate": True},
            "uvicorn.error": {"handlers": ["stderr"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["stderr"], "level": level, "propagate": False},
        },
    }


def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(logging_config(level.upper()))


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the project logger, or a child of it for ``name``."""
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
