"""Logging configuration shared by the API process and scripts."""

import copy
import logging
import logging.config
from typing import Any, Dict

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "sqlalchemy.engine": {"level": "WARNING"},
    },
}


def setup_logging(level: str = "INFO", sql_echo: bool = False) -> None:
    """
    Configure the root logger from ``DEFAULT_LOGGING_CONFIG``.

    Args:
        level (str): Root logging level name, e.g. ``"DEBUG"``.
        sql_echo (bool): Raise ``sqlalchemy.engine`` to INFO so every
            statement (BEGIN/COMMIT/ROLLBACK included) is logged.
    """
    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
    config["root"]["level"] = level.upper()
    if sql_echo:
        config["loggers"]["sqlalchemy.engine"]["level"] = "INFO"
    logging.config.dictConfig(config)
