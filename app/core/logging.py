"""JSON logging for the bill lifecycle backend."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

# Libraries that log every poll or request at INFO.
QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore")


def setup_logging(level: Optional[str] = None) -> None:
    """Install a single JSON handler on the root logger.

    Structured context (``bill_id``, ``from_status``, ``actor_user_id``...)
    is passed through ``extra=`` and lands as top-level JSON keys.
    """

    if level is None:
        from app.config import get_settings

        level = get_settings().LOG_LEVEL

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["setup_logging", "get_logger"]
