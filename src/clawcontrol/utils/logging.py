"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Optional, Union

_LOGGING_CONFIGURED = False

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


def configure_logging(level: Union[str, int] = logging.INFO) -> None:
    """Install the root handler once and (re)apply ``level``."""
    global _LOGGING_CONFIGURED
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        _LOGGING_CONFIGURED = True
    logging.getLogger().setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)
