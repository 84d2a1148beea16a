"""Logging configuration helpers for the quiz service."""

from __future__ import annotations

import logging
from logging import Logger


def configure_logging(level: int = logging.INFO) -> Logger:
    """Configure root logging for the service and return the package logger.

    The websocket transport logs every frame at debug level, so it is held
    at WARNING regardless of ``level``.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logger = logging.getLogger("quiz_live")
    logger.setLevel(level)
    return logger
