"""Loguru sink setup."""
from __future__ import annotations

import sys

from loguru import logger

from todo_stream.config import Settings
from todo_stream.observability.context import get_correlation_id

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | {name}:{function}:{line} - <level>{message}</level>"
)


def _inject_correlation_id(record) -> None:
    record["extra"].setdefault("correlation_id", get_correlation_id() or "-")


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.configure(patcher=_inject_correlation_id)
    logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT, enqueue=False)
