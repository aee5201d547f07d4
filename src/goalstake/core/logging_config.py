"""
Loguru setup for the goalstake service.

``create_app`` calls ``configure_logging`` once at startup with the
observability settings from ``config.yaml``. Modules log through
``from loguru import logger`` directly.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from loguru import logger

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# stdlib loggers whose records are routed into loguru
FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiohttp.client", "redis")


class _InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO", json_format: bool = False, *, sink: Optional[str] = None) -> None:
    """
    Replace loguru's sinks with a single one.

    JSON output uses loguru's ``serialize`` records; text output is colorized
    only when writing to stderr. ``sink`` is a file path, stderr when omitted.
    """
    level = level.upper()
    logger.remove()
    logger.add(
        sink or sys.stderr,
        level=level,
        format=TEXT_FORMAT,
        serialize=json_format,
        colorize=sink is None and not json_format,
        enqueue=True,
        backtrace=True,
        diagnose=not json_format,
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in FORWARDED_LOGGERS:
        logging.getLogger(name).setLevel(level)

    logger.debug("Logging configured: level={}, json={}", level, json_format)
