"""
logging_config.py — Centralized Logging Configuration for autorfp

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so library loggers (uvicorn, sqlalchemy, httpx) route through
Loguru with the same format.

Business Rules:
- All application logs go through Loguru (no print())
- JSON lines when LOG_JSON is set (machine parsing), human-readable otherwise
- Correlation tokens are only ever logged at DEBUG

Called by: main.py (on startup)
"""

import logging
import os
import sys

from loguru import logger


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup.
    """
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    as_json = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

    if as_json:
        logger.add(sys.stdout, level=log_level, format="{message}", serialize=True)
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            colorize=True,
        )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured | level={} | json={}", log_level, as_json)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals so Loguru reports the caller
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )
