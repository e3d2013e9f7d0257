"""
utils/logger.py
───────────────
Loguru-based logger configured once and imported across the project.
Records emitted through the standard ``logging`` module (redis, uvicorn,
fastapi) are routed into the same sinks.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

from config.settings import get_settings


class _InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru, keeping the caller's frame."""

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


def setup_logger() -> None:
    settings = get_settings()
    log_file: Path = settings.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()  # remove default stderr handler

    # Console handler, human-readable
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    # File handler, JSON for structured log analysis
    logger.add(
        str(log_file),
        level="DEBUG",
        rotation="10 MB",
        retention="14 days",
        serialize=True,
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=logging.WARNING, force=True)


setup_logger()

__all__ = ["logger"]
