"""
Loguru configuration shared by the API and background workers.
"""

import sys

from loguru import logger

from .config import settings


def setup_logging(level: str | None = None, serialize: bool | None = None):
    """
    Replace loguru's default sink with one configured from settings.

    Structured context passed as keyword arguments (``logger.info("...", task_id=...)``)
    ends up in ``record["extra"]`` and is rendered after the message.

    Returns:
        The configured loguru logger
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.log_level).upper(),
        serialize=settings.log_json if serialize is None else serialize,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        ),
        backtrace=False,
        diagnose=False,
    )
    return logger
