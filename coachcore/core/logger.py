"""Loguru sinks for coachcore.

Call sites attach context with `logger.bind(...)`; both sinks print the
bound fields after the message.
"""

import sys
from pathlib import Path

from loguru import logger

from coachcore.config.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message} | {extra}"


def setup_logger(level: str = "INFO", log_file: str | None = None) -> None:
    """Replace the loguru sinks with a stderr sink and, if given, a daily file.

    Args:
        level: Minimum level for both sinks
        log_file: Path of the log file; parent directories are created
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_path, format=FILE_FORMAT, level=level, rotation="00:00", retention="7 days")

    logger.bind(level=level, log_file=log_file).debug("Logger configured")


setup_logger(level=settings.log_level, log_file=settings.log_file)
