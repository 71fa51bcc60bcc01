"""Logging utilities."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger as loguru_logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger(level: str = "INFO", log_file: Optional[str] = None) -> "LoguruWrapper":
    """
    Configure loguru sinks and return a standard-interface logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path (rotated at 10 MB, kept for a week)

    Returns:
        LoguruWrapper to inject into engine components
    """
    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        loguru_logger.add(
            log_file,
            level=level.upper(),
            rotation="10 MB",
            retention="1 week",
            enqueue=True
        )

    return LoguruWrapper(loguru_logger)


def get_logger(name: Optional[str] = None) -> "LoguruWrapper":
    """Get a logger, optionally bound to a component name."""
    if name:
        return LoguruWrapper(loguru_logger.bind(component=name))
    return LoguruWrapper(loguru_logger)


class LoguruWrapper:
    """Wrapper for loguru to standard logging interface."""

    def __init__(self, logger):
        self._logger = logger

    def debug(self, msg, *args, **kwargs):
        self._logger.opt(depth=1).debug(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.opt(depth=1).info(msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.opt(depth=1).warning(msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._logger.opt(depth=1).error(msg, *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._logger.opt(depth=1).critical(msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self._logger.opt(depth=1, exception=True).error(msg, *args, **kwargs)
