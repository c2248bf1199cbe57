# flexhttp/log_config.py
"""Logging configuration for the flexhttp library using Loguru.

The library logs through the shared Loguru ``logger`` and never installs
handlers on import. Applications call :func:`configure_logging` once to get
the standard flexhttp format.
"""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<magenta>{thread.name}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", sink=sys.stderr) -> int:
    """
    Configures Loguru logger.

    Removes default handlers and adds a new one with the specified level and sink.
    The thread name is part of the format because requests complete on the
    engine thread while callbacks run on the callback context.

    Args:
        level: The minimum logging level (e.g., "DEBUG", "INFO", "WARNING").
        sink: The output sink (e.g., sys.stderr, "file.log").

    Returns:
        The Loguru handler id of the installed sink.
    """
    logger.remove()
    handler_id = logger.add(
        sink,
        level=level.upper(),
        format=LOG_FORMAT,
        colorize=sink is sys.stderr,
        backtrace=True,
        diagnose=False,
    )
    logger.info(f"Loguru logger configured with level={level.upper()} writing to {sink}")
    return handler_id


__all__ = ["LOG_FORMAT", "configure_logging", "logger"]
