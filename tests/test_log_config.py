import sys
from io import StringIO

import pytest
from loguru import logger

from flexhttp.log_config import configure_logging


def test_configure_logging_default_level_and_sink():
    """Test configure_logging with default INFO level and stderr sink."""
    logger.remove()  # Ensure clean state
    initial_handlers_count = len(logger._core.handlers)

    handler_id = configure_logging()  # Defaults to INFO and sys.stderr

    assert len(logger._core.handlers) == initial_handlers_count + 1
    handler = logger._core.handlers[handler_id]
    assert handler._levelno == logger.level("INFO").no


@pytest.mark.parametrize("level", ["DEBUG", "WARNING", "trace"])
def test_configure_logging_custom_level(level):
    """Test configure_logging with custom levels, given in any case."""
    logger.remove()
    handler_id = configure_logging(level=level)
    handler = logger._core.handlers[handler_id]
    assert handler._levelno == logger.level(level.upper()).no


def test_configure_logging_removes_existing_handlers():
    """Test that configure_logging removes pre-existing handlers."""
    logger.remove()
    logger.add(lambda _: None, level="ERROR")
    assert len(logger._core.handlers) == 1

    configure_logging(level="INFO")  # This should remove the dummy handler

    assert len(logger._core.handlers) == 1  # Only the new one should exist


def test_configure_logging_format_includes_thread_name():
    """Test the configured format names the thread that logged."""
    sink = StringIO()
    configure_logging(level="DEBUG", sink=sink)

    logger.debug("from the main thread")

    line = sink.getvalue().splitlines()[-1]
    assert "| MainThread |" in line
    assert line.endswith("from the main thread")


@pytest.fixture(autouse=True)
def reset_logger_after_test():
    """Fixture to reset Loguru to a default state after each test in this module."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="INFO")  # Restore a basic default handler
