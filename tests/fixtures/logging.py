"""
Logging fixtures for testing.

Provides loggers writing to an in-memory stream so tests can assert on the
structured log lines.
"""

import logging
from collections.abc import Generator
from io import StringIO

import pytest

from serverstarter.log import LogConfig, Logger, LoggerFactory


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """
    Reset Python logging global state after each test.

    Resets: root handlers, root level, and logger class.
    """
    original_class = logging.getLoggerClass()
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level

    yield

    logging.setLoggerClass(original_class)
    logging.root.handlers = original_handlers
    logging.root.setLevel(original_level)


@pytest.fixture
def log_stream() -> StringIO:
    """Stream receiving the output of the lg fixture."""
    return StringIO()


@pytest.fixture
def sample_log_config() -> LogConfig:
    """
    Provide a debug-level LogConfig without colors.

    Returns:
        LogConfig: Sample log configuration
    """
    return LogConfig.from_params(level="trace", colors=False)


@pytest.fixture
def lg(sample_log_config: LogConfig, log_stream: StringIO) -> Logger:
    """
    Provide a root logger writing plain text to log_stream.

    Returns:
        Logger: Test logger instance
    """
    return LoggerFactory.create_root(sample_log_config, stream=log_stream)
