"""
Structured, colored logging for the server starter.

    [12:34:56,789] [I] worker ready              [generation:1] [1234] [/starter/master]

Loggers are created through LoggerFactory from a frozen LogConfig, and
component loggers are derived from a root. Structured context goes in
``extra={...}``; exceptions are passed as ``extra={"exception": e}``.
"""

import logging

from .colors import ColorManager
from .config import LogConfig, resolve_level
from .constants import LogConstants
from .exceptions import InvalidLogLevelError, LogError
from .factory import LoggerFactory
from .formatters import LogFormatter
from .logger import Logger

logging.TRACE = LogConstants.TRACE  # type: ignore[attr-defined]
logging.addLevelName(LogConstants.TRACE, "TRACE")

__all__ = [
    "ColorManager",
    "InvalidLogLevelError",
    "LogConfig",
    "LogConstants",
    "LogError",
    "LogFormatter",
    "Logger",
    "LoggerFactory",
    "resolve_level",
]
