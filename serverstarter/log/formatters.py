"""
Log formatter with structured fields and ANSI colors.

Records are rendered as

    [12:34:56,789] [I] worker ready     [generation:1] [1234] [/starter/master]

The message is padded to a fixed column so the structured fields of
consecutive lines line up. Fields come from the ``extra`` mapping given to
the logging call; an ``exception`` field is shown by class name and its
traceback is appended on the following lines.
"""

import logging
import os
import re
import time
import traceback
from typing import Any

from .colors import ColorManager
from .config import LogConfig
from .constants import LogConstants

# Record attribute holding the merged structured fields
EXTRA_ATTR = "__starter__extra"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visual_len(text: str) -> int:
    """Width of text as displayed, excluding ANSI escape codes."""
    if "\x1b" not in text:
        return len(text)
    return len(_ANSI_PATTERN.sub("", text))


def _render_exception(e: BaseException) -> str:
    return "".join(traceback.format_exception(type(e), e, e.__traceback__)).rstrip()


class LogFormatter(logging.Formatter):
    """
    Formatter producing the starter's single-line structured records.

    Example:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(LogFormatter(LogConfig.from_params("info")))
    """

    def __init__(self, config: LogConfig) -> None:
        super().__init__(LogConstants.DEFAULT_FORMAT)
        self._config = config

    @property
    def config(self) -> LogConfig:
        return self._config

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        s = time.strftime("%H:%M:%S", self.converter(record.created))
        s += f",{int(record.msecs):03d}"
        if self._config.micros:
            micros = int((record.created % 1) * 1_000_000) % 1000
            s += f".{micros:03d}"
        return s

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = dict(getattr(record, EXTRA_ATTR, None) or {})
        exception = fields.get("exception")

        if self._config.colors:
            col = ColorManager.get_color_for_level(record.levelno)
            bold = ColorManager.create_bold_color(col)
            col += "m"
        else:
            col = bold = ""

        head = self._field(self.formatTime(record), col)
        head += " " + self._field(record.levelname[:1], col, bold)
        head += " " + bold + record.getMessage()

        rule = (
            LogConstants.MICRO_RULE_WIDTH
            if self._config.micros
            else LogConstants.DEFAULT_RULE_WIDTH
        )
        out = head + " " * max(1, rule - _visual_len(head))

        parts = []
        for key, value in fields.items():
            if key == "exception" and isinstance(value, BaseException):
                value = value.__class__.__name__
            parts.append(self._field(value, col, bold, key))

        meta_col = meta_bold = ""
        if self._config.colors:
            meta_col = ColorManager.create_gray_level(9) + "m"
            meta_bold = ColorManager.create_gray_level(9) + ";1m"
        parts.append(self._field(record.process, meta_col, meta_bold))
        parts.append(self._field(record.name, meta_col, meta_bold))
        if self._config.location:
            parts.append(self._field(self._location(record), meta_col))

        out += " ".join(parts)
        if self._config.colors:
            out = col + out + ColorManager.RESET

        if isinstance(exception, BaseException):
            out += "\n" + _render_exception(exception)
        if record.exc_info:
            out += "\n" + self.formatException(record.exc_info)
        return out

    def _field(self, value: Any, col: str, bold: str = "", name: str = "") -> str:
        label = f"{name}:" if name else ""
        if not self._config.colors:
            return f"[{label}{value}]"
        reset = ColorManager.RESET
        return f"{reset}{col}[{label}{bold}{value}{reset}{col}]"

    @staticmethod
    def _location(record: logging.LogRecord) -> str:
        return f"./{os.path.relpath(record.pathname, os.getcwd())}:{record.lineno}"
