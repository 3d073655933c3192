"""
Logger class with structured fields and a TRACE level.

Extends the standard Python logger with:
- Pre-populated extra fields merged into every record
- A trace() method below DEBUG
- Derived "view" loggers that share the root logger's handlers
"""

from __future__ import annotations

import logging
from typing import Any

from .config import LogConfig
from .constants import LogConstants
from .formatters import EXTRA_ATTR


class Logger(logging.Logger):
    """
    Logger carrying structured fields.

    Fields given to the constructor appear on every record; fields passed
    per call with ``extra={...}`` are merged on top of them.

    Example:
        lg = LoggerFactory.create_root(LogConfig.from_params("info"))
        lg.info("worker started", extra={"pid": 4242, "generation": 0})
    """

    def __init__(
        self,
        name: str,
        config: LogConfig | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        if config is None:
            config = LogConfig()
        level = logging.CRITICAL + 1 if config.level is False else config.level
        super().__init__(name, level)
        self._config = config
        self._extra = dict(extra or {})
        self._root_logger: Logger | None = None  # set for derived loggers

    @property
    def config(self) -> LogConfig:
        return self._config

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self._extra)

    def makeRecord(
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: object,
        args: Any,
        exc_info: Any,
        func: str | None = None,
        extra: dict[str, Any] | None = None,
        sinfo: str | None = None,
    ) -> logging.LogRecord:
        """Create a record, attaching the merged fields instead of attributes."""
        merged = dict(self._extra)
        if extra:
            merged.update(extra)
        record = super().makeRecord(
            name, level, fn, lno, msg, args, exc_info, func=func, sinfo=sinfo
        )
        setattr(record, EXTRA_ATTR, merged)
        return record

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a TRACE level message."""
        if self.isEnabledFor(LogConstants.TRACE):
            kwargs["stacklevel"] = kwargs.get("stacklevel", 1) + 1
            self._log(LogConstants.TRACE, msg, args, **kwargs)

    def callHandlers(self, record: logging.LogRecord) -> None:
        """Derived loggers emit through the root logger's handlers."""
        if self._root_logger is None:
            super().callHandlers(record)
            return
        for handler in self._root_logger.handlers:
            if record.levelno >= handler.level:
                handler.handle(record)
