"""Factory for creating and deriving loggers."""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """
    Factory for creating and configuring loggers.

    Loggers are not registered with the logging module's manager: each
    application owns its tree, starting at a root created here.
    """

    @staticmethod
    def create_root(config: LogConfig, stream: IO[str] | None = None) -> Logger:
        """
        Create the root logger "/".

        Example:
            >>> lg = LoggerFactory.create_root(LogConfig.from_params("info"))
            >>> lg.info("master started")
            [12:34:56,789] [I] master started          [1234] [/]
        """
        return LoggerFactory.create("/", config, stream=stream)

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        stream: IO[str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """
        Create a logger writing to a stream (stdout by default).

        Args:
            name: Logger name
            config: Logger configuration
            stream: Output stream
            extra: Fields included in every record
        """
        lg = Logger(name, config, extra)
        handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
        handler.setFormatter(LogFormatter(config))
        lg.addHandler(handler)
        lg.propagate = False
        return lg

    @staticmethod
    def derive(
        parent: Logger, tags: str | list[str], extra: dict[str, Any] | None = None
    ) -> Logger:
        """
        Derive a "view" logger that emits through the root's handlers.

        The derived logger inherits the parent's configuration and fields.

        Examples:
            >>> LoggerFactory.derive(root, "starter").name
            '/starter'
            >>> LoggerFactory.derive(root, ["starter", "master"]).name
            '/starter/master'
        """
        if isinstance(tags, str):
            tags = [tags]

        prefix = parent.name if parent.name == "/" else parent.name + "/"
        merged = parent.extra
        if extra:
            merged.update(extra)

        lg = parent.__class__(prefix + "/".join(tags), parent.config, merged)
        lg._root_logger = parent._root_logger or parent
        lg.parent = parent
        lg.propagate = False
        return lg
