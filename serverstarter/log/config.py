"""
Logger configuration.

LogConfig is frozen so that the master and every derived component logger
see the same settings for the lifetime of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .constants import LogConstants
from .exceptions import InvalidLogLevelError


def resolve_level(level: str | int | bool) -> int | bool:
    """
    Resolve a log level given as name, number or boolean.

    False (or "false") disables logging; True means INFO.

    Raises:
        InvalidLogLevelError: If the level is not recognised
    """
    if isinstance(level, bool):
        return logging.INFO if level else False
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().lower()
        if name.isdigit():
            return int(name)
        if name in LogConstants.LEVEL_NAMES:
            return LogConstants.LEVEL_NAMES[name]
    raise InvalidLogLevelError(level)


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable logger configuration.

    Attributes:
        level: Numeric level, or False to disable logging
        colors: Emit ANSI colors
        micros: Append microseconds to timestamps
        location: Show the calling file and line
    """

    level: int | bool = logging.INFO
    colors: bool = True
    micros: bool = False
    location: bool = False

    @classmethod
    def from_params(
        cls,
        level: str | int | bool = "info",
        colors: bool = True,
        micros: bool = False,
        location: bool = False,
    ) -> LogConfig:
        """
        Create a LogConfig from friendly parameter values.

        Example:
            config = LogConfig.from_params("debug", colors=False)
        """
        return cls(
            level=resolve_level(level),
            colors=bool(colors),
            micros=bool(micros),
            location=bool(location),
        )

    @classmethod
    def from_config(cls, config_dict: dict, section: str = "logging") -> LogConfig:
        """
        Create a LogConfig from a section of a configuration dictionary.

        Missing keys (or a missing section) take their defaults. A "colors"
        mapping with an "enabled" key is accepted as well as a plain boolean.

        Example:
            config = load_yaml("etc/app.yaml")
            log_config = LogConfig.from_config(config)
        """
        current: Any = config_dict
        for part in section.split("."):
            if not isinstance(current, dict) or part not in current:
                current = {}
                break
            current = current[part]
        if not isinstance(current, dict):
            current = {}

        colors = current.get("colors", True)
        if isinstance(colors, dict):
            colors = colors.get("enabled", True)

        return cls.from_params(
            level=current.get("level", "info"),
            colors=colors,
            micros=current.get("microseconds", current.get("micros", False)),
            location=current.get("location", False),
        )
