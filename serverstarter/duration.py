"""
Duration strings for starter timeouts.

Timeouts in configuration files read better as "200ms" or "1m30s" than as
floats. This module converts both forms to seconds.

Example Usage:
    >>> delta_to_secs("1m30s")
    90.0

    >>> to_secs("200ms")
    0.2

    >>> to_secs(5)
    5.0
"""

import math
import re

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60
MILLISECONDS_PER_SECOND = 1000
MICROSECONDS_PER_SECOND = 1_000_000

# Longer units first so "ms" is not read as "m" followed by "s"
_COMPONENT = re.compile(r"(\d+(?:\.\d+)?)(ms|us|μs|d|h|m|s)")

_UNIT_SECONDS = {
    "d": SECONDS_PER_DAY,
    "h": SECONDS_PER_HOUR,
    "m": SECONDS_PER_MINUTE,
    "s": 1,
    "ms": 1 / MILLISECONDS_PER_SECOND,
    "us": 1 / MICROSECONDS_PER_SECOND,
    "μs": 1 / MICROSECONDS_PER_SECOND,
}


class InvalidDurationError(ValueError):
    """Raised when an invalid duration value or string is provided."""

    pass


def delta_to_secs(duration_str: str) -> float:
    """
    Parse a duration string to seconds.

    Each unit may appear at most once, and the whole string must be made of
    number/unit pairs.

    Args:
        duration_str: Duration string such as "1h30m", "45.5s" or "200ms"

    Returns:
        Duration in seconds as float

    Raises:
        InvalidDurationError: If the string cannot be parsed
    """
    if not isinstance(duration_str, str) or not duration_str.strip():
        raise InvalidDurationError("Duration string cannot be empty")

    compact = duration_str.replace(" ", "")
    matches = _COMPONENT.findall(compact)
    if not matches:
        raise InvalidDurationError(f"Could not parse duration string: '{duration_str}'")

    if "".join(f"{value}{unit}" for value, unit in matches) != compact:
        raise InvalidDurationError(
            f"Invalid characters in duration string: '{duration_str}'"
        )

    total = 0.0
    seen: set[str] = set()
    for value, unit in matches:
        if unit in seen:
            raise InvalidDurationError(f"Duplicate unit '{unit}' in duration string")
        seen.add(unit)
        total += float(value) * _UNIT_SECONDS[unit]
    return total


def to_secs(value: int | float | str) -> float:
    """
    Convert a number of seconds or a duration string to seconds.

    Numeric strings without a unit ("2.5") are read as seconds.

    Raises:
        InvalidDurationError: If the value is negative, NaN, infinite or
            cannot be parsed
    """
    if isinstance(value, bool):
        raise InvalidDurationError(f"Duration must be a number, got {value!r}")

    if isinstance(value, str):
        try:
            secs = float(value)
        except ValueError:
            secs = delta_to_secs(value)
    elif isinstance(value, (int, float)):
        secs = float(value)
    else:
        raise InvalidDurationError(
            f"Duration must be a number or string, got {type(value).__name__}"
        )

    if math.isnan(secs) or math.isinf(secs):
        raise InvalidDurationError(f"Duration must be finite, got {value!r}")
    if secs < 0:
        raise InvalidDurationError(f"Duration cannot be negative, got {value!r}")
    return secs


def delta_str(secs: float) -> str:
    """
    Format seconds compactly for log fields.

    Examples:
        >>> delta_str(0.2)
        '200ms'
        >>> delta_str(90)
        '1m30s'
        >>> delta_str(1.5)
        '1.500s'
    """
    if secs < 1:
        return f"{round(secs * MILLISECONDS_PER_SECOND)}ms"

    minutes, rest = divmod(secs, SECONDS_PER_MINUTE)
    hours, minutes = divmod(int(minutes), 60)

    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
        return out + f"{int(rest)}s"
    if rest == int(rest):
        return f"{int(rest)}s"
    return f"{rest:.3f}s"


__all__ = [
    "delta_to_secs",
    "delta_str",
    "to_secs",
    "InvalidDurationError",
]
