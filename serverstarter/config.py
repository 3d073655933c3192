"""
Configuration for the server starter.

StarterConfig is immutable: the master reads it for its whole lifetime and
workers construct an identical one from the same code, so both sides agree on
the discriminator variable and the descriptor layout.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from .duration import InvalidDurationError, to_secs
from .exceptions import ConfigurationError

DEFAULT_ENV_NAME = "LISTEN_FDS"
DEFAULT_SHUTDOWN_SIGNAL = signal.SIGTERM
DEFAULT_SHUTDOWN_TIMEOUT = 60.0
DEFAULT_SECTION = "starter"

# Maximum config file size (1MB); starter sections are a handful of keys
MAX_CONFIG_SIZE_BYTES = 1024 * 1024


def resolve_signal(value: signal.Signals | int | str) -> signal.Signals:
    """
    Resolve a signal given as enum, number or name.

    Names are case-insensitive and the "SIG" prefix is optional, so "term",
    "SIGTERM" and 15 all resolve to signal.SIGTERM.

    Raises:
        ConfigurationError: If the value does not name a signal
    """
    if isinstance(value, signal.Signals):
        return value

    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return resolve_signal(int(name))
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return signal.Signals[name]
        except KeyError:
            raise ConfigurationError("unknown signal name", signal=value) from None

    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return signal.Signals(value)
        except ValueError:
            raise ConfigurationError("unknown signal number", signal=value) from None

    raise ConfigurationError("invalid signal value", signal=repr(value))


def _resolve_timeout(name: str, value: Any) -> float:
    try:
        return to_secs(value)
    except InvalidDurationError as e:
        raise ConfigurationError(f"invalid {name}", value=value) from e


def _navigate_to_section(config_dict: dict, section: str) -> dict:
    """Navigate to a dotted section ("app.starter") of a config dict."""
    current: Any = config_dict
    for part in section.split("."):
        if not isinstance(current, dict) or part not in current:
            return {}
        current = current[part]
    if current is None:
        return {}
    if not isinstance(current, dict):
        raise ConfigurationError("config section is not a mapping", section=section)
    return current


@dataclass(frozen=True)
class StarterConfig:
    """
    Immutable starter configuration.

    Attributes:
        env_name: Environment variable that marks a worker and carries the
            inherited listener count (default: "LISTEN_FDS").
        shutdown_signal: Signal sent to the old generation on reload
            (default: SIGTERM).
        shutdown_timeout: Seconds to wait for the old generation to exit
            before it is killed with SIGKILL (default: 60).
        handshake: Whether a new generation must confirm readiness over a
            pipe before the old one is retired (default: True). Without it a
            generation is considered ready as soon as it is spawned.
        ready_timeout: Optional bound in seconds on the readiness wait. None
            waits indefinitely.
    """

    env_name: str = DEFAULT_ENV_NAME
    shutdown_signal: signal.Signals = DEFAULT_SHUTDOWN_SIGNAL
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    handshake: bool = True
    ready_timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.env_name or "=" in self.env_name or "\0" in self.env_name:
            raise ConfigurationError(
                "invalid environment variable name", env_name=self.env_name
            )
        if not isinstance(self.shutdown_signal, signal.Signals):
            raise ConfigurationError(
                "shutdown_signal must be a signal.Signals member",
                shutdown_signal=self.shutdown_signal,
            )
        if self.shutdown_timeout <= 0:
            raise ConfigurationError(
                "shutdown_timeout must be positive",
                shutdown_timeout=self.shutdown_timeout,
            )
        if self.ready_timeout is not None and self.ready_timeout <= 0:
            raise ConfigurationError(
                "ready_timeout must be positive", ready_timeout=self.ready_timeout
            )

    @property
    def listener_fd_base(self) -> int:
        """First descriptor holding a listener in a worker."""
        return 4 if self.handshake else 3

    @classmethod
    def from_params(
        cls,
        env_name: str = DEFAULT_ENV_NAME,
        shutdown_signal: signal.Signals | int | str = DEFAULT_SHUTDOWN_SIGNAL,
        shutdown_timeout: float | str = DEFAULT_SHUTDOWN_TIMEOUT,
        handshake: bool = True,
        ready_timeout: float | str | None = None,
    ) -> StarterConfig:
        """
        Create a StarterConfig from friendly parameter values.

        Args:
            env_name: Discriminator environment variable name
            shutdown_signal: Signal as enum, number or name ("SIGTERM", "quit")
            shutdown_timeout: Seconds or a duration string ("200ms", "1m")
            handshake: Enable the readiness handshake
            ready_timeout: Seconds, duration string, or None for no bound

        Returns:
            StarterConfig instance

        Raises:
            ConfigurationError: If any value is invalid
        """
        return cls(
            env_name=env_name,
            shutdown_signal=resolve_signal(shutdown_signal),
            shutdown_timeout=_resolve_timeout("shutdown_timeout", shutdown_timeout),
            handshake=bool(handshake),
            ready_timeout=(
                None
                if ready_timeout is None
                else _resolve_timeout("ready_timeout", ready_timeout)
            ),
        )

    @classmethod
    def from_config(
        cls, config_dict: dict, section: str = DEFAULT_SECTION
    ) -> StarterConfig:
        """
        Create a StarterConfig from a configuration dictionary.

        Missing keys take their defaults; a missing section yields the default
        configuration.

        Example:
            config = yaml.safe_load(open("etc/app.yaml"))
            starter_config = StarterConfig.from_config(config)

        Raises:
            ConfigurationError: If the section holds unknown keys or bad values
        """
        current = _navigate_to_section(config_dict, section)

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(current) - known)
        if unknown:
            raise ConfigurationError(
                "unknown starter options", section=section, keys=",".join(unknown)
            )

        return cls.from_params(**current)

    @classmethod
    def from_yaml(
        cls, path: str | Path, section: str = DEFAULT_SECTION
    ) -> StarterConfig:
        """
        Load a StarterConfig from a section of a YAML file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        return cls.from_config(load_yaml(path), section)


def load_yaml(path: str | Path) -> dict:
    """
    Load a YAML mapping from a file with yaml.safe_load.

    Raises:
        ConfigurationError: If the file is missing, too large, not valid YAML,
            or does not hold a mapping
    """
    path = Path(path)
    try:
        size = path.stat().st_size
        if size > MAX_CONFIG_SIZE_BYTES:
            raise ConfigurationError(
                "config file too large", path=str(path), size=size
            )
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError("cannot read config file", path=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError("invalid YAML in config file", path=str(path)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("config file must hold a mapping", path=str(path))
    return data
