"""
Graceful-restart server starter.

A master process owns the listening sockets and re-executes the program as
worker generations that inherit them as file descriptors. On SIGHUP a new
generation is started and the old one is retired once the new one reports
that it is ready, so the sockets never close and no connection is refused.
"""

from importlib.metadata import PackageNotFoundError, version

from .bootstrap import Bootstrap, Role, determine_role
from .build import BuildInfo, get_build_info
from .config import StarterConfig
from .exceptions import (
    ChildExitError,
    ConfigurationError,
    DescriptorError,
    ProcessSpawnError,
    ProtocolError,
    SignalDeliveryError,
    StarterError,
)
from .master import MasterLoop, State
from .process import ChildProcess, ExitStatus
from .starter import Starter

try:
    __version__ = version("serverstarter")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

__all__ = [
    "Bootstrap",
    "BuildInfo",
    "ChildExitError",
    "ChildProcess",
    "ConfigurationError",
    "DescriptorError",
    "ExitStatus",
    "MasterLoop",
    "ProcessSpawnError",
    "ProtocolError",
    "Role",
    "SignalDeliveryError",
    "Starter",
    "StarterConfig",
    "StarterError",
    "State",
    "determine_role",
    "get_build_info",
]
