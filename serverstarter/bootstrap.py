"""
Role detection and descriptor handoff between master and worker.

The master passes its listening sockets to a worker by placing them at fixed
descriptor numbers in the child and announcing their count in an environment
variable. The presence of that variable is what makes a process a worker:

    fd 0-2      standard streams
    fd 3        readiness pipe write end (handshake enabled only)
    fd 3|4 ...  listener sockets, in the order the master exported them

The environment is parsed once into a Bootstrap value which the rest of the
program receives explicitly.
"""

from __future__ import annotations

import contextlib
import enum
import fcntl
import os
import shutil
import socket
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from .exceptions import ConfigurationError, DescriptorError, ProcessSpawnError

STD_FD_COUNT = 3  # stdin, stdout, stderr


class Role(enum.Enum):
    """Role of the current process."""

    MASTER = "master"
    WORKER = "worker"


@dataclass(frozen=True)
class Bootstrap:
    """
    Role and listener count parsed from the process environment.

    Attributes:
        env_name: Name of the discriminator variable
        raw_count: The variable's value, or None when it is absent
    """

    env_name: str
    raw_count: str | None = None

    @classmethod
    def from_environ(
        cls, env_name: str, environ: Mapping[str, str] | None = None
    ) -> Bootstrap:
        """Capture the discriminator variable from the environment."""
        if environ is None:
            environ = os.environ
        return cls(env_name=env_name, raw_count=environ.get(env_name))

    @property
    def role(self) -> Role:
        """WORKER iff the discriminator variable is present, whatever its value."""
        return Role.MASTER if self.raw_count is None else Role.WORKER

    @property
    def is_master(self) -> bool:
        return self.role is Role.MASTER

    @property
    def listener_count(self) -> int:
        """
        Number of inherited listeners (0 for the master).

        Raises:
            ConfigurationError: If the value is not a non-negative decimal integer
        """
        if self.raw_count is None:
            return 0
        return parse_listener_count(self.raw_count, self.env_name)


def determine_role(env_name: str, environ: Mapping[str, str] | None = None) -> Role:
    """Return the role of a process with the given environment."""
    return Bootstrap.from_environ(env_name, environ).role


def parse_listener_count(value: str, env_name: str = "") -> int:
    """
    Parse a listener count as written by build_child_env().

    Raises:
        ConfigurationError: If the value is not a non-negative decimal integer
    """
    if not value.isascii() or not value.isdigit():
        raise ConfigurationError(
            "invalid listener count in environment", env=env_name, value=repr(value)
        )
    return int(value)


def build_child_env(
    environ: Mapping[str, str], env_name: str, count: int
) -> dict[str, str]:
    """
    Build a worker environment from the master's.

    Any inherited discriminator entry is dropped before the new count is set,
    so re-exec never yields conflicting declarations.
    """
    if count < 0:
        raise ConfigurationError("listener count cannot be negative", count=count)
    env = {k: v for k, v in environ.items() if k != env_name}
    env[env_name] = str(count)
    return env


def resolve_executable(argv0: str, workdir: str) -> str:
    """
    Look up the original argument zero again.

    Bare names are searched on PATH; names with a directory part are taken
    relative to the master's working directory. Symlinks are kept as they are,
    so a link switched to a new release since the master started is followed
    on the next spawn.

    Raises:
        ProcessSpawnError: If no executable is found
    """
    if not argv0:
        raise ProcessSpawnError("empty argument zero")

    if os.sep in argv0:
        path = os.path.normpath(os.path.join(workdir, argv0))
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
        raise ProcessSpawnError("original executable not found", path=path)

    found = shutil.which(argv0)
    if found is None:
        raise ProcessSpawnError("original executable not found on PATH", name=argv0)
    return os.path.abspath(found)


class DescriptorTable:
    """
    Ordered table mapping child descriptor slots to master descriptors.

    Slot i lands on descriptor 3 + i in the child. A table is built fresh for
    every spawn and never shared between generations.

    Example:
        table = DescriptorTable()
        table.add(ready_write_fd)
        table.extend(sock.fileno() for sock in listeners)
        with table.staged() as staged:
            os.posix_spawn(path, argv, env, file_actions=table.file_actions(staged))
    """

    def __init__(self) -> None:
        self._fds: list[int] = []

    def __len__(self) -> int:
        return len(self._fds)

    def add(self, fd: int) -> int:
        """Append a descriptor, returning the child descriptor it will occupy."""
        if fd < 0:
            raise DescriptorError("invalid descriptor", fd=fd)
        self._fds.append(fd)
        return self.child_fd(len(self._fds) - 1)

    def extend(self, fds: Iterable[int]) -> None:
        for fd in fds:
            self.add(fd)

    @staticmethod
    def child_fd(slot: int) -> int:
        return STD_FD_COUNT + slot

    @property
    def fds(self) -> list[int]:
        return list(self._fds)

    @property
    def top(self) -> int:
        """First descriptor number above the child slots."""
        return self.child_fd(len(self._fds))

    @contextlib.contextmanager
    def staged(self) -> Iterator[list[int]]:
        """
        Duplicate every entry above the child slots for the duration of a spawn.

        The copies are close-on-exec, so only their dup2 targets survive into
        the child, and they are closed in the master on exit.

        Raises:
            DescriptorError: If a descriptor cannot be duplicated
        """
        staged: list[int] = []
        try:
            for fd in self._fds:
                try:
                    staged.append(fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, self.top))
                except OSError as e:
                    raise DescriptorError(
                        "failed to duplicate descriptor", fd=fd
                    ) from e
            yield staged
        finally:
            for fd in staged:
                os.close(fd)

    def file_actions(self, staged: Sequence[int]) -> list[tuple[int, int, int]]:
        """
        Render posix_spawn dup2 actions placing staged[i] at slot i.

        The staged descriptors must be numbered above the last child slot so
        that no dup2 overwrites a source that has not been copied yet.
        """
        if len(staged) != len(self._fds):
            raise DescriptorError(
                "staged descriptor count mismatch",
                staged=len(staged),
                expected=len(self._fds),
            )
        actions = []
        for slot, fd in enumerate(staged):
            if fd < self.top:
                raise DescriptorError("staged descriptor overlaps child slots", fd=fd)
            actions.append((os.POSIX_SPAWN_DUP2, fd, self.child_fd(slot)))
        return actions


def inherit_listeners(bootstrap: Bootstrap, fd_base: int) -> list[socket.socket]:
    """
    Reopen the listeners a worker inherited from its master.

    Returns an empty list in the master, whose listeners are created directly.

    Args:
        bootstrap: Parsed process environment
        fd_base: Descriptor of the first listener (3, or 4 with the handshake)

    Raises:
        ConfigurationError: If the listener count is malformed
        DescriptorError: If a descriptor is not a usable socket
    """
    if bootstrap.is_master:
        return []

    listeners: list[socket.socket] = []
    for i in range(bootstrap.listener_count):
        fd = fd_base + i
        try:
            sock = socket.socket(fileno=fd)
        except OSError as e:
            for sock in listeners:
                sock.close()
            raise DescriptorError(
                "inherited descriptor is not a socket", fd=fd, index=i
            ) from e
        sock.set_inheritable(False)
        listeners.append(sock)
    return listeners
