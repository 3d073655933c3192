"""
Public entry point of the server starter.

The same program runs as master and as worker. The master creates the
listening sockets and hands them to run_master(), which keeps re-executing the
program as worker generations. A worker picks the sockets up with
listeners(), starts serving and calls send_ready():

    starter = Starter(shutdown_timeout="10s")
    if starter.is_master():
        sock = socket.create_server(("", 8080))
        starter.run_master(sock)
        sys.exit(0)

    (sock,) = starter.listeners()
    server = make_server(sock)
    starter.send_ready()
    server.serve_forever()
"""

from __future__ import annotations

import os
import socket
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from . import ready
from .bootstrap import (
    Bootstrap,
    DescriptorTable,
    Role,
    build_child_env,
    inherit_listeners,
)
from .build import build_fields
from .config import DEFAULT_SECTION, StarterConfig, load_yaml
from .exceptions import ConfigurationError, DescriptorError, ProtocolError
from .log import LogConfig, Logger, LoggerFactory
from .master import (
    Generation,
    MasterLoop,
    install_signal_handlers,
    restore_signal_handlers,
)
from .process import ChildProcess, spawn_process
from .ready import ReadyPipe


class Listener(Protocol):
    """Anything exposing a listening socket's descriptor."""

    def fileno(self) -> int: ...


def _listener_fds(listeners: Sequence[Listener]) -> list[int]:
    fds = []
    for i, listener in enumerate(listeners):
        try:
            fd = listener.fileno()
        except (OSError, ValueError, AttributeError) as e:
            raise DescriptorError(
                "listener has no usable descriptor", index=i, listener=listener
            ) from e
        if fd < 0:
            raise DescriptorError("listener is closed", index=i, listener=listener)
        fds.append(fd)
    return fds


class WorkerSpawner:
    """
    Starts worker generations for the master loop.

    Every call builds a fresh descriptor table (readiness pipe first, then
    the listeners), a fresh environment and, with the handshake, a fresh pipe.
    """

    def __init__(
        self,
        config: StarterConfig,
        fds: Sequence[int],
        argv: Sequence[str],
        environ: Mapping[str, str],
        workdir: str,
    ) -> None:
        self._config = config
        self._fds = list(fds)
        self._argv = list(argv)
        self._environ = dict(environ)
        self._workdir = workdir

    def __call__(
        self, seq: int, on_exit: Callable[[ChildProcess], None]
    ) -> Generation:
        pipe = ReadyPipe.create() if self._config.handshake else None
        try:
            table = DescriptorTable()
            if pipe is not None:
                table.add(pipe.write_fd)
            table.extend(self._fds)
            env = build_child_env(self._environ, self._config.env_name, len(self._fds))
            proc = spawn_process(self._argv, env, self._workdir, table, on_exit)
        except Exception:
            if pipe is not None:
                pipe.close()
            raise

        if pipe is not None:
            pipe.close_write_end()
        return Generation(seq=seq, process=proc, ready=pipe)


class Starter:
    """
    Graceful-restart server starter.

    Options are the StarterConfig fields, given either as keyword arguments
    (friendly values such as "200ms" or "SIGQUIT" are accepted) or as a
    ready-made config.

    Args:
        config: Starter configuration
        lg: Logger to derive the starter's loggers from; a root logger at
            info level is created when omitted
        argv: Argument vector to re-execute (default: sys.orig_argv)
        environ: Environment to read and pass on (default: os.environ)
        **options: StarterConfig.from_params() arguments

    Raises:
        ConfigurationError: If the options are invalid
    """

    def __init__(
        self,
        config: StarterConfig | None = None,
        lg: Logger | None = None,
        argv: Sequence[str] | None = None,
        environ: Mapping[str, str] | None = None,
        **options: Any,
    ) -> None:
        if config is not None and options:
            raise ConfigurationError(
                "pass either a config or options", options=",".join(sorted(options))
            )
        if config is None:
            config = StarterConfig.from_params(**options)
        self._config = config
        self._argv = list(argv) if argv is not None else None
        self._environ = environ
        self._bootstrap = Bootstrap.from_environ(self._config.env_name, environ)

        if lg is None:
            lg = LoggerFactory.create_root(LogConfig.from_params("info"))
        self._lg = LoggerFactory.derive(lg, ["starter", self.role.value])

        self._listeners: list[socket.socket] | None = None
        self._ready_sent = False
        self._loop: MasterLoop | None = None

    @classmethod
    def from_config(
        cls,
        config_dict: dict,
        section: str = DEFAULT_SECTION,
        lg: Logger | None = None,
        **kwargs: Any,
    ) -> Starter:
        """
        Create a Starter from a configuration dictionary.

        The starter options come from ``section``; without an explicit logger
        one is created from the dictionary's "logging" section.

        Example:
            starter = Starter.from_config({
                "starter": {"shutdown_timeout": "10s"},
                "logging": {"level": "debug"},
            })
        """
        config = StarterConfig.from_config(config_dict, section)
        if lg is None:
            lg = LoggerFactory.create_root(LogConfig.from_config(config_dict))
        return cls(config=config, lg=lg, **kwargs)

    @classmethod
    def from_yaml(
        cls,
        path: str | Path,
        section: str = DEFAULT_SECTION,
        lg: Logger | None = None,
        **kwargs: Any,
    ) -> Starter:
        """Create a Starter from a YAML configuration file."""
        return cls.from_config(load_yaml(path), section, lg=lg, **kwargs)

    @property
    def config(self) -> StarterConfig:
        return self._config

    @property
    def bootstrap(self) -> Bootstrap:
        return self._bootstrap

    @property
    def role(self) -> Role:
        return self._bootstrap.role

    @property
    def lg(self) -> Logger:
        return self._lg

    @property
    def loop(self) -> MasterLoop | None:
        """The master loop while run_master() is running or after it returned."""
        return self._loop

    def is_master(self) -> bool:
        return self._bootstrap.is_master

    def listeners(self) -> list[socket.socket]:
        """
        Return the listening sockets inherited from the master.

        The master gets an empty list. In a worker the sockets are reopened
        on the first call and the same objects are returned afterwards.

        Raises:
            ConfigurationError: If the listener count in the environment is
                malformed
            DescriptorError: If an inherited descriptor is not a socket
        """
        if self._listeners is not None:
            return list(self._listeners)
        if self.is_master():
            return []

        self._listeners = inherit_listeners(
            self._bootstrap, self._config.listener_fd_base
        )
        if self._config.handshake and not self._ready_sent:
            try:
                os.set_inheritable(ready.READY_FD, False)
            except OSError as e:
                raise DescriptorError(
                    "readiness descriptor missing", fd=ready.READY_FD
                ) from e

        self._lg.info(
            "worker started",
            extra={"listeners": len(self._listeners), **build_fields()},
        )
        return list(self._listeners)

    def send_ready(self) -> None:
        """
        Tell the master that this worker is serving.

        Call once, after the worker accepts connections on its listeners.
        Without the handshake this does nothing.

        Raises:
            ConfigurationError: If called in the master
            ProtocolError: If readiness was already sent
            DescriptorError: If the readiness byte cannot be written
        """
        if self.is_master():
            raise ConfigurationError("send_ready() called in the master")
        if not self._config.handshake:
            self._lg.debug("readiness handshake disabled")
            return
        if self._ready_sent:
            raise ProtocolError("readiness already sent")

        self._ready_sent = True
        ready.send_ready(ready.READY_FD)
        self._lg.debug("sent ready")

    def run_master(self, *listeners: Listener) -> None:
        """
        Supervise worker generations until SIGINT or SIGTERM.

        Installs handlers for SIGHUP, SIGINT and SIGTERM for the duration of
        the call, so it must run on the main thread. The listeners stay open
        in the master and are handed to every generation in the given order.

        Raises:
            ConfigurationError: If called in a worker or off the main thread
            DescriptorError: If a listener has no usable descriptor
            ProcessSpawnError: If a worker cannot be started
            ProtocolError: If a new generation fails the readiness handshake
            ChildExitError: If the last worker exits with a failure on stop
        """
        if not self.is_master():
            raise ConfigurationError("run_master() called in a worker")

        fds = _listener_fds(listeners)
        try:
            workdir = os.getcwd()
        except OSError as e:
            raise ConfigurationError("cannot determine working directory") from e

        spawner = WorkerSpawner(
            config=self._config,
            fds=fds,
            argv=self._argv if self._argv is not None else sys.orig_argv,
            environ=self._environ if self._environ is not None else os.environ,
            workdir=workdir,
        )
        self._loop = MasterLoop(self._config, spawner, self._lg)

        try:
            previous = install_signal_handlers(self._loop)
        except ValueError as e:
            raise ConfigurationError("run_master() must run on the main thread") from e

        self._lg.info(
            "master started",
            extra={
                "listeners": len(fds),
                "shutdown_signal": self._config.shutdown_signal.name,
                "handshake": self._config.handshake,
                **build_fields(),
            },
        )
        try:
            self._loop.run()
        except Exception as e:
            self._lg.error("master failed", extra={"exception": e})
            raise
        finally:
            restore_signal_handlers(previous)

        self._lg.info("master stopped")
