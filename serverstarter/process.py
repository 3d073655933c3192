"""
Worker process handles.

A ChildProcess wraps the pid of one spawned worker and exposes the three
operations the master needs: deliver a signal, wait for the exit status, and
kill. Each handle owns a daemon watcher thread that collects the exit status
exactly once, so no worker is ever left as a zombie, and reports it through a
callback.

The watcher waits without reaping first (waitid with WNOWAIT) and reaps under
the handle's lock. Signal delivery takes the same lock and refuses to signal a
reaped pid, so a signal can never reach an unrelated process that reused it.
"""

from __future__ import annotations

import os
import signal
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from .bootstrap import DescriptorTable, resolve_executable
from .exceptions import ProcessSpawnError, SignalDeliveryError, StarterError

# Dispositions the Python runtime sets to SIG_IGN; a fresh exec would inherit
# them, so they are reset like subprocess(restore_signals=True) does.
_RESTORED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGPIPE", "SIGXFSZ") if hasattr(signal, name)
)


@dataclass(frozen=True)
class ExitStatus:
    """
    Exit status of a worker.

    Attributes:
        returncode: Exit code, or the negated signal number when the worker
            was terminated by a signal (the subprocess convention)
    """

    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def signal(self) -> signal.Signals | None:
        if self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode)
        except ValueError:
            return None

    def __str__(self) -> str:
        sig = self.signal
        if sig is not None:
            return f"killed by {sig.name}"
        if self.returncode < 0:
            return f"killed by signal {-self.returncode}"
        return f"exit code {self.returncode}"


class ChildProcess:
    """
    Handle on one spawned worker process.

    Example:
        proc = ChildProcess(pid, on_exit=lambda p: queue.put(p))
        proc.start_watcher()
        proc.send_signal(signal.SIGTERM)
        status = proc.wait(timeout=5.0)
        if status is None:
            proc.kill()
            status = proc.wait()
    """

    def __init__(
        self, pid: int, on_exit: Callable[[ChildProcess], None] | None = None
    ) -> None:
        self.pid = pid
        self._on_exit = on_exit
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._status: ExitStatus | None = None
        self._error: OSError | None = None
        self._watcher = threading.Thread(
            target=self._watch, name=f"exit-watcher-{pid}", daemon=True
        )

    def __repr__(self) -> str:
        return f"ChildProcess(pid={self.pid}, status={self._status})"

    def start_watcher(self) -> None:
        self._watcher.start()

    @property
    def exited(self) -> bool:
        """True once the exit status has been collected (or failed to be)."""
        return self._done.is_set()

    @property
    def status(self) -> ExitStatus | None:
        return self._status

    def _watch(self) -> None:
        try:
            if hasattr(os, "waitid"):
                os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOWAIT)
            with self._lock:
                _, raw = os.waitpid(self.pid, 0)
                self._status = ExitStatus(os.waitstatus_to_exitcode(raw))
        except OSError as e:
            with self._lock:
                self._error = e
        finally:
            self._done.set()
            if self._on_exit is not None:
                self._on_exit(self)

    def send_signal(self, sig: signal.Signals) -> None:
        """
        Deliver a signal to the worker.

        Raises:
            SignalDeliveryError: If the worker has already been reaped or the
                signal cannot be delivered
        """
        with self._lock:
            if self._status is not None or self._error is not None:
                raise SignalDeliveryError(
                    "worker already exited", pid=self.pid, signal=sig.name
                )
            try:
                os.kill(self.pid, sig)
            except OSError as e:
                raise SignalDeliveryError(
                    "failed to deliver signal to worker", pid=self.pid, signal=sig.name
                ) from e

    def kill(self) -> None:
        """Forcibly terminate the worker with SIGKILL."""
        self.send_signal(signal.SIGKILL)

    def wait(self, timeout: float | None = None) -> ExitStatus | None:
        """
        Wait for the worker to exit.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            The exit status, or None if the timeout expired first

        Raises:
            StarterError: If the exit status could not be collected
        """
        if not self._done.wait(timeout):
            return None
        if self._error is not None:
            raise StarterError(
                "failed to collect worker exit status", pid=self.pid
            ) from self._error
        return self._status


def spawn_process(
    argv: Sequence[str],
    env: Mapping[str, str],
    workdir: str,
    table: DescriptorTable,
    on_exit: Callable[[ChildProcess], None] | None = None,
) -> ChildProcess:
    """
    Re-exec the original program as a new worker.

    The executable is looked up again from argv[0] on every spawn. Entries of
    the descriptor table land on descriptors 3, 4, ... in the child; standard
    streams are inherited as they are.

    The child starts in the master's current working directory, which must
    still be workdir: posix_spawn cannot change directory on the child's
    behalf, and chdir in a multi-threaded master would race with its threads.
    This narrows the re-exec contract on purpose: instead of moving the child
    into workdir, the spawn fails with ProcessSpawnError when the master has
    left it. The master never changes directory itself.

    Args:
        argv: Original argument vector
        env: Complete child environment
        workdir: Working directory captured when the master started
        table: Descriptors to hand over, in slot order
        on_exit: Called from the watcher thread once the exit status is known

    Returns:
        A ChildProcess whose exit watcher is already running

    Raises:
        ProcessSpawnError: If the executable cannot be found or started
        DescriptorError: If a descriptor cannot be prepared for the handoff
    """
    if not argv:
        raise ProcessSpawnError("empty argument vector")

    executable = resolve_executable(argv[0], workdir)
    try:
        cwd = os.getcwd()
    except OSError as e:
        raise ProcessSpawnError("cannot determine working directory") from e
    if os.path.realpath(cwd) != os.path.realpath(workdir):
        raise ProcessSpawnError(
            "master working directory changed since start", cwd=cwd, workdir=workdir
        )

    with table.staged() as staged:
        try:
            pid = os.posix_spawn(
                executable,
                [executable, *argv[1:]],
                dict(env),
                file_actions=table.file_actions(staged),
                setsigdef=_RESTORED_SIGNALS,
            )
        except OSError as e:
            raise ProcessSpawnError(
                "failed to start worker process", executable=executable
            ) from e

    proc = ChildProcess(pid, on_exit=on_exit)
    proc.start_watcher()
    return proc
