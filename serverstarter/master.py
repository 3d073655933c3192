"""
Master supervision loop.

The master keeps exactly one current worker generation. It reacts to three
kinds of events, one at a time, in arrival order:

    SIGHUP              reload: start a new generation, wait until it is
                        ready, then retire the old one
    SIGINT / SIGTERM    stop: terminate the current generation and return
    worker exit         restart when the current generation exited on its
                        own; exits of retired generations are ignored

OS signal handlers and exit watcher threads never act themselves: they only
post events to the loop's queue. The loop takes the spawn operation as a
callable, so its state machine can be driven without real processes.
"""

from __future__ import annotations

import enum
import queue
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .config import StarterConfig
from .duration import delta_str
from .exceptions import ChildExitError, SignalDeliveryError, StarterError
from .log import Logger
from .process import ExitStatus
from .ready import ReadyPipe

# Longest time the loop blocks on its queue before looking again
POLL_INTERVAL = 1.0

RELOAD_SIGNALS = (signal.SIGHUP,)
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class State(enum.Enum):
    """Master loop states."""

    INITIALIZING = "initializing"
    STEADY = "steady"
    RELOADING = "reloading"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ProcessHandle(Protocol):
    """The operations the loop needs on a worker process."""

    pid: int

    @property
    def exited(self) -> bool: ...

    @property
    def status(self) -> ExitStatus | None: ...

    def send_signal(self, sig: signal.Signals) -> None: ...

    def kill(self) -> None: ...

    def wait(self, timeout: float | None = None) -> ExitStatus | None: ...


@dataclass(frozen=True)
class SignalEvent:
    signum: signal.Signals


@dataclass(frozen=True)
class ExitEvent:
    process: ProcessHandle


Event = SignalEvent | ExitEvent


@dataclass
class Generation:
    """
    One spawned worker.

    Attributes:
        seq: Sequence number, 0 for the first worker
        process: Handle on the worker process
        ready: Readiness pipe read end, or None without the handshake
    """

    seq: int
    process: ProcessHandle
    ready: ReadyPipe | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait_ready(self, timeout: float | None = None) -> None:
        """
        Block until the worker reports readiness.

        Without the handshake a generation is ready once spawned.

        Raises:
            ProtocolError: If readiness was not signalled correctly
        """
        if self.ready is not None:
            self.ready.wait(timeout)


# spawn(seq, on_exit) starts generation seq; on_exit is called with the
# process handle once it has exited.
SpawnFunc = Callable[[int, Callable[[Any], None]], Generation]


class MasterLoop:
    """
    Event loop supervising worker generations.

    Example:
        loop = MasterLoop(config, spawn, lg)
        signal.signal(signal.SIGHUP, loop.handle_signal)
        loop.run()  # returns after SIGINT/SIGTERM once the worker has exited
    """

    def __init__(
        self,
        config: StarterConfig,
        spawn: SpawnFunc,
        lg: Logger,
        events: queue.SimpleQueue[Event] | None = None,
    ) -> None:
        self._config = config
        self._spawn = spawn
        self._lg = lg
        self._events: queue.SimpleQueue[Event] = (
            events if events is not None else queue.SimpleQueue()
        )
        self._state = State.INITIALIZING
        self._current: Generation | None = None
        self._next_seq = 0

    @property
    def state(self) -> State:
        return self._state

    @property
    def current(self) -> Generation | None:
        return self._current

    def post(self, event: Event) -> None:
        """Queue an event. Safe to call from signal handlers and threads."""
        self._events.put(event)

    def handle_signal(self, signum: int, frame: Any = None) -> None:
        """Signal handler posting the signal to the loop."""
        self.post(SignalEvent(signal.Signals(signum)))

    def _on_exit(self, process: ProcessHandle) -> None:
        self.post(ExitEvent(process))

    def run(self) -> None:
        """
        Start the first generation and supervise until stopped.

        Raises:
            StarterError: On any failure other than a worker crash, including
                ChildExitError when the last worker exits with a failure
        """
        try:
            self._current = self._start_generation()
            self._state = State.STEADY
            while self._state is not State.STOPPED:
                self._dispatch(self._next_event())
        finally:
            self._state = State.STOPPED

    def _next_event(self) -> Event:
        while True:
            try:
                return self._events.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue

    def _dispatch(self, event: Event) -> None:
        if isinstance(event, ExitEvent):
            self._handle_exit(event.process)
        elif event.signum in RELOAD_SIGNALS:
            self._reload()
        elif event.signum in STOP_SIGNALS:
            self._stop(event.signum)
        else:
            self._lg.debug("ignoring signal", extra={"signal": event.signum.name})

    def _start_generation(self) -> Generation:
        seq = self._next_seq
        self._next_seq += 1

        start = time.monotonic()
        gen = self._spawn(seq, self._on_exit)
        self._lg.info(
            "started worker", extra={"generation": seq, "worker_pid": gen.pid}
        )

        try:
            gen.wait_ready(self._config.ready_timeout)
        except StarterError as e:
            self._lg.error(
                "worker failed to become ready",
                extra={"generation": seq, "worker_pid": gen.pid, "exception": e},
            )
            self._discard(gen)
            raise

        self._lg.info(
            "worker ready",
            extra={
                "generation": seq,
                "worker_pid": gen.pid,
                "after": delta_str(time.monotonic() - start),
            },
        )
        return gen

    def _discard(self, gen: Generation) -> None:
        """Kill a generation that never became ready."""
        if gen.process.exited:
            return
        try:
            gen.process.kill()
            gen.process.wait()
        except StarterError as e:
            self._lg.warning(
                "failed to kill unready worker",
                extra={"worker_pid": gen.pid, "exception": e},
            )

    def _reload(self) -> None:
        assert self._current is not None
        self._state = State.RELOADING
        old = self._current
        self._lg.info(
            "reloading", extra={"generation": old.seq, "worker_pid": old.pid}
        )

        new = self._start_generation()
        self._retire(old)

        self._current = new
        self._state = State.STEADY
        self._lg.info(
            "reload complete", extra={"generation": new.seq, "worker_pid": new.pid}
        )

    def _retire(self, gen: Generation) -> None:
        sig = self._config.shutdown_signal
        timeout = self._config.shutdown_timeout

        if not self._deliver(gen, sig):
            self._lg.info(
                "old worker already exited",
                extra={"generation": gen.seq, "status": gen.process.status},
            )
            return

        self._lg.debug(
            "signalled old worker",
            extra={"generation": gen.seq, "worker_pid": gen.pid, "signal": sig.name},
        )
        try:
            status = gen.process.wait(timeout)
        except StarterError as e:
            self._lg.error(
                "failed to wait for old worker",
                extra={"generation": gen.seq, "exception": e},
            )
            return

        if status is None:
            self._lg.warning(
                "old worker did not exit in time, killing",
                extra={
                    "generation": gen.seq,
                    "worker_pid": gen.pid,
                    "timeout": delta_str(timeout),
                },
            )
            self._deliver(gen, signal.SIGKILL)
            try:
                status = gen.process.wait()
            except StarterError as e:
                self._lg.error(
                    "failed to wait for killed worker",
                    extra={"generation": gen.seq, "exception": e},
                )
                return

        self._lg.info(
            "old worker exited",
            extra={"generation": gen.seq, "worker_pid": gen.pid, "status": status},
        )

    def _deliver(self, gen: Generation, sig: signal.Signals) -> bool:
        """
        Send a signal, returning False if the worker had already exited.

        Raises:
            SignalDeliveryError: If a live worker could not be signalled
        """
        try:
            gen.process.send_signal(sig)
        except SignalDeliveryError:
            if gen.process.exited:
                return False
            raise
        return True

    def _stop(self, signum: signal.Signals) -> None:
        assert self._current is not None
        self._state = State.STOPPING
        gen = self._current
        self._lg.info(
            "stopping",
            extra={"signal": signum.name, "generation": gen.seq, "worker_pid": gen.pid},
        )

        self._deliver(gen, signal.SIGTERM)
        status = gen.process.wait()
        self._state = State.STOPPED

        self._lg.info(
            "worker stopped",
            extra={"generation": gen.seq, "worker_pid": gen.pid, "status": status},
        )
        if status is not None and not status.success:
            raise ChildExitError(
                "worker exited with failure",
                returncode=status.returncode,
                pid=gen.pid,
                status=status,
            )

    def _handle_exit(self, process: ProcessHandle) -> None:
        gen = self._current
        if gen is None or process is not gen.process:
            self._lg.trace(
                "ignoring exit of retired worker", extra={"worker_pid": process.pid}
            )
            return

        self._lg.warning(
            "worker exited unexpectedly, restarting",
            extra={
                "generation": gen.seq,
                "worker_pid": gen.pid,
                "status": process.status,
            },
        )
        self._current = self._start_generation()


def install_signal_handlers(
    loop: MasterLoop,
) -> dict[signal.Signals, Any]:
    """
    Route reload and stop signals to the loop.

    Must be called from the main thread.

    Returns:
        The previous handlers, for restore_signal_handlers()
    """
    previous = {}
    for sig in RELOAD_SIGNALS + STOP_SIGNALS:
        previous[sig] = signal.signal(sig, loop.handle_signal)
    return previous


def restore_signal_handlers(previous: dict[signal.Signals, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)
