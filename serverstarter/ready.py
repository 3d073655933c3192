"""
Readiness handshake between a new worker generation and its master.

The master creates one pipe per generation and hands only the write end to
the child. When the worker is serving it writes a single sentinel byte and
closes its end. Anything else the master observes (end of file, a different
byte, extra bytes, a read error) is a protocol error, and the master will not
retire the previous generation on the strength of it.
"""

from __future__ import annotations

import os
import selectors
import time

from .exceptions import DescriptorError, ProtocolError

READY_BYTE = b"r"
READY_FD = 3  # first descriptor after the standard streams


class ReadyPipe:
    """
    Master side of one generation's readiness channel.

    Example:
        pipe = ReadyPipe.create()
        table.add(pipe.write_fd)
        proc = spawn(...)
        pipe.close_write_end()
        pipe.wait()  # raises ProtocolError unless the worker sent READY_BYTE
    """

    def __init__(self, read_fd: int, write_fd: int) -> None:
        self._read_fd: int | None = read_fd
        self._write_fd: int | None = write_fd

    @classmethod
    def create(cls) -> ReadyPipe:
        """
        Create a fresh pipe.

        Raises:
            DescriptorError: If the pipe cannot be created
        """
        try:
            read_fd, write_fd = os.pipe()
        except OSError as e:
            raise DescriptorError("failed to create readiness pipe") from e
        return cls(read_fd, write_fd)

    @property
    def write_fd(self) -> int:
        if self._write_fd is None:
            raise DescriptorError("readiness pipe write end already closed")
        return self._write_fd

    @property
    def closed(self) -> bool:
        return self._read_fd is None and self._write_fd is None

    def close_write_end(self) -> None:
        """
        Drop the master's copy of the write end.

        Must happen right after the spawn: while the master holds it, the pipe
        never reports end of file, even after the child has exited.
        """
        if self._write_fd is not None:
            fd, self._write_fd = self._write_fd, None
            os.close(fd)

    def close(self) -> None:
        self.close_write_end()
        if self._read_fd is not None:
            fd, self._read_fd = self._read_fd, None
            os.close(fd)

    def wait(self, timeout: float | None = None) -> None:
        """
        Block until the worker signals readiness.

        Reads until end of file, so a worker sending anything more than the
        sentinel, even in a later write, is detected. The worker closes its
        end after the sentinel. The pipe is closed afterwards whatever the
        outcome.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Raises:
            ProtocolError: If readiness was not signalled correctly
        """
        if self._read_fd is None:
            raise ProtocolError("readiness pipe already consumed")

        deadline = None if timeout is None else time.monotonic() + timeout
        data = b""
        try:
            while len(data) <= len(READY_BYTE):
                if deadline is not None:
                    remaining = max(0.0, deadline - time.monotonic())
                    self._wait_readable(self._read_fd, remaining, timeout)
                chunk = os.read(self._read_fd, 2)
                if not chunk:
                    break
                data += chunk
        except OSError as e:
            raise ProtocolError("read error on readiness pipe") from e
        finally:
            self.close()

        if not data:
            raise ProtocolError("worker closed readiness pipe without signalling")
        if data != READY_BYTE:
            raise ProtocolError("unexpected data on readiness pipe", data=data)

    @staticmethod
    def _wait_readable(fd: int, remaining: float, timeout: float) -> None:
        with selectors.DefaultSelector() as sel:
            sel.register(fd, selectors.EVENT_READ)
            if not sel.select(remaining):
                raise ProtocolError(
                    "worker did not signal readiness in time", timeout=timeout
                )

    def __enter__(self) -> ReadyPipe:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def send_ready(fd: int = READY_FD) -> None:
    """
    Tell the master this worker is accepting connections.

    Writes the sentinel byte and closes the descriptor.

    Raises:
        DescriptorError: If the byte could not be written
    """
    try:
        try:
            written = os.write(fd, READY_BYTE)
        finally:
            os.close(fd)
    except OSError as e:
        raise DescriptorError("failed to send ready to master", fd=fd) from e

    if written != len(READY_BYTE):
        raise DescriptorError("short write on readiness pipe", fd=fd)
