"""
Exception hierarchy for the server starter.

All errors raised by the starter derive from StarterError, so a serving
application can catch every supervision failure with a single except clause
while still telling the categories apart.
"""

from typing import Any


class StarterError(Exception):
    """
    Base exception for all server starter errors.

    Example:
        try:
            starter.run_master(listener)
        except StarterError as e:
            lg.error("master failed", extra={"exception": e})
    """

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error message
            **context: Additional context information (stored in self.context)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigurationError(StarterError):
    """
    Configuration-related errors.

    Examples:
        - Discriminator variable holds a non-integer or negative value
        - Unknown signal name or invalid timeout in the starter options
        - Unreadable or malformed YAML configuration file
    """

    pass


class DescriptorError(StarterError):
    """
    I/O errors on inherited descriptors.

    Examples:
        - Inherited descriptor is not a socket
        - Readiness pipe could not be created or written
    """

    pass


class ProcessSpawnError(StarterError):
    """
    Raised when a worker generation cannot be started.

    Examples:
        - Original executable no longer found on the path
        - posix_spawn failed
    """

    pass


class SignalDeliveryError(StarterError):
    """Raised when a signal cannot be delivered to a live worker."""

    pass


class ProtocolError(StarterError):
    """
    Readiness handshake errors.

    Examples:
        - Worker exited without signalling readiness
        - Unexpected byte or more than one byte on the readiness pipe
        - Readiness not signalled within the configured ready timeout
    """

    pass


class ChildExitError(StarterError):
    """Raised when the last worker generation exits with a failure on stop."""

    def __init__(self, message: str, returncode: int, **context: Any) -> None:
        super().__init__(message, returncode=returncode, **context)
        self.returncode = returncode
