"""Error taxonomy for the greeter service."""

import errno
from typing import Optional

# errno values meaning the listening socket itself is gone.
_LISTENER_CLOSED_ERRNOS = {errno.EBADF, errno.EINVAL, errno.ENOTSOCK}


class GreeterError(Exception):
    """Base class for every error raised by the service."""


class BindError(GreeterError):
    """The listening socket could not be bound."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        super().__init__(f"Cannot bind {host}:{port}: {cause.strerror or cause}")
        self.host = host
        self.port = port
        self.cause = cause


class AcceptError(GreeterError):
    """An accept call failed; ``fatal`` marks a closed listener."""

    def __init__(self, cause: OSError, fatal: bool) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.fatal = fatal

    @classmethod
    def classify(cls, cause: OSError, stopping: bool = False) -> "AcceptError":
        """Wrap an accept failure, deciding whether the loop can continue."""
        fatal = stopping or cause.errno in _LISTENER_CLOSED_ERRNOS
        return cls(cause, fatal)


class ConnectionIOError(GreeterError):
    """Read or write failure on a single client connection."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ReadTimeout(ConnectionIOError):
    """The client did not send a full line before the read deadline."""


class WriteTimeout(ConnectionIOError):
    """The client stopped reading and a send did not finish in time."""


class LineTooLong(ConnectionIOError):
    """The client sent more bytes than allowed without a line terminator."""


class ClientDisconnect(GreeterError):
    """The peer closed its side of the stream before sending a full line."""

    def __init__(self, partial: bytes = b"") -> None:
        super().__init__("Client closed the connection")
        self.partial = partial
