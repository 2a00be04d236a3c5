"""Per-connection greeting exchange."""

import enum
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from greeter.domain.connection_id import (
    ConnectionLoggerAdapter,
    clear_connection_id,
    generate_connection_id,
    set_connection_id,
)
from greeter.domain.errors import ClientDisconnect, ConnectionIOError
from greeter.domain.session import Session, format_peer
from greeter.protocol.lines import (
    FAREWELL_LINE,
    WELCOME_LINE,
    LineReader,
    acknowledgement,
    decode_line,
    write_line,
)
from greeter.transport.context import HandlerContext

HANDLER_LOGGER = ConnectionLoggerAdapter(
    logging.getLogger("greeter.transport.handler"), {}
)


class HandlerState(enum.Enum):
    GREETING = "greeting"
    AWAIT_NAME = "await_name"
    GREET2 = "greet2"
    FAREWELL = "farewell"
    CLOSING = "closing"


@dataclass
class HandlerOutcome:
    """What happened on one connection once the handler finished."""

    session: Session
    last_state: HandlerState
    disconnected: bool = False
    error: Optional[BaseException] = None
    bytes_out: int = 0

    @property
    def completed(self) -> bool:
        return self.last_state is HandlerState.FAREWELL and self.error is None


class ConnectionHandler:
    """Runs the welcome/name/acknowledge/farewell exchange on one socket.

    ``state`` names the step in progress; once ``run`` returns it is always
    CLOSING and the socket has been closed exactly once.
    """

    def __init__(
        self,
        client_socket: socket.socket,
        client_address,
        context: Optional[HandlerContext] = None,
    ) -> None:
        self._socket = client_socket
        self._context = context or HandlerContext()
        self._closed = False
        self.state = HandlerState.GREETING
        self.session = Session(
            peer=format_peer(client_address),
            connection_id=generate_connection_id(),
        )
        self._reader = LineReader(
            client_socket, max_line_bytes=self._context.config.max_line_bytes
        )
        self._bytes_out = 0

    def _write(self, text: str) -> None:
        self._bytes_out += write_line(self._socket, text)

    def _exchange(self) -> None:
        self.state = HandlerState.GREETING
        self._write(WELCOME_LINE)

        self.state = HandlerState.AWAIT_NAME
        self.session.name = decode_line(self._reader.read_line())
        HANDLER_LOGGER.debug(
            "Name received",
            extra={"event": "name_received", "client": self.session.peer},
        )

        self.state = HandlerState.GREET2
        self._write(acknowledgement(self.session.name))

        self.state = HandlerState.FAREWELL
        self._write(FAREWELL_LINE)

    def close(self) -> None:
        """Close the connection; repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        try:
            self._socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        self._socket.close()
        HANDLER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": self.session.peer},
        )

    def run(self) -> HandlerOutcome:
        """Drive the exchange, containing every failure to this connection."""
        outcome = HandlerOutcome(session=self.session, last_state=self.state)
        started = time.monotonic()
        set_connection_id(self.session.connection_id)
        timeout = self._context.config.socket_timeout
        HANDLER_LOGGER.debug(
            "Handler started",
            extra={"event": "handler_started", "client": self.session.peer},
        )

        try:
            self._socket.settimeout(timeout)
            self._exchange()
        except ClientDisconnect as disconnect:
            outcome.disconnected = True
            HANDLER_LOGGER.debug(
                "Client disconnected",
                extra={
                    "event": "client_disconnected",
                    "client": self.session.peer,
                    "state": self.state.value,
                    "partial_bytes": len(disconnect.partial),
                },
            )
        except (ConnectionIOError, OSError) as error:
            outcome.error = error
            HANDLER_LOGGER.warning(
                "Error handling client connection",
                extra={
                    "event": "connection_error",
                    "client": self.session.peer,
                    "state": self.state.value,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
        except Exception as error:  # pylint: disable=broad-except
            outcome.error = error
            HANDLER_LOGGER.error(
                "Unexpected error in handler",
                extra={
                    "event": "handler_error",
                    "client": self.session.peer,
                    "state": self.state.value,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
                exc_info=True,
            )
        finally:
            outcome.last_state = self.state
            outcome.bytes_out = self._bytes_out
            self.state = HandlerState.CLOSING
            self.close()
            HANDLER_LOGGER.debug(
                "Handler finished",
                extra={
                    "event": "handler_finished",
                    "client": self.session.peer,
                    "state": outcome.last_state.value,
                    "bytes_out": outcome.bytes_out,
                    "duration_ms": round((time.monotonic() - started) * 1000, 3),
                },
            )
            clear_connection_id()
        return outcome


def handle_connection(
    client_socket: socket.socket,
    client_address,
    context: HandlerContext,
) -> HandlerOutcome:
    """Thread entry point: run the handler, then release shared bookkeeping."""
    handler = ConnectionHandler(client_socket, client_address, context)
    try:
        return handler.run()
    finally:
        if context.connection_limiter is not None:
            context.connection_limiter.release(client_address[0])
        if context.lifecycle is not None:
            context.lifecycle.cleanup_worker(threading.current_thread())
