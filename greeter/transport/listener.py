"""Listening socket ownership and the connection accept loop."""

import errno
import logging
import socket
import threading
import time
from typing import Callable, Optional

from greeter.bootstrap.config import ServerConfig
from greeter.bootstrap.socket_factory import create_listening_socket
from greeter.domain.connection_id import ConnectionLoggerAdapter
from greeter.domain.errors import AcceptError
from greeter.domain.session import format_peer
from greeter.lifecycle.state import ServerLifecycle
from greeter.transport.connection_limiter import ConnectionLimiter
from greeter.transport.context import HandlerContext
from greeter.transport.handler import handle_connection

LISTENER_LOGGER = ConnectionLoggerAdapter(
    logging.getLogger("greeter.transport.listener"), {}
)

# Back off briefly when the process runs out of descriptors.
_EXHAUSTION_ERRNOS = {errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM}
EXHAUSTION_BACKOFF_SECONDS = 0.1

ConnectionCallable = Callable[[socket.socket, tuple, HandlerContext], object]


class Listener:
    """Accepts connections and runs each one on its own handler thread."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        lifecycle: Optional[ServerLifecycle] = None,
        handler: ConnectionCallable = handle_connection,
    ) -> None:
        self.config = config or ServerConfig()
        self.lifecycle = lifecycle or ServerLifecycle()
        self._handler = handler
        self._socket: Optional[socket.socket] = None
        self._socket_lock = threading.Lock()
        self.address: Optional[tuple] = None
        self.connection_limiter = ConnectionLimiter(
            self.config.max_connections, self.config.max_connections_per_ip
        )
        self.context = HandlerContext(
            config=self.config,
            lifecycle=self.lifecycle,
            connection_limiter=(
                self.connection_limiter if self.connection_limiter.enabled else None
            ),
        )

    @property
    def active_connections(self) -> int:
        return self.lifecycle.active_worker_count()

    def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        backlog: Optional[int] = None,
    ) -> tuple:
        """Bind the listening socket and return the bound address."""
        host = self.config.host if host is None else host
        port = self.config.port if port is None else port
        backlog = self.config.backlog if backlog is None else backlog
        with self._socket_lock:
            if self._socket is not None:
                raise RuntimeError("Listener is already started")

        server_socket = create_listening_socket(
            host, port, backlog, self.config.accept_poll_interval
        )
        with self._socket_lock:
            self._socket = server_socket
        self.address = server_socket.getsockname()

        LISTENER_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "host": self.address[0],
                "port": self.address[1],
                "backlog": backlog,
                "read_timeout": self.config.read_timeout,
                "max_line_bytes": self.config.max_line_bytes,
            },
        )
        return self.address

    def _dispatch(self, client_socket: socket.socket, client_address) -> None:
        client = format_peer(client_address)
        if LISTENER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            LISTENER_LOGGER.debug(
                "Client connection accepted",
                extra={"event": "client_accepted", "client": client},
            )

        limiter = self.context.connection_limiter
        if limiter is not None:
            limit_type = limiter.acquire(client_address[0])
            if limit_type is not None:
                LISTENER_LOGGER.warning(
                    "Connection limit reached",
                    extra={
                        "event": "connection_rejected",
                        "client": client,
                        "limit_type": limit_type,
                        "active_connections": limiter.active,
                    },
                )
                client_socket.close()
                return

        thread = threading.Thread(
            target=self._handler,
            args=(client_socket, client_address, self.context),
            name=f"greeter-handler-{client}",
            daemon=False,
        )
        self.lifecycle.register_worker(thread, client_socket)
        try:
            thread.start()
        except RuntimeError as error:
            self.lifecycle.cleanup_worker(thread)
            if limiter is not None:
                limiter.release(client_address[0])
            client_socket.close()
            LISTENER_LOGGER.error(
                "Could not start handler thread",
                extra={
                    "event": "handler_error",
                    "client": client,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )

    def _accept(self, server_socket: socket.socket):
        """Return an accepted connection, None to poll again, or raise AcceptError."""
        try:
            return server_socket.accept()
        except socket.timeout:
            if self.lifecycle.should_stop():
                raise AcceptError(
                    OSError(errno.EBADF, "listener closed"), fatal=True
                ) from None
            return None
        except OSError as error:
            raise AcceptError.classify(error, self.lifecycle.should_stop()) from error

    def run(self) -> None:
        """Accept connections until shutdown closes the listener."""
        with self._socket_lock:
            server_socket = self._socket
        if server_socket is None:
            if self.lifecycle.should_stop():
                return
            raise RuntimeError("Listener.start() must be called before run()")

        try:
            while True:
                try:
                    accepted = self._accept(server_socket)
                except AcceptError as error:
                    if error.fatal:
                        LISTENER_LOGGER.info(
                            "Listener closed, accept loop exiting",
                            extra={"event": "listener_closed"},
                        )
                        break
                    LISTENER_LOGGER.error(
                        "Socket accept failed",
                        extra={
                            "event": "accept_error",
                            "error_type": type(error.cause).__name__,
                            "errno": error.cause.errno,
                        },
                    )
                    if error.cause.errno in _EXHAUSTION_ERRNOS:
                        time.sleep(EXHAUSTION_BACKOFF_SECONDS)
                    continue

                if accepted is None:
                    continue
                client_socket, client_address = accepted
                if self.lifecycle.should_stop():
                    client_socket.close()
                    continue
                self._dispatch(client_socket, client_address)
        finally:
            self._close_socket()
            LISTENER_LOGGER.info(
                "Accept loop stopped",
                extra={
                    "event": "server_stopped",
                    "active_connections": self.active_connections,
                },
            )

    def _close_socket(self) -> None:
        with self._socket_lock:
            server_socket, self._socket = self._socket, None
        if server_socket is None:
            return
        try:
            server_socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        server_socket.close()

    def drain(self, timeout: float) -> bool:
        """Wait for in-flight handlers; abort leftovers when time runs out."""
        LISTENER_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "drain_waiting",
                "grace_seconds": timeout,
                "active_connections": self.active_connections,
            },
        )
        if self.lifecycle.wait_for_workers(timeout):
            return True
        self.lifecycle.abort_workers()
        return False

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """Stop accepting and release the port.

        In-flight handlers keep running. With ``wait`` the call drains for
        ``timeout`` seconds (the configured grace period by default) and
        returns whether every handler finished in time.
        """
        self.lifecycle.request_stop()
        self._close_socket()
        if not wait:
            return True
        if timeout is None:
            timeout = self.config.shutdown_grace_seconds
        return self.drain(timeout)
