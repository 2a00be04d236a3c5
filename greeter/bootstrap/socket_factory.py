"""Listening socket creation."""

import logging
import socket

from greeter.domain.connection_id import ConnectionLoggerAdapter
from greeter.domain.errors import BindError

SOCKET_LOGGER = ConnectionLoggerAdapter(logging.getLogger("greeter.socket"), {})


def _address_family(host: str, port: int) -> int:
    """Pick AF_INET or AF_INET6 from what the bind address resolves to."""
    if not host:
        return socket.AF_INET
    infos = socket.getaddrinfo(
        host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )
    return infos[0][0]


def create_listening_socket(
    host: str, port: int, backlog: int, poll_interval: float
) -> socket.socket:
    """Bind and listen on host:port, raising BindError when unavailable.

    The socket gets a timeout of ``poll_interval`` so the accept loop can
    re-check the stop flag even where closing the socket does not wake it.
    """
    try:
        family = _address_family(host, port)
        server_socket = socket.create_server(
            (host, port), family=family, backlog=backlog
        )
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": host,
                "port": port,
                "errno": error.errno,
                "error": error.strerror or str(error),
            },
        )
        raise BindError(host, port, error) from error
    server_socket.settimeout(poll_interval)
    return server_socket
