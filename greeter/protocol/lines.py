"""Newline-delimited text framing over a stream socket."""

import socket
from typing import Optional

from greeter.domain.errors import (
    ClientDisconnect,
    ConnectionIOError,
    LineTooLong,
    ReadTimeout,
    WriteTimeout,
)

LINE_TERMINATOR = b"\n"
ENCODING = "utf-8"
RECV_CHUNK_SIZE = 4096

WELCOME_LINE = "Welcome. Name please?"
ACKNOWLEDGE_TEMPLATE = "Nice to meet you {name}"
FAREWELL_LINE = "Bye now!"


def encode_line(text: str) -> bytes:
    """Encode text as a single terminated line."""
    return text.encode(ENCODING) + LINE_TERMINATOR


def decode_line(raw: bytes) -> str:
    """Decode a received line, dropping the terminator and trailing whitespace."""
    return raw.decode(ENCODING, errors="replace").rstrip()


def acknowledgement(name: str) -> str:
    return ACKNOWLEDGE_TEMPLATE.format(name=name)


def write_line(client_socket: socket.socket, text: str) -> int:
    """Send one line, translating socket failures into ConnectionIOError."""
    payload = encode_line(text)
    try:
        client_socket.sendall(payload)
    except socket.timeout as error:
        raise WriteTimeout("Write deadline exceeded", error) from error
    except OSError as error:
        raise ConnectionIOError(f"Write failed: {error}", error) from error
    return len(payload)


class LineReader:
    """Buffered reader that yields one terminated line per call.

    Bytes received past a terminator stay buffered for the next call. A
    ``max_line_bytes`` of zero disables the length limit.
    """

    def __init__(
        self,
        client_socket: socket.socket,
        max_line_bytes: int = 0,
        chunk_size: int = RECV_CHUNK_SIZE,
    ) -> None:
        self._socket = client_socket
        self._max_line_bytes = max(0, max_line_bytes)
        self._chunk_size = chunk_size
        self._buffer = b""

    def _take_line(self) -> Optional[bytes]:
        index = self._buffer.find(LINE_TERMINATOR)
        if index < 0:
            return None
        end = index + len(LINE_TERMINATOR)
        if self._max_line_bytes and end > self._max_line_bytes:
            raise LineTooLong(f"Line exceeds {self._max_line_bytes} bytes")
        line, self._buffer = self._buffer[:end], self._buffer[end:]
        return line

    def read_line(self) -> bytes:
        """Return the next line including its terminator.

        Raises ClientDisconnect when the stream ends first, ReadTimeout when
        the socket timeout expires, and LineTooLong when the limit is hit.
        """
        while True:
            line = self._take_line()
            if line is not None:
                return line
            if self._max_line_bytes and len(self._buffer) >= self._max_line_bytes:
                raise LineTooLong(f"Line exceeds {self._max_line_bytes} bytes")

            try:
                chunk = self._socket.recv(self._chunk_size)
            except socket.timeout as error:
                raise ReadTimeout("Read deadline exceeded", error) from error
            except OSError as error:
                raise ConnectionIOError(f"Read failed: {error}", error) from error

            if not chunk:
                partial, self._buffer = self._buffer, b""
                raise ClientDisconnect(partial)
            self._buffer += chunk
