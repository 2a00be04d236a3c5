"""Unit tests for the accept loop and dispatcher."""

import errno
import logging
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from greeter.bootstrap.config import ServerConfig
from greeter.domain.errors import BindError
from greeter.transport.listener import Listener


class RecordingHandler:
    """Stand-in connection handler that records calls and releases state."""

    def __init__(self) -> None:
        self.calls = []
        self.done = threading.Event()

    def __call__(self, client_socket, client_address, context) -> None:
        self.calls.append((client_socket, client_address, context))
        if context.lifecycle is not None:
            context.lifecycle.cleanup_worker(threading.current_thread())
        self.done.set()


@pytest.fixture(name="server_socket")
def fixture_server_socket():
    sock = MagicMock(spec=socket.socket)
    sock.getsockname.return_value = ("127.0.0.1", 4000)
    with patch(
        "greeter.transport.listener.create_listening_socket", return_value=sock
    ):
        yield sock


def _listener(handler, **overrides) -> Listener:
    config = ServerConfig(host="127.0.0.1", port=4000, **overrides)
    return Listener(config, handler=handler)


def test_start_logs_server_listening(server_socket, caplog):
    caplog.set_level(logging.INFO, logger="greeter")
    listener = _listener(RecordingHandler())

    assert listener.start() == ("127.0.0.1", 4000)

    record = next(
        r for r in caplog.records if getattr(r, "event", None) == "server_listening"
    )
    assert record.host == "127.0.0.1"
    assert record.port == 4000
    assert record.backlog == listener.config.backlog


def test_second_start_is_rejected(server_socket):
    listener = _listener(RecordingHandler())
    listener.start()

    with pytest.raises(RuntimeError):
        listener.start()
    server_socket.close.assert_not_called()

    listener.shutdown()
    server_socket.close.assert_called_once_with()


def test_run_requires_start():
    with pytest.raises(RuntimeError):
        _listener(RecordingHandler()).run()


def test_accepted_connection_is_dispatched_to_a_thread(server_socket, caplog):
    caplog.set_level(logging.DEBUG, logger="greeter")
    handler = RecordingHandler()
    client = MagicMock(spec=socket.socket)
    server_socket.accept.side_effect = [
        (client, ("127.0.0.1", 12345)),
        OSError(errno.EBADF, "Bad file descriptor"),
    ]
    listener = _listener(handler)
    listener.start()

    listener.run()

    assert handler.done.wait(2.0)
    assert handler.calls[0][0] is client
    assert handler.calls[0][2] is listener.context
    assert listener.lifecycle.wait_for_workers(2.0)
    events = [getattr(r, "event", None) for r in caplog.records]
    assert "client_accepted" in events
    assert "listener_closed" in events
    server_socket.close.assert_called_once_with()


def test_transient_accept_errors_are_retried(server_socket, caplog):
    caplog.set_level(logging.INFO, logger="greeter")
    handler = RecordingHandler()
    server_socket.accept.side_effect = [
        ConnectionAbortedError(errno.ECONNABORTED, "Software caused connection abort"),
        InterruptedError(errno.EINTR, "Interrupted system call"),
        (MagicMock(spec=socket.socket), ("127.0.0.1", 12345)),
        OSError(errno.EBADF, "Bad file descriptor"),
    ]
    listener = _listener(handler)
    listener.start()

    listener.run()

    assert handler.done.wait(2.0)
    assert len(handler.calls) == 1
    errors = [r for r in caplog.records if getattr(r, "event", None) == "accept_error"]
    assert [r.errno for r in errors] == [errno.ECONNABORTED, errno.EINTR]


def test_poll_timeout_exits_once_stop_requested(server_socket):
    server_socket.accept.side_effect = socket.timeout("timed out")
    listener = _listener(RecordingHandler())
    listener.start()
    listener.lifecycle.request_stop()

    listener.run()

    server_socket.accept.assert_called_once_with()


def test_connection_over_limit_is_rejected(server_socket, caplog):
    caplog.set_level(logging.WARNING, logger="greeter")
    handler = RecordingHandler()
    rejected = MagicMock(spec=socket.socket)
    server_socket.accept.side_effect = [
        (rejected, ("10.0.0.2", 5000)),
        OSError(errno.EBADF, "Bad file descriptor"),
    ]
    listener = _listener(handler, max_connections=1)
    assert listener.connection_limiter.acquire("10.0.0.1") is None
    listener.start()

    listener.run()

    assert handler.calls == []
    rejected.close.assert_called_once_with()
    record = next(
        r for r in caplog.records if getattr(r, "event", None) == "connection_rejected"
    )
    assert record.limit_type == "global"
    assert record.client == "10.0.0.2:5000"
    assert record.active_connections == 1


def test_thread_start_failure_closes_connection(server_socket):
    client = MagicMock(spec=socket.socket)
    server_socket.accept.side_effect = [
        (client, ("127.0.0.1", 12345)),
        OSError(errno.EBADF, "Bad file descriptor"),
    ]
    listener = _listener(RecordingHandler())
    listener.start()

    with patch("greeter.transport.listener.threading.Thread") as thread_cls:
        thread_cls.return_value.start.side_effect = RuntimeError("thread limit")
        listener.run()

    client.close.assert_called_once_with()
    assert listener.active_connections == 0


def test_shutdown_closes_listener_without_waiting(server_socket):
    listener = _listener(RecordingHandler())
    listener.start()

    assert listener.shutdown() is True
    assert listener.lifecycle.should_stop()
    server_socket.shutdown.assert_called_once_with(socket.SHUT_RDWR)
    server_socket.close.assert_called_once_with()

    listener.shutdown()
    server_socket.close.assert_called_once_with()


def test_shutdown_with_wait_drains(server_socket):
    listener = _listener(RecordingHandler())
    listener.start()

    with patch.object(listener, "drain", return_value=False) as drain:
        assert listener.shutdown(wait=True, timeout=0.5) is False
    drain.assert_called_once_with(0.5)


def test_drain_aborts_leftover_connections():
    listener = _listener(RecordingHandler())
    listener.lifecycle = MagicMock()
    listener.lifecycle.wait_for_workers.return_value = False

    assert listener.drain(0.1) is False
    listener.lifecycle.abort_workers.assert_called_once_with()


def test_start_propagates_bind_error():
    listener = _listener(RecordingHandler())
    error = BindError("127.0.0.1", 4000, OSError(errno.EADDRINUSE, "in use"))

    with patch(
        "greeter.transport.listener.create_listening_socket", side_effect=error
    ):
        with pytest.raises(BindError):
            listener.start()
    assert listener.address is None
