"""Server lifecycle state and handler thread tracking."""

import logging
import socket
import threading
import time

from greeter.domain.connection_id import ConnectionLoggerAdapter

LIFECYCLE_LOGGER = ConnectionLoggerAdapter(logging.getLogger("greeter.lifecycle"), {})


class ServerLifecycle:
    """Stop flag plus the registry of live handler threads and their sockets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._workers: dict[threading.Thread, socket.socket] = {}

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def request_stop(self) -> bool:
        """Raise the stop flag; returns False if it was already raised.

        Takes no registry lock, so it is safe to call from a signal handler.
        """
        if self._stop_event.is_set():
            return False
        self._stop_event.set()
        LIFECYCLE_LOGGER.info(
            "Shutdown requested", extra={"event": "shutdown_requested"}
        )
        return True

    def register_worker(
        self, thread: threading.Thread, client_socket: socket.socket
    ) -> None:
        """Track a handler thread and the connection it owns."""
        with self._lock:
            self._workers[thread] = client_socket

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Stop tracking a handler thread."""
        with self._lock:
            self._workers.pop(thread, None)

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        """Return the number of live handler threads."""
        with self._lock:
            return len(self._workers)

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all handler threads to finish within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                finished = [
                    w for w in self._workers if w.ident is not None and not w.is_alive()
                ]
                for worker in finished:
                    del self._workers[worker]
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown grace period exceeded",
                    extra={
                        "event": "drain_timeout",
                        "remaining_connections": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                if worker.ident is None:
                    time.sleep(min(0.01, remaining))
                else:
                    worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break

    def abort_workers(self) -> int:
        """Shut down every tracked connection so blocked handlers wake up.

        The owning handler still performs the close.
        """
        with self._lock:
            sockets = list(self._workers.values())
        aborted = 0
        for client_socket in sockets:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                continue
            aborted += 1
        if aborted:
            LIFECYCLE_LOGGER.warning(
                "Forcibly closed remaining connections",
                extra={"event": "connections_aborted", "aborted_connections": aborted},
            )
        return aborted
