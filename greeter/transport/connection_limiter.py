"""Admission control for concurrent connections."""

import threading
from typing import Optional


class ConnectionLimiter:
    """Caps concurrent connections globally and per client IP.

    A limit of zero disables that cap.
    """

    def __init__(
        self, max_connections: int = 0, max_connections_per_ip: int = 0
    ) -> None:
        self._max_connections = max(0, max_connections)
        self._max_connections_per_ip = max(0, max_connections_per_ip)
        self._lock = threading.Lock()
        self._active = 0
        self._per_ip: dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return bool(self._max_connections or self._max_connections_per_ip)

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def acquire(self, client_ip: str) -> Optional[str]:
        """Claim a slot for client_ip; returns the exhausted limit or None."""
        with self._lock:
            per_ip_active = self._per_ip.get(client_ip, 0)
            if self._max_connections and self._active >= self._max_connections:
                return "global"
            if (
                self._max_connections_per_ip
                and per_ip_active >= self._max_connections_per_ip
            ):
                return "ip"
            self._active += 1
            self._per_ip[client_ip] = per_ip_active + 1
            return None

    def release(self, client_ip: str) -> None:
        """Give back a slot claimed by acquire."""
        with self._lock:
            per_ip_active = self._per_ip.get(client_ip, 0)
            if per_ip_active == 0:
                return
            self._active -= 1
            if per_ip_active == 1:
                del self._per_ip[client_ip]
            else:
                self._per_ip[client_ip] = per_ip_active - 1
