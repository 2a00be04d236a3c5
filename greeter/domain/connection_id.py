"""Per-connection identifiers carried through logging via contextvars."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

_connection_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "connection_id", default=None
)


def generate_connection_id() -> str:
    """Return a short random identifier for a new connection."""
    return uuid.uuid4().hex[:12]


def get_connection_id() -> Optional[str]:
    """Retrieve the connection id bound to the current thread context."""
    return _connection_id_var.get()


def set_connection_id(connection_id: str) -> None:
    """Bind a connection id to the current thread context."""
    _connection_id_var.set(connection_id)


def clear_connection_id() -> None:
    """Unbind the connection id from the current thread context."""
    _connection_id_var.set(None)


class ConnectionLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps records with the connection id and component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})

        connection_id = get_connection_id()
        extra.setdefault(
            "connection_id", connection_id if connection_id is not None else "-"
        )

        logger_name = self.logger.name
        if logger_name.startswith("greeter."):
            extra["component"] = logger_name[len("greeter.") :]
        else:
            extra["component"] = logger_name

        kwargs["extra"] = extra
        return msg, kwargs
