"""Transient per-connection protocol state."""

from dataclasses import dataclass
from typing import Optional


def format_peer(address) -> str:
    """Render a socket address tuple as ``host:port``."""
    if isinstance(address, tuple) and len(address) >= 2:
        host = address[0]
        if ":" in str(host):
            return f"[{host}]:{address[1]}"
        return f"{host}:{address[1]}"
    return str(address)


@dataclass
class Session:
    """State captured while talking to one client."""

    peer: str
    connection_id: str
    name: Optional[str] = None
