"""Dependencies shared by handler threads."""

from dataclasses import dataclass, field
from typing import Optional

from greeter.bootstrap.config import ServerConfig
from greeter.lifecycle.state import ServerLifecycle
from greeter.transport.connection_limiter import ConnectionLimiter


@dataclass
class HandlerContext:
    """Read-only settings plus the thread-safe registries handlers report to."""

    config: ServerConfig = field(default_factory=ServerConfig)
    lifecycle: Optional[ServerLifecycle] = None
    connection_limiter: Optional[ConnectionLimiter] = None
