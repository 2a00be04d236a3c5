"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value is not None else default


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3939
DEFAULT_BACKLOG = _env_int("GREETER_BACKLOG", 128)
DEFAULT_READ_TIMEOUT = _env_float("GREETER_READ_TIMEOUT", 0.0)
DEFAULT_MAX_LINE_BYTES = _env_int("GREETER_MAX_LINE_BYTES", 0)
DEFAULT_MAX_CONNECTIONS = _env_int("GREETER_MAX_CONNECTIONS", 0)
DEFAULT_MAX_CONNECTIONS_PER_IP = _env_int("GREETER_MAX_CONNECTIONS_PER_IP", 0)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_float("GREETER_SHUTDOWN_GRACE_SECONDS", 10.0)
ACCEPT_POLL_INTERVAL = 0.5


@dataclass
class ServerConfig:
    """Listener, handler and shutdown settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = DEFAULT_BACKLOG
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_connections_per_ip: int = DEFAULT_MAX_CONNECTIONS_PER_IP
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    accept_poll_interval: float = ACCEPT_POLL_INTERVAL

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ServerConfig":
        return cls(
            host=args.host,
            port=args.port,
            backlog=args.backlog,
            read_timeout=args.read_timeout,
            max_line_bytes=args.max_line_bytes,
            max_connections=args.max_connections,
            max_connections_per_ip=args.max_connections_per_ip,
            shutdown_grace_seconds=args.shutdown_grace_seconds,
        )

    @property
    def socket_timeout(self):
        """Per-connection socket timeout, or None when reads may block forever."""
        return self.read_timeout if self.read_timeout > 0 else None


def _port(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {value}")
    return number


def _non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {value}")
    return number


def _add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default=os.getenv("HOST", DEFAULT_HOST))
    parser.add_argument(
        "--port",
        type=_port,
        default=os.getenv("PORT", str(DEFAULT_PORT)),
    )
    parser.add_argument(
        "--backlog",
        type=_non_negative_int,
        default=DEFAULT_BACKLOG,
        help="Pending connection queue size for the listening socket",
    )
    parser.add_argument(
        "--read-timeout",
        type=_non_negative_float,
        default=DEFAULT_READ_TIMEOUT,
        help="Seconds to wait for a client line (0 waits forever)",
    )
    parser.add_argument(
        "--max-line-bytes",
        type=_non_negative_int,
        default=DEFAULT_MAX_LINE_BYTES,
        help="Longest accepted client line in bytes (0 for unlimited)",
    )
    parser.add_argument(
        "--max-connections",
        type=_non_negative_int,
        default=DEFAULT_MAX_CONNECTIONS,
        help="Maximum concurrent connections (0 for unlimited)",
    )
    parser.add_argument(
        "--max-connections-per-ip",
        type=_non_negative_int,
        default=DEFAULT_MAX_CONNECTIONS_PER_IP,
        help="Maximum concurrent connections per client IP (0 for unlimited)",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=_non_negative_float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Seconds to let in-flight connections finish on shutdown",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("GREETER_LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=os.getenv("GREETER_LOG_DESTINATION", "stdout"),
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv("GREETER_LOG_FORMAT", "json").lower(),
        choices=["json", "text"],
        type=str.lower,
    )


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments; a subcommand is required."""
    parser = argparse.ArgumentParser(
        prog="line-greeter", description="Line-oriented TCP greeter service"
    )
    subcommands = parser.add_subparsers(dest="command", required=True)
    serve = subcommands.add_parser("serve", help="Accept connections until stopped")
    _add_serve_arguments(serve)
    return parser.parse_args(argv)
