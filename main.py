"""Line-oriented TCP greeter: asks each client for a name and greets it."""

import logging
import signal
import sys
from typing import Optional

from greeter.bootstrap.config import ServerConfig, parse_cli_args
from greeter.bootstrap.logging_setup import configure_logging
from greeter.domain.connection_id import ConnectionLoggerAdapter
from greeter.domain.errors import BindError
from greeter.lifecycle.state import ServerLifecycle
from greeter.transport.listener import Listener

CLI_LOGGER = ConnectionLoggerAdapter(logging.getLogger("greeter.cli"), {})

EXIT_OK = 0
EXIT_BIND_FAILURE = 1


def serve(config: ServerConfig) -> int:
    """Run the listener until SIGINT/SIGTERM, then drain and return an exit code."""
    lifecycle = ServerLifecycle()
    listener = Listener(config, lifecycle)

    try:
        listener.start()
    except BindError as error:
        CLI_LOGGER.critical(
            "Server failed to start",
            extra={
                "event": "startup_failed",
                "host": error.host,
                "port": error.port,
                "error": str(error),
            },
        )
        return EXIT_BIND_FAILURE

    def shutdown_handler(signum: int, _frame) -> None:
        CLI_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "shutdown_signal", "signal": signum},
        )
        lifecycle.request_stop()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    listener.run()
    listener.drain(config.shutdown_grace_seconds)
    CLI_LOGGER.info("Server shutdown complete", extra={"event": "shutdown_complete"})
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination, args.log_format == "json")

    config = ServerConfig.from_args(args)
    CLI_LOGGER.info(
        "Starting greeter server",
        extra={
            "event": "server_starting",
            "host": config.host,
            "port": config.port,
            "backlog": config.backlog,
            "read_timeout": config.read_timeout,
            "max_line_bytes": config.max_line_bytes,
            "grace_seconds": config.shutdown_grace_seconds,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
        },
    )
    return serve(config)


if __name__ == "__main__":
    sys.exit(main())
