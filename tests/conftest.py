"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, Generator

import pytest

from greeter.bootstrap.config import ServerConfig
from greeter.transport.listener import Listener

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


@pytest.fixture(autouse=True)
def restore_project_logger():
    """Let records reach caplog and undo handlers installed by configure_logging."""
    logger = logging.getLogger("greeter")
    old_propagate = logger.propagate
    old_level = logger.level
    old_handlers = list(logger.handlers)
    logger.propagate = True
    yield
    for handler in logger.handlers:
        if handler not in old_handlers:
            handler.close()
    logger.handlers[:] = old_handlers
    logger.setLevel(old_level)
    logger.propagate = old_propagate


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="start_listener")
def _start_listener() -> Generator[Callable[..., Listener], None, None]:
    """Start in-process listeners on ephemeral ports; shut them all down after."""

    running: list[tuple[Listener, threading.Thread]] = []

    def start(**overrides) -> Listener:
        settings = {
            "host": "127.0.0.1",
            "port": 0,
            "accept_poll_interval": 0.05,
            "shutdown_grace_seconds": 5.0,
        }
        settings.update(overrides)
        listener = Listener(ServerConfig(**settings))
        listener.start()
        thread = threading.Thread(target=listener.run, daemon=True)
        thread.start()
        running.append((listener, thread))
        return listener

    yield start

    for listener, thread in running:
        listener.shutdown(wait=True, timeout=5.0)
        thread.join(timeout=5.0)


@pytest.fixture(name="listener")
def _listener(start_listener: Callable[..., Listener]) -> Listener:
    """A running listener with default settings."""

    return start_listener()


@pytest.fixture(name="launch_cli")
def _launch_cli() -> Generator[Callable[..., subprocess.Popen], None, None]:
    """Start the CLI in child processes; terminate leftovers after the test."""

    processes: list[subprocess.Popen] = []

    def launch(
        port: int, log_file: Path, extra_args: list[str] | None = None
    ) -> subprocess.Popen:
        args = [
            sys.executable,
            str(SERVER_ENTRYPOINT),
            "serve",
            "--host",
            "127.0.0.1",
            "--port",
            str(port),
            "--log-destination",
            str(log_file),
            "--log-level",
            "DEBUG",
        ]
        if extra_args:
            args.extend(extra_args)
        process = subprocess.Popen(  # pylint: disable=consider-using-with
            args,
            cwd=PROJECT_ROOT,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
        processes.append(process)
        return process

    yield launch

    for process in processes:
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        if process.stderr is not None:
            process.stderr.close()
