"""
Unit tests for the server entry point.

Tests cover:
- Logging setup (JSON and text formats)
- Server lifecycle (storage connected before serving, closed on stop)
- HTTP server failures ending the run
"""

import asyncio
import logging
import socket

import json_log_formatter
import pytest

from tinywebdb.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    SqliteConfig,
    StorageBackendKind,
)
from tinywebdb.main import Server, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_json_format(self, restore_root_logger):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="json")))

        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root.level == logging.INFO

    def test_text_format(self, restore_root_logger):
        setup_logging(
            ServerConfig(observability=ObservabilityConfig(log_level="debug", log_format="text"))
        )

        root = logging.getLogger()
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("botocore").level == logging.WARNING


class TestServer:
    """Tests for the Server orchestrator."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, data_dir):
        config = ServerConfig(
            storage_backend=StorageBackendKind.SQLITE,
            http=HttpConfig(host="127.0.0.1", port=0),
            sqlite=SqliteConfig(path=f"{data_dir}/server.db", wal_mode=False),
        )
        server = Server(config)

        task = asyncio.create_task(server.start())
        for _ in range(100):
            if server._running:
                break
            await asyncio.sleep(0.01)

        assert server.storage.is_connected is True
        assert server.application is not None

        server.request_shutdown()
        await task
        await server.stop()

        assert server.storage.is_connected is False

    @pytest.mark.asyncio
    async def test_startup_failure_closes_storage(self, data_dir):
        config = ServerConfig(
            storage_backend=StorageBackendKind.SQLITE,
            sqlite=SqliteConfig(path=f"{data_dir}/not-a-dir/db", wal_mode=False),
        )
        # A file where the parent directory should be
        with open(f"{data_dir}/not-a-dir", "w") as f:
            f.write("x")
        server = Server(config)

        with pytest.raises(OSError):
            await server.start()

        assert server._running is False

    @pytest.mark.asyncio
    async def test_http_bind_failure_shuts_down(self, caplog):
        """A port already in use ends start() instead of leaving it blocked."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen()
            port = occupied.getsockname()[1]

            server = Server(
                ServerConfig(
                    storage_backend=StorageBackendKind.MEMORY,
                    http=HttpConfig(host="127.0.0.1", port=port),
                )
            )
            with caplog.at_level(logging.ERROR, logger="tinywebdb.main"):
                await asyncio.wait_for(server.start(), timeout=5)

        assert any("HTTP server failed" in r.getMessage() for r in caplog.records)
        assert server.storage.is_connected is True

        await server.stop()

        assert server.storage.is_connected is False
        assert server._running is False
