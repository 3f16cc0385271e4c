"""
TinyWebDB Server - Main entry point.

This module starts the TinyWebDB server:
- Storage backend selected by STORAGE_BACKEND
- HTTP server (aiohttp) routing to the Application

Usage:
    python -m tinywebdb.main
    tinywebdb-server

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The storage backend is connected before the HTTP server accepts requests
    - Shutdown stops the HTTP server before closing the storage backend

How to change safely:
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .api import Application, run_http_server
from .config import ServerConfig
from .storage import StorageBackend, create_storage_backend

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """TinyWebDB server orchestrator.

    Attributes:
        config: Server configuration
        storage: Connected storage backend
        application: Request router

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.storage: StorageBackend | None = None
        self.application: Application | None = None
        self._http_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting TinyWebDB server")
        self.config.log_config()

        try:
            self.storage = create_storage_backend(self.config)
            await self.storage.connect()
            logger.info(
                "Storage backend connected",
                extra={"storage_backend": self.config.storage_backend.value},
            )

            self.application = Application(self.storage)
            self._http_task = asyncio.create_task(
                run_http_server(self.application, self.config.http)
            )
            self._http_task.add_done_callback(self._on_http_server_done)

            self._running = True
            logger.info("TinyWebDB server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and self.storage is None:
            return

        logger.info("Stopping TinyWebDB server")

        if self._http_task:
            self._http_task.cancel()
            await asyncio.gather(self._http_task, return_exceptions=True)
            self._http_task = None

        if self.storage and self.storage.is_connected:
            await self.storage.close()

        self._running = False
        logger.info("TinyWebDB server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    def _on_http_server_done(self, task: asyncio.Task) -> None:
        """Shut down when the HTTP server exits with an error (e.g. port in use)."""
        if task.cancelled() or task.exception() is None:
            return
        logger.error(
            f"HTTP server failed: {task.exception()}",
            exc_info=task.exception(),
            extra={"host": self.config.http.host, "port": self.config.http.port},
        )
        self.request_shutdown()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
