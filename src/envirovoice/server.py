"""Relay server entry point.

Main server implementation that:
1. Starts the WebSocket transport for voice-chat clients
2. Serves the HTTP API (snapshot ingestion, health, state inspection)
3. Runs the heartbeat monitor and inactivity sweeper
4. Shuts down gracefully on SIGINT/SIGTERM
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from aiohttp.web import AppRunner, TCPSite

from envirovoice import __version__
from envirovoice.config import RelayConfig
from envirovoice.http_api import create_app
from envirovoice.hub import RelayHub
from envirovoice.lookup import GamertagLookup
from envirovoice.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


class RelayServer:
    """Owns the hub, both listeners and their shutdown order."""

    def __init__(self, config: RelayConfig, hub: RelayHub | None = None) -> None:
        """Initialize relay server.

        Args:
            config: Relay configuration
            hub: Optional pre-created hub (for testing)
        """
        self.config = config
        self.hub = hub if hub is not None else RelayHub(config)
        self.transport = WebSocketTransport(
            self.hub,
            host=config.websocket.host,
            port=config.websocket.port,
            max_message_size=config.websocket.max_message_size,
        )
        self.lookup = GamertagLookup(config.lookup) if config.lookup.enabled else None
        self._runner: AppRunner | None = None
        self._stopped = False

    @property
    def ws_port(self) -> int:
        return self.transport.port

    @property
    def http_port(self) -> int:
        if self._runner is not None and self._runner.addresses:
            return self._runner.addresses[0][1]
        return self.config.http.port

    async def start(self) -> None:
        """Start hub tasks, the WebSocket server and the HTTP server.

        Raises:
            OSError: If a port cannot be bound
        """
        self.hub.start()
        await self.transport.start()

        app = create_app(self.hub, self.config.http, lookup=self.lookup)
        self._runner = AppRunner(app)
        await self._runner.setup()
        site = TCPSite(self._runner, self.config.http.host, self.config.http.port)
        await site.start()

        logger.info(
            "EnviroVoice relay ready",
            extra={
                "version": __version__,
                "ws_port": self.ws_port,
                "http_port": self.http_port,
                "max_connections": self.config.websocket.max_connections,
            },
        )

    async def stop(self) -> None:
        """Graceful shutdown.

        Stops accepting connections, notifies and closes every client, then
        tears down the listeners. Safe to call twice.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info("Shutting down relay server")
        grace_s = self.config.graceful_shutdown_timeout_s

        self.transport.stop_accepting()
        await self.hub.shutdown()
        await self.transport.stop(timeout_s=grace_s)

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")

        if self.lookup is not None:
            await self.lookup.close()

        logger.info("Relay server stopped")


async def run_server(config: RelayConfig) -> int:
    """Run the relay until a termination signal or a fatal loop error.

    Returns:
        Process exit code
    """
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    fatal: list[dict[str, Any]] = []

    def on_signal(sig: signal.Signals) -> None:
        logger.warning("Received %s, starting graceful shutdown", sig.name)
        stop_event.set()

    def on_loop_error(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        # Unexpected faults leave state unknown; stop instead of carrying on
        logger.error(
            "Unhandled error in event loop: %s",
            context.get("message"),
            exc_info=context.get("exception"),
        )
        fatal.append(context)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal, sig)
    loop.set_exception_handler(on_loop_error)

    server = RelayServer(config)
    try:
        await server.start()
        await stop_event.wait()
    finally:
        await server.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    return 1 if fatal else 0


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="EnviroVoice signaling relay")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to relay config YAML file (defaults plus environment if omitted)",
    )
    args = parser.parse_args()

    config = RelayConfig.from_yaml_with_defaults(args.config)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        exit_code = asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Relay server interrupted")
        exit_code = 0
    except Exception:
        logger.exception("Relay server crashed")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
