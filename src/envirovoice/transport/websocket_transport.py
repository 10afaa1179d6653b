"""WebSocket transport implementation.

Accepts voice-chat client connections with the `websockets` asyncio server
and feeds their frames into the relay hub.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.protocol import State

from envirovoice.transport.base import CLOSE_GOING_AWAY, CLOSE_NORMAL, Connection

if TYPE_CHECKING:
    from envirovoice.hub import RelayHub

logger = logging.getLogger(__name__)


class WebSocketConnection(Connection):
    """Relay connection backed by a websockets ServerConnection."""

    def __init__(self, websocket: ServerConnection, connection_id: str) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: WebSocket connection
            connection_id: Unique connection identifier
        """
        self._websocket = websocket
        self._connection_id = connection_id

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def remote_address(self) -> Any:
        """Client address, preferring X-Forwarded-For behind a proxy."""
        request = getattr(self._websocket, "request", None)
        if request is not None:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return self._websocket.remote_address

    @property
    def is_open(self) -> bool:
        return self._websocket.state == State.OPEN

    async def send(self, message: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        try:
            await self._websocket.send(message)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        await self._websocket.close(code, reason)

    async def ping(self) -> Awaitable[float]:
        """Send a ping.

        Raises:
            ConnectionError: If the connection is closed
        """
        try:
            return await self._websocket.ping()
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

    def terminate(self) -> None:
        transport = getattr(self._websocket, "transport", None)
        if transport is not None:
            transport.abort()

    def __repr__(self) -> str:
        return f"WebSocketConnection({self._connection_id!r})"


class WebSocketTransport:
    """WebSocket transport server.

    Manages the websockets server lifecycle and runs one handler per client
    that forwards frames to the hub in arrival order.
    """

    def __init__(
        self,
        hub: "RelayHub",
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3000,
        max_message_size: int = 50 * 1024,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            hub: Relay hub receiving connection events
            host: Bind host address
            port: Bind port
            max_message_size: Largest accepted frame in bytes
        """
        self._hub = hub
        self._host = host
        self._port = port
        self._max_message_size = max_message_size
        self._server: Server | None = None
        self._running = False

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_message_size": max_message_size},
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """Bound port (resolves port 0 after start)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_size,
                # Liveness is driven by the hub's heartbeat monitor
                ping_interval=None,
                compression=None,
            )
            self._running = True
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

        logger.info("WebSocket server started", extra={"host": self._host, "port": self.port})

    def stop_accepting(self) -> None:
        """Stop listening without touching established connections."""
        if self._server is not None:
            self._server.close(close_connections=False)

    async def stop(self, timeout_s: float = 5.0) -> None:
        """Stop the server and wait up to `timeout_s` for handlers to finish."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server is not None:
            self._server.close()
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout_s)
            except TimeoutError:
                logger.warning(
                    "WebSocket server did not close in time", extra={"timeout_s": timeout_s}
                )
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Run one client connection until it closes.

        Args:
            websocket: WebSocket connection
        """
        connection = WebSocketConnection(websocket, f"ws-{uuid.uuid4().hex[:12]}")

        if not self._hub.accepting:
            await websocket.close(CLOSE_GOING_AWAY, "Server shutting down")
            return

        await self._hub.handle_connect(connection)
        try:
            async for raw_message in websocket:
                await self._hub.handle_message(connection, raw_message)
        except websockets.exceptions.ConnectionClosed as e:
            logger.debug(
                "WebSocket connection closed by peer",
                extra={"connection_id": connection.connection_id, "code": e.rcvd and e.rcvd.code},
            )
        finally:
            await self._hub.handle_disconnect(connection)
            logger.debug(
                "WebSocket connection closed",
                extra={"connection_id": connection.connection_id},
            )
