"""Shared fixtures for relay integration tests.

Provides a full relay server (WebSocket + HTTP) on free local ports and
helpers for talking to it as a client.
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from websockets.asyncio.client import ClientConnection

from envirovoice.config import (
    HeartbeatConfig,
    HttpConfig,
    LookupConfig,
    RelayConfig,
    WebSocketConfig,
)
from envirovoice.hub import RelayHub
from envirovoice.metrics import MetricsCollector
from envirovoice.server import RelayServer

logger = logging.getLogger(__name__)


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


async def receive_json(ws: ClientConnection, timeout: float = 2.0) -> dict[str, Any]:
    raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
    data: dict[str, Any] = json.loads(raw)
    return data


async def receive_until(
    ws: ClientConnection, message_type: str, timeout: float = 2.0
) -> dict[str, Any]:
    """Skip frames until one of `message_type` arrives."""
    async with asyncio.timeout(timeout):
        while True:
            message = await receive_json(ws, timeout=timeout)
            if message.get("type") == message_type:
                return message


@pytest.fixture
def relay_config() -> RelayConfig:
    """Relay config bound to loopback on free ports."""
    return RelayConfig(
        websocket=WebSocketConfig(host="127.0.0.1", port=get_free_port(), max_connections=3),
        http=HttpConfig(host="127.0.0.1", port=get_free_port()),
        heartbeat=HeartbeatConfig(enabled=False),
        lookup=LookupConfig(enabled=False),
        graceful_shutdown_timeout_s=2.0,
    )


@pytest_asyncio.fixture
async def relay_server(relay_config: RelayConfig) -> AsyncIterator[RelayServer]:
    """Start a relay server for testing."""
    hub = RelayHub(relay_config, metrics=MetricsCollector())
    server = RelayServer(relay_config, hub=hub)
    await server.start()
    logger.info("Relay server started for test", extra={"ws_port": server.ws_port})

    try:
        yield server
    finally:
        await server.stop()
