"""Transport layer for relay client connections.

Provides the connection abstraction the relay core depends on and the
websockets-backed server that implements it.
"""

from envirovoice.transport.base import Connection
from envirovoice.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "Connection",
    "WebSocketConnection",
    "WebSocketTransport",
]
