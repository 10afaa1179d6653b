"""Base connection abstraction.

Defines the interface the relay core uses to talk to a connected client,
so registry, dispatch and fan-out stay independent of the websocket library.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any

# WebSocket close codes used by the relay
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008


class Connection(ABC):
    """A live bidirectional channel to one client.

    Connections are hashable by identity and are used as registry keys.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique connection identifier for logging and tracking."""
        pass

    @property
    @abstractmethod
    def remote_address(self) -> Any:
        """Peer address as reported by the transport (may be None)."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the connection can currently carry messages."""
        pass

    @abstractmethod
    async def send(self, message: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        pass

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Start (and await) a clean close handshake."""
        pass

    @abstractmethod
    async def ping(self) -> Awaitable[Any]:
        """Send a transport-level ping.

        Returns:
            Awaitable that completes when the matching pong arrives
        """
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Drop the underlying transport immediately, without a handshake."""
        pass
