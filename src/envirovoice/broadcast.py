"""Best-effort message fan-out.

A broadcast serializes its message once and sends it concurrently to every
open connection. A failed send is logged and counted; it never aborts the
remaining sends and never propagates to the caller.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable

from envirovoice.metrics import MetricsCollector
from envirovoice.protocol import ServerMessage
from envirovoice.transport.base import Connection

logger = logging.getLogger(__name__)


class Broadcaster:
    """Fans messages out to the connections yielded by `connections`."""

    def __init__(
        self,
        connections: Callable[[], Iterable[Connection]],
        metrics: MetricsCollector,
    ) -> None:
        """Initialize broadcaster.

        Args:
            connections: Returns the currently open connections; called once
                per broadcast and snapshotted before the first send
            metrics: Collector for send/failure counters
        """
        self._connections = connections
        self._metrics = metrics

    async def send_to(self, connection: Connection, message: ServerMessage | str) -> bool:
        """Send to a single connection.

        Returns:
            True if the send completed
        """
        payload = message if isinstance(message, str) else message.to_json()
        return await self._send(connection, payload)

    async def broadcast(
        self,
        message: ServerMessage | str,
        exclude: Connection | None = None,
    ) -> int:
        """Send a message to every open connection except `exclude`.

        Args:
            message: Envelope, or an already serialized frame
            exclude: Connection to skip (typically the sender)

        Returns:
            Number of connections the message was delivered to
        """
        payload = message if isinstance(message, str) else message.to_json()
        targets = [c for c in list(self._connections()) if c is not exclude and c.is_open]
        if not targets:
            return 0

        results = await asyncio.gather(*(self._send(c, payload) for c in targets))
        return sum(1 for ok in results if ok)

    async def _send(self, connection: Connection, payload: str) -> bool:
        if not connection.is_open:
            return False
        try:
            await connection.send(payload)
        except Exception as e:
            self._metrics.inc("relay_broadcast_failures_total")
            logger.warning(
                "Send failed",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
            return False
        self._metrics.inc("relay_broadcast_sends_total")
        return True
