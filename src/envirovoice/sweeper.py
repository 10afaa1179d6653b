"""Inactivity sweeper.

Periodically evicts participants whose last application message is older than
the inactivity threshold. Independent from the heartbeat: a socket can answer
pings while the client has stopped talking to us, and vice versa.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from envirovoice.registry import Participant, ParticipantRegistry
from envirovoice.transport.base import Connection

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Background task evicting idle participants."""

    def __init__(
        self,
        registry: ParticipantRegistry,
        evict: Callable[[Connection, Participant], Awaitable[None]],
        interval_s: float = 60.0,
        inactivity_timeout_s: float = 60.0,
    ) -> None:
        """Initialize sweeper.

        Args:
            registry: Registry to scan
            evict: Closes and deregisters one idle participant
            interval_s: Seconds between sweeps
            inactivity_timeout_s: Idle time after which a participant is evicted
        """
        self.registry = registry
        self.interval_s = interval_s
        self.inactivity_timeout_s = inactivity_timeout_s
        self._evict = evict
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        """Evict every participant idle past the threshold.

        Returns:
            Number of participants evicted
        """
        stale = self.registry.stale(self.inactivity_timeout_s)
        if not stale:
            return 0

        for connection, participant in stale:
            logger.warning(
                "Client timeout",
                extra={
                    "identity": participant.identity,
                    "connection_id": connection.connection_id,
                },
            )

        await asyncio.gather(*(self._evict(c, p) for c, p in stale))
        return len(stale)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="cleanup-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                evicted = await self.sweep_once()
            except Exception:
                logger.exception("Cleanup sweep failed")
                continue
            if evicted:
                logger.info(
                    "Cleanup sweep complete",
                    extra={"evicted": evicted, "remaining": len(self.registry)},
                )
