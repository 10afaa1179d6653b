"""Transport-level liveness monitoring.

Each connection runs a two-state machine on a fixed interval:

- ALIVE → send a ping, move to PENDING_PONG
- PENDING_PONG → no pong since the last ping: terminate and evict

A pong moves the connection back to ALIVE. This catches half-open sockets;
idle-but-connected participants are the cleanup sweeper's job.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from envirovoice.transport.base import Connection

logger = logging.getLogger(__name__)


class HeartbeatState(Enum):
    """Liveness state of one connection."""

    ALIVE = "alive"
    PENDING_PONG = "pending_pong"


class ConnectionHeartbeat:
    """Ping/pong state machine for a single connection."""

    def __init__(
        self,
        connection: Connection,
        on_dead: Callable[[Connection], Awaitable[None]],
        ping_timeout_s: float = 5.0,
    ) -> None:
        """Initialize heartbeat.

        Args:
            connection: Connection to monitor
            on_dead: Awaited after the connection is terminated
            ping_timeout_s: Upper bound on writing a single ping
        """
        self.connection = connection
        self.state = HeartbeatState.ALIVE
        self._on_dead = on_dead
        self._ping_timeout_s = ping_timeout_s

    def acknowledge(self) -> None:
        """Record a pong."""
        self.state = HeartbeatState.ALIVE

    async def tick(self) -> bool:
        """Advance the state machine by one interval.

        Returns:
            False once the connection has been terminated
        """
        if self.state is HeartbeatState.PENDING_PONG:
            logger.warning(
                "Terminating unresponsive connection",
                extra={"connection_id": self.connection.connection_id},
            )
            self.connection.terminate()
            await self._on_dead(self.connection)
            return False

        self.state = HeartbeatState.PENDING_PONG
        try:
            waiter = await asyncio.wait_for(self.connection.ping(), self._ping_timeout_s)
        except (TimeoutError, ConnectionError) as e:
            # Stay PENDING_PONG; the next tick terminates
            logger.debug(
                "Ping not sent",
                extra={"connection_id": self.connection.connection_id, "error": str(e)},
            )
            return True

        asyncio.ensure_future(waiter).add_done_callback(self._on_pong)
        return True

    def _on_pong(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.acknowledge()


class HeartbeatMonitor:
    """Runs one heartbeat task per open connection."""

    def __init__(
        self,
        on_dead: Callable[[Connection], Awaitable[None]],
        interval_s: float = 30.0,
        ping_timeout_s: float = 5.0,
    ) -> None:
        """Initialize monitor.

        Args:
            on_dead: Eviction callback for terminated connections
            interval_s: Seconds between ticks
            ping_timeout_s: Upper bound on writing a single ping
        """
        self.interval_s = interval_s
        self.ping_timeout_s = ping_timeout_s
        self._on_dead = on_dead
        self._heartbeats: dict[Connection, ConnectionHeartbeat] = {}
        self._tasks: dict[Connection, asyncio.Task[None]] = {}

    def start(self, connection: Connection) -> ConnectionHeartbeat:
        """Begin monitoring a connection (idempotent)."""
        existing = self._heartbeats.get(connection)
        if existing is not None:
            return existing

        heartbeat = ConnectionHeartbeat(connection, self._on_dead, self.ping_timeout_s)
        self._heartbeats[connection] = heartbeat
        self._tasks[connection] = asyncio.create_task(
            self._run(heartbeat), name=f"heartbeat-{connection.connection_id}"
        )
        return heartbeat

    def stop(self, connection: Connection) -> None:
        """Stop monitoring a connection (no-op if not monitored)."""
        self._heartbeats.pop(connection, None)
        task = self._tasks.pop(connection, None)
        # The eviction path may run inside the heartbeat task itself
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def acknowledge(self, connection: Connection) -> None:
        heartbeat = self._heartbeats.get(connection)
        if heartbeat is not None:
            heartbeat.acknowledge()

    def state_of(self, connection: Connection) -> HeartbeatState | None:
        heartbeat = self._heartbeats.get(connection)
        return heartbeat.state if heartbeat is not None else None

    async def stop_all(self) -> None:
        """Cancel every heartbeat task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._heartbeats.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, heartbeat: ConnectionHeartbeat) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_s)
                if not await heartbeat.tick():
                    break
        except asyncio.CancelledError:
            pass
        finally:
            # Drop our own bookkeeping if eviction did not already
            if self._tasks.get(heartbeat.connection) is asyncio.current_task():
                self._tasks.pop(heartbeat.connection, None)
                self._heartbeats.pop(heartbeat.connection, None)

    def __len__(self) -> int:
        return len(self._tasks)
