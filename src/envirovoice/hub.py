"""Relay hub: connection lifecycle and message dispatch.

The hub owns every piece of shared relay state (open connections, registry,
presence store, rate limiter, last world snapshot) and is the only component
that wires them together. Transports call `handle_connect`,
`handle_message` and `handle_disconnect`; the HTTP API calls
`ingest_snapshot` and the read-only accessors.

Thread-safety: This class is NOT thread-safe. Use from a single event loop.
State mutations never await, so each one is atomic with respect to other
connection handlers; suspension only happens at sends and closes.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from envirovoice.broadcast import Broadcaster
from envirovoice.config import RelayConfig
from envirovoice.errors import (
    AlreadyRegisteredError,
    MalformedMessageError,
    ParticipantNotFoundError,
    RateLimitExceededError,
    RegistrationError,
    SnapshotProcessingError,
    UnknownMessageTypeError,
)
from envirovoice.heartbeat import HeartbeatMonitor
from envirovoice.metrics import MetricsCollector, get_metrics_collector
from envirovoice.protocol import (
    ClientMessage,
    ErrorMessage,
    HeartbeatMessage,
    JoinMessage,
    JoinNotice,
    LeaveMessage,
    LeaveNotice,
    MinecraftUpdateMessage,
    ParticipantsListMessage,
    PttStatusMessage,
    PttUpdateMessage,
    RequestParticipantsMessage,
    ServerShutdownMessage,
    SignalingMessage,
    VoiceDetectionMessage,
    decode_client_message,
    frame_text,
)
from envirovoice.rate_limit import RateLimiter
from envirovoice.registry import Participant, ParticipantRegistry
from envirovoice.snapshot import IngestSummary, extract_players, parse_player
from envirovoice.state import PresenceStore
from envirovoice.sweeper import CleanupSweeper
from envirovoice.transport.base import (
    CLOSE_GOING_AWAY,
    CLOSE_NORMAL,
    CLOSE_POLICY_VIOLATION,
    Connection,
)

logger = logging.getLogger(__name__)


class RelayHub:
    """Signaling and presence relay core."""

    def __init__(
        self,
        config: RelayConfig,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize hub.

        Args:
            config: Relay configuration
            metrics: Metrics collector (defaults to the global one)
            clock: Monotonic time source shared by registry and rate limiter
        """
        self.config = config
        self.metrics = metrics if metrics is not None else get_metrics_collector()

        self.presence = PresenceStore()
        self.rate_limiter = RateLimiter(
            max_per_window=config.rate_limit.max_messages,
            window_ms=config.rate_limit.window_ms,
            clock=clock,
        )
        self.registry = ParticipantRegistry(
            self.presence,
            self.rate_limiter,
            max_participants=config.websocket.max_connections,
            clock=clock,
        )

        # Every open connection, registered or not, in accept order
        self.connections: dict[str, Connection] = {}
        self.broadcaster = Broadcaster(lambda: self.connections.values(), self.metrics)

        self.heartbeat = HeartbeatMonitor(
            on_dead=self._on_heartbeat_failure,
            interval_s=config.heartbeat.interval_s,
            ping_timeout_s=config.heartbeat.timeout_s,
        )
        self.sweeper = CleanupSweeper(
            self.registry,
            evict=self.evict_idle,
            interval_s=config.cleanup.interval_s,
            inactivity_timeout_s=config.cleanup.inactivity_timeout_s,
        )

        self.world_snapshot: Any = None
        self.started_at = time.time()
        self._accepting = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background tasks (requires a running event loop)."""
        self._accepting = True
        self.sweeper.start()
        logger.info(
            "Relay hub started",
            extra={
                "max_connections": self.config.websocket.max_connections,
                "heartbeat_enabled": self.config.heartbeat.enabled,
            },
        )

    async def shutdown(self, reason: str = "Server shutting down") -> None:
        """Notify and close every connection, then stop background tasks."""
        self._accepting = False
        logger.warning("Relay hub shutting down", extra={"connections": len(self.connections)})

        await self.broadcaster.broadcast(ServerShutdownMessage())

        connections = list(self.connections.values())
        await asyncio.gather(
            *(self._close(c, CLOSE_GOING_AWAY, reason) for c in connections)
        )

        await self.sweeper.stop()
        await self.heartbeat.stop_all()

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    async def handle_connect(self, connection: Connection) -> None:
        """Track a newly opened connection."""
        self.connections[connection.connection_id] = connection
        self.metrics.set_gauge("relay_connections_open", len(self.connections))

        logger.debug(
            "Connection opened",
            extra={
                "connection_id": connection.connection_id,
                "remote": connection.remote_address,
            },
        )

        if self.config.heartbeat.enabled:
            self.heartbeat.start(connection)

        if self.world_snapshot is not None:
            await self.broadcaster.send_to(connection, self._minecraft_update())

    async def handle_message(self, connection: Connection, raw: str | bytes) -> None:
        """Process one inbound frame from a connection.

        Frames are counted against the rate limit before they are decoded.
        """
        self.metrics.inc("relay_messages_received_total")

        if not self.rate_limiter.check_and_consume(connection.connection_id):
            self.metrics.inc("relay_messages_rate_limited_total")
            error = RateLimitExceededError()
            await self.broadcaster.send_to(
                connection, ErrorMessage(message=str(error), code=error.code)
            )
            return

        self.registry.touch_activity(connection)

        try:
            text = frame_text(raw)
            message = decode_client_message(text)
        except UnknownMessageTypeError as e:
            self.metrics.inc("relay_messages_malformed_total")
            logger.warning(
                "Unknown message type",
                extra={"connection_id": connection.connection_id, "type": e.message_type},
            )
            return
        except MalformedMessageError as e:
            self.metrics.inc("relay_messages_malformed_total")
            logger.warning(
                "Dropping malformed message",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
            return

        await self._dispatch(connection, message, text)

    async def handle_disconnect(self, connection: Connection) -> Participant | None:
        """Clean up after a connection closed for any reason.

        Safe to call more than once; only the first call that finds the
        participant registered announces the departure.

        Returns:
            The participant that was removed, if any
        """
        self.connections.pop(connection.connection_id, None)
        self.metrics.set_gauge("relay_connections_open", len(self.connections))
        self.heartbeat.stop(connection)

        participant = await self._depart(connection)
        if participant is not None:
            logger.info(
                "Participant disconnected",
                extra={"identity": participant.identity, "remaining": len(self.registry)},
            )
        return participant

    async def evict_idle(self, connection: Connection, participant: Participant) -> None:
        """Close an idle participant's connection and announce its departure."""
        self.metrics.inc("relay_timeout_evictions_total")
        await self._close(connection, CLOSE_NORMAL, "Timeout")
        await self.handle_disconnect(connection)

    async def _on_heartbeat_failure(self, connection: Connection) -> None:
        self.metrics.inc("relay_heartbeat_evictions_total")
        await self.handle_disconnect(connection)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self, connection: Connection, message: ClientMessage, text: str
    ) -> None:
        if isinstance(message, JoinMessage):
            await self._handle_join(connection, message)
        elif isinstance(message, LeaveMessage):
            await self._handle_leave(connection)
        elif isinstance(message, VoiceDetectionMessage):
            self.presence.set_voice(
                message.gamertag,
                is_talking=message.is_talking,
                volume=message.volume if message.volume is not None else 0.0,
            )
        elif isinstance(message, PttStatusMessage):
            await self._handle_ptt_status(message)
        elif isinstance(message, SignalingMessage):
            await self._relay_signal(connection, message, text)
        elif isinstance(message, HeartbeatMessage):
            pass
        elif isinstance(message, RequestParticipantsMessage):
            await self.broadcaster.send_to(connection, self._participants_list())
            await self.broadcaster.broadcast(self._participants_list())

    async def _handle_join(self, connection: Connection, message: JoinMessage) -> None:
        try:
            participant = self.registry.register(connection, message.gamertag)
        except AlreadyRegisteredError as e:
            logger.warning(
                "Duplicate join on connection",
                extra={"connection_id": connection.connection_id, "identity": e.identity},
            )
            await self.broadcaster.send_to(connection, ErrorMessage(message=str(e), code=e.code))
            return
        except RegistrationError as e:
            self.metrics.inc("relay_joins_rejected_total")
            logger.warning(
                "Join rejected",
                extra={"identity": message.gamertag, "code": e.code, "error": str(e)},
            )
            await self.broadcaster.send_to(connection, ErrorMessage(message=str(e), code=e.code))
            await self._close(connection, CLOSE_POLICY_VIOLATION, str(e))
            return

        self.metrics.inc("relay_joins_total")
        self.metrics.set_gauge("relay_participants", len(self.registry))
        logger.info(
            "Participant joined",
            extra={"identity": participant.identity, "total": len(self.registry)},
        )

        await self.broadcaster.send_to(connection, self._participants_list())
        await self.broadcaster.broadcast(
            JoinNotice(gamertag=participant.identity), exclude=connection
        )
        await self.broadcaster.broadcast(self._participants_list())

    async def _handle_leave(self, connection: Connection) -> None:
        participant = await self._depart(connection)
        if participant is not None:
            logger.info("Participant left", extra={"identity": participant.identity})

    async def _handle_ptt_status(self, message: PttStatusMessage) -> None:
        self.presence.set_ptt(
            message.gamertag, is_talking=message.is_talking, is_muted=message.is_muted
        )
        await self.broadcaster.broadcast(
            PttUpdateMessage(
                gamertag=message.gamertag,
                is_talking=message.is_talking,
                is_muted=message.is_muted,
            )
        )

    async def _relay_signal(
        self, connection: Connection, message: SignalingMessage, text: str
    ) -> None:
        try:
            target = self.registry.find_connection(message.to)
        except ParticipantNotFoundError:
            self.metrics.inc("relay_signals_dropped_total")
            logger.debug(
                "Signaling target not found",
                extra={"type": message.type, "from": message.from_, "to": message.to},
            )
            return

        if not target.is_open:
            self.metrics.inc("relay_signals_dropped_total")
            logger.debug(
                "Signaling target closed",
                extra={"type": message.type, "from": message.from_, "to": message.to},
            )
            return

        if await self.broadcaster.send_to(target, text):
            self.metrics.inc("relay_signals_relayed_total")
        else:
            self.metrics.inc("relay_signals_dropped_total")

    async def _depart(self, connection: Connection) -> Participant | None:
        participant = self.registry.deregister(connection)
        if participant is None:
            return None

        self.metrics.inc("relay_leaves_total")
        self.metrics.set_gauge("relay_participants", len(self.registry))

        await self.broadcaster.broadcast(
            LeaveNotice(gamertag=participant.identity), exclude=connection
        )
        await self.broadcaster.broadcast(self._participants_list())
        return participant

    async def _close(self, connection: Connection, code: int, reason: str) -> None:
        if not connection.is_open:
            return
        try:
            await connection.close(code, reason)
        except Exception as e:
            logger.warning(
                "Error closing connection",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # World snapshots
    # ------------------------------------------------------------------

    async def ingest_snapshot(self, payload: Any) -> IngestSummary:
        """Merge a world snapshot into presence state and fan it out.

        Records are applied in order; a failure leaves the records before it
        applied.

        Raises:
            SnapshotProcessingError: If the payload is not a snapshot object
        """
        start = time.perf_counter()
        try:
            players = extract_players(payload)
        except SnapshotProcessingError:
            self.metrics.inc("relay_snapshots_failed_total")
            raise

        self.world_snapshot = payload
        for raw in players:
            record = parse_player(raw)
            if record is None:
                continue
            self.presence.set_ptt(
                record.identity, is_talking=record.is_talking, is_muted=record.is_muted
            )
            self.presence.set_voice(
                record.identity, is_talking=record.is_talking, volume=record.volume
            )

        broadcasted = await self.broadcaster.broadcast(self._minecraft_update())
        self.metrics.inc("relay_snapshots_ingested_total")

        summary = IngestSummary(
            processed=len(players),
            broadcasted=broadcasted,
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        logger.debug(
            "Snapshot ingested",
            extra={"processed": summary.processed, "broadcasted": summary.broadcasted},
        )
        return summary

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def _participants_list(self) -> ParticipantsListMessage:
        return ParticipantsListMessage(identities=self.registry.list_identities())

    def _minecraft_update(self) -> MinecraftUpdateMessage:
        return MinecraftUpdateMessage(
            data=self.world_snapshot,
            ptt_states=[s.to_dict("gamertag") for s in self.presence.ptt_states()],
            voice_states=[s.to_dict("gamertag") for s in self.presence.voice_states()],
        )

    def stats(self) -> dict[str, Any]:
        """Counts used by the health endpoint."""
        return {
            "participants": len(self.registry),
            "connections": len(self.connections),
            "max_participants": self.registry.max_participants,
            "ptt_states": self.presence.ptt_count,
            "voice_states": self.presence.voice_count,
            "uptime_s": time.time() - self.started_at,
        }
