"""Participant registry.

Authoritative mapping of live connection -> participant. The registry is the
single mutation point for participant lifecycle: registering installs the
participant's presence state, deregistering removes the participant, its
presence state and its rate window in one step.

All methods are synchronous. Under asyncio that makes each of them atomic
with respect to every other task, which is what keeps the duplicate-identity
check and the insert in a single critical section.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from envirovoice.errors import (
    AlreadyRegisteredError,
    CapacityExceededError,
    DuplicateIdentityError,
    ParticipantNotFoundError,
)
from envirovoice.rate_limit import RateLimiter
from envirovoice.state import PresenceStore
from envirovoice.transport.base import Connection

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """A registered client."""

    identity: str
    joined_at: float
    last_activity: float
    message_count: int = 0


class ParticipantRegistry:
    """Registered participants keyed by connection.

    Thread-safety: Not thread-safe. Use from the event loop thread only.
    """

    def __init__(
        self,
        presence: PresenceStore,
        rate_limiter: RateLimiter,
        max_participants: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize registry.

        Args:
            presence: State store cleaned up in lockstep with the registry
            rate_limiter: Limiter whose windows are dropped on deregistration
            max_participants: Capacity limit
            clock: Monotonic time source in seconds
        """
        self.presence = presence
        self.rate_limiter = rate_limiter
        self.max_participants = max_participants
        self._clock = clock
        self._participants: dict[Connection, Participant] = {}

    def register(self, connection: Connection, identity: str) -> Participant:
        """Register a connection under an identity.

        Args:
            connection: Connection sending the join
            identity: Requested identity (exact, case-sensitive)

        Returns:
            The new participant

        Raises:
            AlreadyRegisteredError: If this connection already joined
            CapacityExceededError: If the registry is full
            DuplicateIdentityError: If the identity is taken
        """
        existing = self._participants.get(connection)
        if existing is not None:
            raise AlreadyRegisteredError(existing.identity)

        if len(self._participants) >= self.max_participants:
            raise CapacityExceededError(self.max_participants)

        if self.is_identity_taken(identity):
            raise DuplicateIdentityError(identity)

        now = self._clock()
        participant = Participant(identity=identity, joined_at=now, last_activity=now)
        self._participants[connection] = participant
        self.presence.init_identity(identity)

        logger.info(
            "Participant registered",
            extra={
                "identity": identity,
                "connection_id": connection.connection_id,
                "total": len(self._participants),
            },
        )
        return participant

    def deregister(self, connection: Connection) -> Participant | None:
        """Remove a connection and everything keyed by it.

        Idempotent: a second call for the same connection returns None.

        Returns:
            The removed participant, or None if the connection was not registered
        """
        self.rate_limiter.forget(connection.connection_id)

        participant = self._participants.pop(connection, None)
        if participant is None:
            return None

        self.presence.remove(participant.identity)

        logger.info(
            "Participant deregistered",
            extra={
                "identity": participant.identity,
                "connection_id": connection.connection_id,
                "remaining": len(self._participants),
            },
        )
        return participant

    def touch_activity(self, connection: Connection) -> None:
        """Record that a message arrived on a registered connection."""
        participant = self._participants.get(connection)
        if participant is None:
            return
        participant.last_activity = self._clock()
        participant.message_count += 1

    def get(self, connection: Connection) -> Participant | None:
        return self._participants.get(connection)

    def is_identity_taken(self, identity: str) -> bool:
        return any(p.identity == identity for p in self._participants.values())

    def list_identities(self) -> list[str]:
        """Snapshot of registered identities in registration order."""
        return [p.identity for p in self._participants.values()]

    def find_connection(self, identity: str) -> Connection:
        """Locate the connection registered under an identity.

        Raises:
            ParticipantNotFoundError: If nobody holds the identity
        """
        for connection, participant in self._participants.items():
            if participant.identity == identity:
                return connection
        raise ParticipantNotFoundError(identity)

    def stale(self, threshold_s: float) -> list[tuple[Connection, Participant]]:
        """Participants idle for longer than `threshold_s` seconds."""
        now = self._clock()
        return [
            (connection, participant)
            for connection, participant in self._participants.items()
            if now - participant.last_activity > threshold_s
        ]

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, connection: object) -> bool:
        return connection in self._participants
