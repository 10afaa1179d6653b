"""Unit tests for the participant registry and presence store.

Tests registration rules (capacity, duplicate identity, double join),
idempotent deregistration and the lockstep cleanup of presence state and
rate windows.
"""

import dataclasses

import pytest

from envirovoice.errors import (
    AlreadyRegisteredError,
    CapacityExceededError,
    DuplicateIdentityError,
    ParticipantNotFoundError,
)
from envirovoice.rate_limit import RateLimiter
from envirovoice.registry import ParticipantRegistry
from envirovoice.state import PresenceStore
from tests.helpers.fake_connection import FakeConnection


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presence() -> PresenceStore:
    return PresenceStore()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(max_per_window=50, window_ms=1000, clock=clock)


@pytest.fixture
def registry(presence: PresenceStore, limiter: RateLimiter, clock: FakeClock) -> ParticipantRegistry:
    return ParticipantRegistry(presence, limiter, max_participants=3, clock=clock)


def test_register_initializes_presence(
    registry: ParticipantRegistry, presence: PresenceStore
) -> None:
    """Test registration installs default PTT and voice state."""
    conn = FakeConnection("c1")
    participant = registry.register(conn, "Alice")

    assert participant.identity == "Alice"
    assert participant.joined_at == participant.last_activity == 1000.0
    assert conn in registry

    ptt = presence.get_ptt("Alice")
    voice = presence.get_voice("Alice")
    assert ptt is not None and ptt.is_talking is True and ptt.is_muted is False
    assert voice is not None and voice.is_talking is False and voice.volume == 0.0


def test_participant_times_come_from_registry_clock(
    registry: ParticipantRegistry, clock: FakeClock
) -> None:
    """Test every participant timestamp is read from the injected clock."""
    conn = FakeConnection("c1")
    participant = registry.register(conn, "Alice")

    assert {f.name for f in dataclasses.fields(participant)} == {
        "identity",
        "joined_at",
        "last_activity",
        "message_count",
    }

    clock.now = 1042.0
    registry.touch_activity(conn)
    assert participant.joined_at == 1000.0
    assert participant.last_activity == 1042.0


def test_capacity_limit(registry: ParticipantRegistry) -> None:
    """Test registrations up to capacity succeed and the next one fails."""
    for i in range(3):
        registry.register(FakeConnection(f"c{i}"), f"Player{i}")

    with pytest.raises(CapacityExceededError) as exc_info:
        registry.register(FakeConnection("c-extra"), "Extra")

    assert str(exc_info.value) == "Server at capacity"
    assert len(registry) == 3


def test_duplicate_identity_rejected(registry: ParticipantRegistry) -> None:
    """Test the same identity from another connection is rejected."""
    first = FakeConnection("c1")
    registry.register(first, "Alice")

    with pytest.raises(DuplicateIdentityError, match="already in use"):
        registry.register(FakeConnection("c2"), "Alice")

    assert registry.list_identities() == ["Alice"]
    assert registry.find_connection("Alice") is first


def test_identity_match_is_case_sensitive(registry: ParticipantRegistry) -> None:
    """Test identities differing only in case are distinct."""
    registry.register(FakeConnection("c1"), "Alice")
    registry.register(FakeConnection("c2"), "alice")
    assert registry.list_identities() == ["Alice", "alice"]


def test_second_join_on_same_connection(registry: ParticipantRegistry) -> None:
    """Test a connection cannot register twice."""
    conn = FakeConnection("c1")
    registry.register(conn, "Alice")

    with pytest.raises(AlreadyRegisteredError):
        registry.register(conn, "Alicia")

    assert registry.list_identities() == ["Alice"]


def test_deregister_removes_everything(
    registry: ParticipantRegistry, presence: PresenceStore, limiter: RateLimiter
) -> None:
    """Test deregistration clears presence state and the rate window."""
    conn = FakeConnection("c1")
    registry.register(conn, "Alice")
    limiter.check_and_consume("c1")

    removed = registry.deregister(conn)

    assert removed is not None and removed.identity == "Alice"
    assert presence.get_ptt("Alice") is None
    assert presence.get_voice("Alice") is None
    assert limiter.window_for("c1") is None
    with pytest.raises(ParticipantNotFoundError):
        registry.find_connection("Alice")


def test_deregister_is_idempotent(registry: ParticipantRegistry) -> None:
    """Test the second deregister is a no-op."""
    conn = FakeConnection("c1")
    registry.register(conn, "Alice")

    assert registry.deregister(conn) is not None
    assert registry.deregister(conn) is None
    assert registry.deregister(FakeConnection("never-joined")) is None


def test_identity_reusable_after_deregister(registry: ParticipantRegistry) -> None:
    """Test a freed identity can be registered by a new connection."""
    first = FakeConnection("c1")
    registry.register(first, "Alice")
    registry.deregister(first)

    second = FakeConnection("c2")
    registry.register(second, "Alice")
    assert registry.find_connection("Alice") is second


def test_touch_activity_and_stale(registry: ParticipantRegistry, clock: FakeClock) -> None:
    """Test activity tracking drives the stale scan."""
    idle = FakeConnection("idle")
    busy = FakeConnection("busy")
    registry.register(idle, "Idle")
    registry.register(busy, "Busy")

    clock.now += 45
    registry.touch_activity(busy)
    registry.touch_activity(FakeConnection("unregistered"))
    clock.now += 30

    stale = registry.stale(60)
    assert [(c, p.identity) for c, p in stale] == [(idle, "Idle")]

    participant = registry.get(busy)
    assert participant is not None
    assert participant.message_count == 1


def test_list_identities_in_registration_order(registry: ParticipantRegistry) -> None:
    for name in ("Charlie", "Alice", "Bob"):
        registry.register(FakeConnection(name), name)
    assert registry.list_identities() == ["Charlie", "Alice", "Bob"]


class TestPresenceStore:
    """Test the PTT/voice state tables."""

    def test_upsert_overwrites(self) -> None:
        store = PresenceStore()
        store.set_ptt("Alice", is_talking=True, is_muted=False)
        store.set_ptt("Alice", is_talking=False, is_muted=True)

        assert store.ptt_count == 1
        state = store.get_ptt("Alice")
        assert state is not None and state.is_muted is True

    def test_upsert_without_registration(self) -> None:
        """Snapshots may carry players that never joined."""
        store = PresenceStore()
        store.set_voice("Steve", is_talking=True, volume=-20.0)
        assert [s.identity for s in store.voice_states()] == ["Steve"]

    def test_to_dict_key(self) -> None:
        store = PresenceStore()
        state = store.set_voice("Alice", is_talking=False, volume=-30.0)

        assert state.to_dict() == {"identity": "Alice", "isTalking": False, "volume": -30.0}
        assert state.to_dict("gamertag")["gamertag"] == "Alice"

    def test_remove_absent_identity(self) -> None:
        store = PresenceStore()
        store.remove("nobody")
        assert store.ptt_count == 0
        assert store.voice_count == 0
