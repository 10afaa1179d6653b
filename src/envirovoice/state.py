"""Presence state store.

Holds push-to-talk and voice-activity state keyed by identity. Entries are
created when a participant registers, overwritten by status messages and
world snapshots, and removed together with the participant.
"""

from dataclasses import dataclass
from typing import Any

# Volume reported when a snapshot carries no usable voice level
SILENCE_DB = -100.0


@dataclass
class PTTState:
    """Manual push-to-talk state."""

    identity: str
    is_talking: bool
    is_muted: bool

    def to_dict(self, key: str = "identity") -> dict[str, Any]:
        """Serialize with camelCase fields, naming the identity field `key`."""
        return {key: self.identity, "isTalking": self.is_talking, "isMuted": self.is_muted}


@dataclass
class VoiceState:
    """Decibel-based voice activity detection state."""

    identity: str
    is_talking: bool
    volume: float

    def to_dict(self, key: str = "identity") -> dict[str, Any]:
        """Serialize with camelCase fields, naming the identity field `key`."""
        return {key: self.identity, "isTalking": self.is_talking, "volume": self.volume}


class PresenceStore:
    """Identity-keyed PTT and voice state tables.

    Iteration order is insertion order; re-setting an existing identity keeps
    its position.
    """

    def __init__(self) -> None:
        self._ptt: dict[str, PTTState] = {}
        self._voice: dict[str, VoiceState] = {}

    def init_identity(self, identity: str) -> None:
        """Install the defaults for a freshly registered participant.

        PTT starts as talking/unmuted (open push-to-talk session), voice
        activity starts silent.
        """
        self._ptt[identity] = PTTState(identity, is_talking=True, is_muted=False)
        self._voice[identity] = VoiceState(identity, is_talking=False, volume=0.0)

    def set_ptt(self, identity: str, *, is_talking: bool, is_muted: bool) -> PTTState:
        state = PTTState(identity, is_talking=is_talking, is_muted=is_muted)
        self._ptt[identity] = state
        return state

    def set_voice(self, identity: str, *, is_talking: bool, volume: float) -> VoiceState:
        state = VoiceState(identity, is_talking=is_talking, volume=volume)
        self._voice[identity] = state
        return state

    def get_ptt(self, identity: str) -> PTTState | None:
        return self._ptt.get(identity)

    def get_voice(self, identity: str) -> VoiceState | None:
        return self._voice.get(identity)

    def remove(self, identity: str) -> None:
        """Drop both entries for an identity (no-op if absent)."""
        self._ptt.pop(identity, None)
        self._voice.pop(identity, None)

    def ptt_states(self) -> list[PTTState]:
        return list(self._ptt.values())

    def voice_states(self) -> list[VoiceState]:
        return list(self._voice.values())

    @property
    def ptt_count(self) -> int:
        return len(self._ptt)

    @property
    def voice_count(self) -> int:
        return len(self._voice)
