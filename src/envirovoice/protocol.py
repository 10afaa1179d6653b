"""WebSocket message protocol definitions.

Defines Pydantic models for the JSON envelopes exchanged with voice-chat
clients. Every envelope is an object with a `type` tag; field names on the
wire are camelCase and identities travel in a `gamertag` field.
"""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from envirovoice.errors import MalformedMessageError, UnknownMessageTypeError


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        """Serialize with wire (alias) field names."""
        return self.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Client → Server
# ---------------------------------------------------------------------------


class JoinMessage(_Envelope):
    """Client → Server: register under a gamertag."""

    type: Literal["join"] = "join"
    gamertag: str = Field(..., min_length=1, description="Requested identity")


class LeaveMessage(_Envelope):
    """Client → Server: deregister without closing the socket."""

    type: Literal["leave"] = "leave"


class VoiceDetectionMessage(_Envelope):
    """Client → Server: decibel-based voice activity update."""

    type: Literal["voice-detection"] = "voice-detection"
    gamertag: str = Field(..., min_length=1)
    is_talking: bool = Field(..., alias="isTalking")
    volume: float | None = Field(default=0.0, description="Input level in dB")


class PttStatusMessage(_Envelope):
    """Client → Server: push-to-talk state change."""

    type: Literal["ptt-status"] = "ptt-status"
    gamertag: str = Field(..., min_length=1)
    is_talking: bool = Field(..., alias="isTalking")
    is_muted: bool = Field(..., alias="isMuted")


class SignalingMessage(_Envelope):
    """Client → Client (via relay): WebRTC offer, answer or ICE candidate.

    The payload (sdp, candidate, ...) is opaque to the relay; the received
    frame is forwarded byte-for-byte.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["offer", "answer", "ice-candidate"]
    to: str = Field(..., min_length=1, description="Target gamertag")
    from_: str = Field(..., alias="from", min_length=1, description="Source gamertag")


class HeartbeatMessage(_Envelope):
    """Client → Server: application-level keepalive (no effect)."""

    type: Literal["heartbeat"] = "heartbeat"


class RequestParticipantsMessage(_Envelope):
    """Client → Server: ask for the current participant list."""

    type: Literal["request-participants"] = "request-participants"


ClientMessage = Annotated[
    JoinMessage
    | LeaveMessage
    | VoiceDetectionMessage
    | PttStatusMessage
    | SignalingMessage
    | HeartbeatMessage
    | RequestParticipantsMessage,
    Field(discriminator="type"),
]

CLIENT_MESSAGE_TYPES = frozenset(
    {
        "join",
        "leave",
        "voice-detection",
        "ptt-status",
        "offer",
        "answer",
        "ice-candidate",
        "heartbeat",
        "request-participants",
    }
)

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def frame_text(raw: str | bytes) -> str:
    """Text of an inbound frame; binary frames must be UTF-8.

    Raises:
        MalformedMessageError: If a binary frame is not valid UTF-8
    """
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedMessageError(f"Frame is not UTF-8: {e.reason}") from e


def decode_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one inbound frame into a typed envelope.

    Args:
        raw: Frame payload (text, or UTF-8 bytes)

    Returns:
        The validated envelope

    Raises:
        UnknownMessageTypeError: If the tag is not a client message type
        MalformedMessageError: If the frame is not UTF-8 JSON, not an
            object, or misses fields required for its tag
    """
    try:
        data = json.loads(frame_text(raw))
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Envelope must be an object, got {type(data).__name__}")

    message_type = data.get("type")
    if message_type not in CLIENT_MESSAGE_TYPES:
        raise UnknownMessageTypeError(message_type)

    try:
        return _client_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessageError(
            f"Invalid {message_type} message: {e.error_count()} error(s)"
        ) from e


# ---------------------------------------------------------------------------
# Server → Client
# ---------------------------------------------------------------------------


class ParticipantsListMessage(_Envelope):
    """Server → Client: current registered identities."""

    type: Literal["participants-list"] = "participants-list"
    identities: list[str] = Field(default_factory=list, alias="list")


class JoinNotice(_Envelope):
    """Server → Client: someone else joined."""

    type: Literal["join"] = "join"
    gamertag: str


class LeaveNotice(_Envelope):
    """Server → Client: someone left or was evicted."""

    type: Literal["leave"] = "leave"
    gamertag: str


class PttUpdateMessage(_Envelope):
    """Server → Client: a participant's push-to-talk state changed."""

    type: Literal["ptt-update"] = "ptt-update"
    gamertag: str
    is_talking: bool = Field(..., alias="isTalking")
    is_muted: bool = Field(..., alias="isMuted")


class MinecraftUpdateMessage(_Envelope):
    """Server → Client: world snapshot merged with voice and PTT state."""

    type: Literal["minecraft-update"] = "minecraft-update"
    data: Any = None
    ptt_states: list[dict[str, Any]] = Field(default_factory=list, alias="pttStates")
    voice_states: list[dict[str, Any]] = Field(default_factory=list, alias="voiceStates")


class ErrorMessage(_Envelope):
    """Server → Client: error notification."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


class ServerShutdownMessage(_Envelope):
    """Server → Client: the relay is going away."""

    type: Literal["server-shutdown"] = "server-shutdown"


ServerMessage = (
    ParticipantsListMessage
    | JoinNotice
    | LeaveNotice
    | PttUpdateMessage
    | MinecraftUpdateMessage
    | ErrorMessage
    | ServerShutdownMessage
)
