"""Unit tests for the client/server message envelopes."""

import json

import pytest

from envirovoice.errors import MalformedMessageError, UnknownMessageTypeError
from envirovoice.protocol import (
    ErrorMessage,
    HeartbeatMessage,
    JoinMessage,
    LeaveMessage,
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


class TestDecodeClientMessage:
    """Test inbound frame decoding."""

    def test_join(self) -> None:
        msg = decode_client_message('{"type": "join", "gamertag": "Alice"}')
        assert isinstance(msg, JoinMessage)
        assert msg.gamertag == "Alice"

    def test_join_requires_gamertag(self) -> None:
        with pytest.raises(MalformedMessageError, match="Invalid join message"):
            decode_client_message('{"type": "join"}')

    def test_join_rejects_empty_gamertag(self) -> None:
        with pytest.raises(MalformedMessageError):
            decode_client_message('{"type": "join", "gamertag": ""}')

    def test_leave(self) -> None:
        assert isinstance(decode_client_message('{"type": "leave"}'), LeaveMessage)

    def test_voice_detection(self) -> None:
        msg = decode_client_message(
            '{"type": "voice-detection", "gamertag": "Alice", "isTalking": true, "volume": -42.5}'
        )
        assert isinstance(msg, VoiceDetectionMessage)
        assert msg.is_talking is True
        assert msg.volume == -42.5

    def test_voice_detection_volume_optional(self) -> None:
        msg = decode_client_message(
            '{"type": "voice-detection", "gamertag": "Alice", "isTalking": false}'
        )
        assert isinstance(msg, VoiceDetectionMessage)
        assert msg.volume == 0.0

    def test_ptt_status(self) -> None:
        msg = decode_client_message(
            '{"type": "ptt-status", "gamertag": "Bob", "isTalking": false, "isMuted": true}'
        )
        assert isinstance(msg, PttStatusMessage)
        assert msg.is_talking is False
        assert msg.is_muted is True

    @pytest.mark.parametrize("message_type", ["offer", "answer", "ice-candidate"])
    def test_signaling(self, message_type: str) -> None:
        raw = json.dumps({"type": message_type, "to": "Bob", "from": "Alice", "sdp": "v=0"})
        msg = decode_client_message(raw)
        assert isinstance(msg, SignalingMessage)
        assert msg.type == message_type
        assert msg.to == "Bob"
        assert msg.from_ == "Alice"

    def test_signaling_requires_target(self) -> None:
        with pytest.raises(MalformedMessageError):
            decode_client_message('{"type": "offer", "from": "Alice"}')

    def test_heartbeat_and_request_participants(self) -> None:
        assert isinstance(decode_client_message('{"type": "heartbeat"}'), HeartbeatMessage)
        assert isinstance(
            decode_client_message('{"type": "request-participants"}'),
            RequestParticipantsMessage,
        )

    def test_bytes_frame(self) -> None:
        msg = decode_client_message(b'{"type": "join", "gamertag": "Alice"}')
        assert isinstance(msg, JoinMessage)

    def test_non_utf8_bytes_frame(self) -> None:
        frame = json.dumps({"type": "join", "gamertag": "Alice"}).encode("utf-16")
        with pytest.raises(MalformedMessageError, match="not UTF-8"):
            decode_client_message(frame)

    def test_frame_text(self) -> None:
        assert frame_text("caf\u00e9") == "caf\u00e9"
        assert frame_text("caf\u00e9".encode()) == "caf\u00e9"
        with pytest.raises(MalformedMessageError):
            frame_text(b"\xff\xfe{")

    def test_invalid_json(self) -> None:
        with pytest.raises(MalformedMessageError, match="Invalid JSON"):
            decode_client_message("{not json")

    def test_non_object(self) -> None:
        with pytest.raises(MalformedMessageError, match="must be an object"):
            decode_client_message("[1, 2, 3]")

    def test_unknown_type(self) -> None:
        with pytest.raises(UnknownMessageTypeError) as exc_info:
            decode_client_message('{"type": "teleport"}')
        assert exc_info.value.message_type == "teleport"

    def test_missing_type(self) -> None:
        with pytest.raises(UnknownMessageTypeError):
            decode_client_message('{"gamertag": "Alice"}')


class TestServerMessages:
    """Test outbound envelope serialization."""

    def test_participants_list_uses_list_field(self) -> None:
        data = json.loads(ParticipantsListMessage(identities=["Alice", "Bob"]).to_json())
        assert data == {"type": "participants-list", "list": ["Alice", "Bob"]}

    def test_ptt_update_camel_case(self) -> None:
        msg = PttUpdateMessage(gamertag="Alice", is_talking=True, is_muted=False)
        assert json.loads(msg.to_json()) == {
            "type": "ptt-update",
            "gamertag": "Alice",
            "isTalking": True,
            "isMuted": False,
        }

    def test_minecraft_update(self) -> None:
        msg = MinecraftUpdateMessage(
            data={"players": []},
            ptt_states=[{"gamertag": "Alice", "isTalking": True, "isMuted": False}],
            voice_states=[],
        )
        data = json.loads(msg.to_json())
        assert data["type"] == "minecraft-update"
        assert data["data"] == {"players": []}
        assert data["pttStates"][0]["gamertag"] == "Alice"
        assert data["voiceStates"] == []

    def test_error_default_code(self) -> None:
        data = json.loads(ErrorMessage(message="boom").to_json())
        assert data == {"type": "error", "message": "boom", "code": "INTERNAL_ERROR"}

    def test_server_shutdown(self) -> None:
        assert json.loads(ServerShutdownMessage().to_json()) == {"type": "server-shutdown"}
