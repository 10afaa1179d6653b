"""World snapshot ingestion format.

Adapts the payload posted by the Minecraft add-on:

    {"players": [{"name": "Alice",
                  "data": {"isMuted": true, "isTalking": false,
                           "voiceVolume": -30, ...}}, ...]}

Only the per-player mute/talk/volume fields are interpreted; the payload as a
whole is kept verbatim and re-broadcast to clients.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from envirovoice.errors import SnapshotProcessingError
from envirovoice.state import SILENCE_DB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayerRecord:
    """Voice-relevant fields of one snapshot player."""

    identity: str
    is_talking: bool
    is_muted: bool
    volume: float


@dataclass(frozen=True)
class IngestSummary:
    """Result of ingesting one snapshot."""

    processed: int
    broadcasted: int
    duration_ms: float

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "broadcasted": self.broadcasted,
            "duration": f"{round(self.duration_ms)}ms",
        }


def extract_players(payload: Any) -> list[Any]:
    """Return the raw player list of a snapshot.

    A missing or non-list `players` field counts as no players.

    Raises:
        SnapshotProcessingError: If the payload is not a JSON object
    """
    if not isinstance(payload, dict):
        raise SnapshotProcessingError(
            f"Snapshot must be a JSON object, got {type(payload).__name__}"
        )
    players = payload.get("players")
    return players if isinstance(players, list) else []


def parse_player(raw: Any) -> PlayerRecord | None:
    """Interpret one player entry.

    Returns:
        The record, or None if the entry has no usable name
    """
    if not isinstance(raw, dict):
        logger.warning("Skipping non-object player entry", extra={"entry": repr(raw)[:80]})
        return None

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        return None

    data = raw.get("data")
    if not isinstance(data, dict):
        data = {}

    return PlayerRecord(
        identity=name,
        is_talking=bool(data.get("isTalking")),
        is_muted=bool(data.get("isMuted")),
        volume=_volume(data.get("voiceVolume")),
    )


def _volume(value: Any) -> float:
    # bool is an int subclass; true/false is not a level
    if isinstance(value, bool) or not isinstance(value, int | float):
        return SILENCE_DB
    if not math.isfinite(value):
        return SILENCE_DB
    return float(value)
