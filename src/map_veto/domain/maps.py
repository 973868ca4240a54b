"""Domain models for session map pools and ballots."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class MapState(StrEnum):
    """State of a candidate map inside a session."""

    AVAILABLE = "AVAILABLE"
    BANNED = "BANNED"
    WINNER = "WINNER"


@dataclass(frozen=True)
class SessionMap:
    """Snapshot of a library map inside one session's pool."""

    id: UUID
    session_id: UUID
    map_id: str
    name: str
    image_url: str
    position: int
    state: MapState = MapState.AVAILABLE
    banned_by_player_id: UUID | None = None
    banned_at_turn: int | None = None
    banned_at_round: int | None = None
    vote_count: int | None = None


@dataclass(frozen=True)
class Vote:
    """One round's ballot cast by one seat."""

    id: UUID
    session_id: UUID
    round: int
    player_id: UUID
    map_id: UUID
    submitted_at: datetime
