"""Domain models for veto sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class SessionFormat(StrEnum):
    """Negotiation format."""

    ABBA = "ABBA"
    MULTIPLAYER = "MULTIPLAYER"


class SessionStatus(StrEnum):
    """Session lifecycle status."""

    DRAFT = "DRAFT"
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETE = "COMPLETE"
    EXPIRED = "EXPIRED"


# Forward-only lifecycle graph; IN_PROGRESS <-> PAUSED is the only cycle.
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.DRAFT: frozenset({SessionStatus.WAITING, SessionStatus.EXPIRED}),
    SessionStatus.WAITING: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.EXPIRED}
    ),
    SessionStatus.IN_PROGRESS: frozenset(
        {SessionStatus.PAUSED, SessionStatus.COMPLETE}
    ),
    SessionStatus.PAUSED: frozenset({SessionStatus.IN_PROGRESS}),
    SessionStatus.COMPLETE: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETE, SessionStatus.EXPIRED})
EXPIRABLE_STATUSES = frozenset({SessionStatus.DRAFT, SessionStatus.WAITING})
ACTIVE_STATUSES = frozenset(set(SessionStatus) - TERMINAL_STATUSES)

PLAYER_COUNTS = {SessionFormat.ABBA: 2, SessionFormat.MULTIPLAYER: 4}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """Return true when the lifecycle graph allows current -> target."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class SessionRecord:
    """Represents a persisted negotiation session."""

    id: UUID
    match_name: str
    format: SessionFormat
    status: SessionStatus
    player_count: int
    map_pool_size: int
    turn_timer_seconds: int
    current_turn: int
    current_round: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    timer_started_at: datetime | None = None
    timer_paused_at: datetime | None = None
    winner_map_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0
