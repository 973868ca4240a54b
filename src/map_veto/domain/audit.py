"""Audit trail domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class ActorType(StrEnum):
    """Who performed an audited action."""

    ADMIN = "ADMIN"
    PLAYER = "PLAYER"
    SYSTEM = "SYSTEM"


class AuditAction(StrEnum):
    """Audited actions."""

    SESSION_CREATED = "SESSION_CREATED"
    SESSION_UPDATED = "SESSION_UPDATED"
    SESSION_FINALIZED = "SESSION_FINALIZED"
    SESSION_STARTED = "SESSION_STARTED"
    SESSION_PAUSED = "SESSION_PAUSED"
    SESSION_RESUMED = "SESSION_RESUMED"
    SESSION_ENDED = "SESSION_ENDED"
    SESSION_DELETED = "SESSION_DELETED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    PLAYER_CONNECTED = "PLAYER_CONNECTED"
    PLAYER_ASSIGNED = "PLAYER_ASSIGNED"
    MAPS_ASSIGNED = "MAPS_ASSIGNED"
    MAP_BANNED = "MAP_BANNED"
    VOTE_SUBMITTED = "VOTE_SUBMITTED"
    ROUND_RESOLVED = "ROUND_RESOLVED"
    TIMER_EXPIRED = "TIMER_EXPIRED"
    FALLBACK_SELECTION = "FALLBACK_SELECTION"
    WINNER_DECLARED = "WINNER_DECLARED"


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one state transition."""

    id: UUID
    session_id: UUID | None
    action: AuditAction
    actor_type: ActorType
    actor_id: str | None
    timestamp: datetime
    details: dict[str, object] = field(default_factory=dict)
