"""Domain models for session seats."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from map_veto.domain.sessions import SessionFormat


class SeatRole(StrEnum):
    """Seat roles; ABBA uses A/B, multiplayer uses 1-4."""

    PLAYER_A = "PLAYER_A"
    PLAYER_B = "PLAYER_B"
    PLAYER_1 = "PLAYER_1"
    PLAYER_2 = "PLAYER_2"
    PLAYER_3 = "PLAYER_3"
    PLAYER_4 = "PLAYER_4"


ROLES_BY_FORMAT: dict[SessionFormat, tuple[SeatRole, ...]] = {
    SessionFormat.ABBA: (SeatRole.PLAYER_A, SeatRole.PLAYER_B),
    SessionFormat.MULTIPLAYER: (
        SeatRole.PLAYER_1,
        SeatRole.PLAYER_2,
        SeatRole.PLAYER_3,
        SeatRole.PLAYER_4,
    ),
}


@dataclass(frozen=True)
class SessionPlayer:
    """One team's seat in a session."""

    id: UUID
    session_id: UUID
    role: SeatRole
    team_name: str
    token: str
    token_expires_at: datetime
    created_at: datetime
    ip_address: str | None = None
    last_heartbeat_at: datetime | None = None
    has_voted_this_round: bool = False


def role_order(role: SeatRole) -> int:
    """Return the stable ordering index of a role within its format."""
    for roles in ROLES_BY_FORMAT.values():
        if role in roles:
            return roles.index(role)
    return len(SeatRole)
