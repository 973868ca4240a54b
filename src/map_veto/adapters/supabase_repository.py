"""Supabase-backed repository for sessions and their dependent records."""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from map_veto.domain.audit import ActorType, AuditAction, AuditLogEntry
from map_veto.domain.library import LibraryMap, Team
from map_veto.domain.maps import MapState, SessionMap, Vote
from map_veto.domain.players import SeatRole, SessionPlayer
from map_veto.domain.sessions import SessionFormat, SessionRecord, SessionStatus
from map_veto.errors import ConflictError
from map_veto.services.repository import VetoRepository

logger = logging.getLogger(__name__)

_SESSION_COLUMNS = (
    "id, match_name, format, status, player_count, map_pool_size, "
    "turn_timer_seconds, current_turn, current_round, created_by, created_at, "
    "updated_at, expires_at, timer_started_at, timer_paused_at, winner_map_id, "
    "started_at, completed_at, version"
)


@dataclass
class SupabaseVetoRepository(VetoRepository):
    """Supabase implementation of the veto repository.

    PostgREST offers no client-side transactions, so transaction() only marks
    the unit of work. Every turn-mutating operation claims the session row
    with a version check before writing dependent rows, so the loser of a
    race fails with VERSION_CONFLICT and writes nothing. Cascade delete runs
    as the delete_veto_session database function, which is atomic.
    """

    client: Client

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    def insert_session(self, session: SessionRecord) -> None:
        """Create a session row."""
        response = (
            self.client.table("veto_sessions")
            .insert(_session_to_row(session))
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create session")

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session by id, if present."""
        response = (
            self.client.table("veto_sessions")
            .select(_SESSION_COLUMNS)
            .eq("id", str(session_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_session(response.data[0])

    def update_session(
        self, session: SessionRecord, expected_version: int
    ) -> SessionRecord:
        """Compare-and-set a session row on its version column."""
        row = _session_to_row(session)
        row["version"] = expected_version + 1
        response = (
            self.client.table("veto_sessions")
            .update(row)
            .eq("id", str(session.id))
            .eq("version", expected_version)
            .execute()
        )
        if not response.data:
            logger.warning(
                "Version conflict on session update",
                extra={"session_id": str(session.id)},
            )
            raise ConflictError(
                "VERSION_CONFLICT",
                "The session changed concurrently; reload and retry.",
            )
        return _parse_session(response.data[0])

    def delete_session_tree(
        self, session_id: UUID, preserve_audit_logs: bool
    ) -> dict[str, int]:
        """Delete a session and its dependents in one database function call."""
        response = self.client.rpc(
            "delete_veto_session",
            {
                "p_session_id": str(session_id),
                "p_preserve_audit_logs": preserve_audit_logs,
            },
        ).execute()
        counts = response.data
        if not isinstance(counts, dict):
            raise RuntimeError("Failed to delete session")
        return {
            table: int(counts.get(table) or 0)
            for table in ("votes", "players", "maps", "audit_logs")
        }

    def list_sessions(
        self, statuses: Iterable[SessionStatus] | None, limit: int | None = None
    ) -> list[SessionRecord]:
        """Return sessions, newest first."""
        query = self.client.table("veto_sessions").select(_SESSION_COLUMNS)
        if statuses is not None:
            query = query.in_("status", [status.value for status in statuses])
        query = query.order("created_at", desc=True)
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        return [_parse_session(row) for row in response.data or []]

    def list_expired_sessions(
        self, statuses: Iterable[SessionStatus], before: datetime
    ) -> list[SessionRecord]:
        """Return sessions in the given statuses that expired at or before a time."""
        response = (
            self.client.table("veto_sessions")
            .select(_SESSION_COLUMNS)
            .in_("status", [status.value for status in statuses])
            .lte("expires_at", before.isoformat())
            .execute()
        )
        return [_parse_session(row) for row in response.data or []]

    def insert_player(self, player: SessionPlayer) -> None:
        """Create a seat row."""
        response = (
            self.client.table("session_players")
            .insert(_player_to_row(player))
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create seat")

    def get_player(self, player_id: UUID) -> SessionPlayer | None:
        """Return a seat by id, if present."""
        response = (
            self.client.table("session_players")
            .select("*")
            .eq("id", str(player_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_player(response.data[0])

    def get_player_by_token(self, token: str) -> SessionPlayer | None:
        """Return the seat holding a token, if any."""
        response = (
            self.client.table("session_players")
            .select("*")
            .eq("token", token)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_player(response.data[0])

    def list_players(self, session_id: UUID) -> list[SessionPlayer]:
        """Return every seat of a session."""
        response = (
            self.client.table("session_players")
            .select("*")
            .eq("session_id", str(session_id))
            .execute()
        )
        return [_parse_player(row) for row in response.data or []]

    def update_player(self, player: SessionPlayer) -> None:
        """Update a seat row."""
        self.client.table("session_players").update(_player_to_row(player)).eq(
            "id", str(player.id)
        ).execute()
    def insert_maps(self, maps: Iterable[SessionMap]) -> None:
        """Create session map rows."""
        rows = [_map_to_row(session_map) for session_map in maps]
        if not rows:
            return
        response = self.client.table("session_maps").insert(rows).execute()
        if not response.data:
            raise RuntimeError("Failed to create session maps")

    def list_maps(self, session_id: UUID) -> list[SessionMap]:
        """Return a session's maps in pool order."""
        response = (
            self.client.table("session_maps")
            .select("*")
            .eq("session_id", str(session_id))
            .order("position", desc=False)
            .execute()
        )
        return [_parse_map(row) for row in response.data or []]

    def update_map(self, session_map: SessionMap) -> None:
        """Update a session map row."""
        self.client.table("session_maps").update(_map_to_row(session_map)).eq(
            "id", str(session_map.id)
        ).execute()
    def insert_vote(self, vote: Vote) -> None:
        """Create a ballot row."""
        response = (
            self.client.table("votes")
            .insert(
                {
                    "id": str(vote.id),
                    "session_id": str(vote.session_id),
                    "round": vote.round,
                    "player_id": str(vote.player_id),
                    "map_id": str(vote.map_id),
                    "submitted_at": vote.submitted_at.isoformat(),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to record vote")

    def get_vote(self, session_id: UUID, player_id: UUID, round: int) -> Vote | None:
        """Return a seat's ballot for a round, if cast."""
        response = (
            self.client.table("votes")
            .select("*")
            .eq("session_id", str(session_id))
            .eq("player_id", str(player_id))
            .eq("round", round)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_vote(response.data[0])

    def list_votes(self, session_id: UUID, round: int | None = None) -> list[Vote]:
        """Return ballots of a session."""
        query = self.client.table("votes").select("*").eq("session_id", str(session_id))
        if round is not None:
            query = query.eq("round", round)
        response = query.execute()
        return [_parse_vote(row) for row in response.data or []]
    def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an audit log row."""
        self.client.table("audit_logs").insert(
            {
                "id": str(entry.id),
                "session_id": str(entry.session_id) if entry.session_id else None,
                "action": entry.action.value,
                "actor_type": entry.actor_type.value,
                "actor_id": entry.actor_id,
                "details": entry.details,
                "timestamp": entry.timestamp.isoformat(),
            }
        ).execute()

    def list_audit_entries(
        self, session_id: UUID, limit: int | None = None
    ) -> list[AuditLogEntry]:
        """Return audit entries of a session, newest first."""
        query = (
            self.client.table("audit_logs")
            .select("*")
            .eq("session_id", str(session_id))
            .order("timestamp", desc=True)
        )
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        return [_parse_audit_entry(row) for row in response.data or []]

    def insert_library_map(self, library_map: LibraryMap) -> None:
        """Create a library map row."""
        response = (
            self.client.table("maps")
            .insert(_library_map_to_row(library_map))
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create map")

    def get_library_map(self, map_id: UUID) -> LibraryMap | None:
        """Return a library map by id, if present."""
        response = (
            self.client.table("maps")
            .select("*")
            .eq("id", str(map_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_library_map(response.data[0])

    def list_library_maps(self, include_inactive: bool) -> list[LibraryMap]:
        """Return library maps sorted by name."""
        query = self.client.table("maps").select("*")
        if not include_inactive:
            query = query.eq("is_active", True)
        response = query.order("name", desc=False).execute()
        return [_parse_library_map(row) for row in response.data or []]

    def update_library_map(self, library_map: LibraryMap) -> None:
        """Update a library map row."""
        self.client.table("maps").update(_library_map_to_row(library_map)).eq(
            "id", str(library_map.id)
        ).execute()

    def list_sessions_using_map(self, map_id: UUID) -> list[SessionRecord]:
        """Return sessions whose pool snapshots a library map."""
        response = (
            self.client.table("session_maps")
            .select("session_id")
            .eq("map_id", str(map_id))
            .execute()
        )
        return self._sessions_by_id(row["session_id"] for row in response.data or [])

    def insert_team(self, team: Team) -> None:
        """Create a team row."""
        response = self.client.table("teams").insert(_team_to_row(team)).execute()
        if not response.data:
            raise RuntimeError("Failed to create team")

    def get_team(self, team_id: UUID) -> Team | None:
        """Return a team by id, if present."""
        response = (
            self.client.table("teams")
            .select("*")
            .eq("id", str(team_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_team(response.data[0])

    def get_team_by_name(self, name: str) -> Team | None:
        """Return the team with an exact name, if any."""
        response = (
            self.client.table("teams").select("*").eq("name", name).limit(1).execute()
        )
        if not response.data:
            return None
        return _parse_team(response.data[0])

    def list_teams(self) -> list[Team]:
        """Return teams sorted by name."""
        response = (
            self.client.table("teams").select("*").order("name", desc=False).execute()
        )
        return [_parse_team(row) for row in response.data or []]

    def update_team(self, team: Team) -> None:
        """Update a team row."""
        self.client.table("teams").update(_team_to_row(team)).eq(
            "id", str(team.id)
        ).execute()

    def delete_team(self, team_id: UUID) -> None:
        """Delete a team row."""
        self.client.table("teams").delete().eq("id", str(team_id)).execute()

    def list_sessions_using_team(self, team_name: str) -> list[SessionRecord]:
        """Return sessions with a seat assigned to a team name."""
        response = (
            self.client.table("session_players")
            .select("session_id")
            .eq("team_name", team_name)
            .execute()
        )
        return self._sessions_by_id(row["session_id"] for row in response.data or [])

    def _sessions_by_id(self, session_ids: Iterable[object]) -> list[SessionRecord]:
        values = sorted({str(value) for value in session_ids})
        if not values:
            return []
        response = (
            self.client.table("veto_sessions")
            .select(_SESSION_COLUMNS)
            .in_("id", values)
            .execute()
        )
        return [_parse_session(row) for row in response.data or []]


def _session_to_row(session: SessionRecord) -> dict[str, object]:
    return {
        "id": str(session.id),
        "match_name": session.match_name,
        "format": session.format.value,
        "status": session.status.value,
        "player_count": session.player_count,
        "map_pool_size": session.map_pool_size,
        "turn_timer_seconds": session.turn_timer_seconds,
        "current_turn": session.current_turn,
        "current_round": session.current_round,
        "created_by": session.created_by,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
        "timer_started_at": _isoformat(session.timer_started_at),
        "timer_paused_at": _isoformat(session.timer_paused_at),
        "winner_map_id": str(session.winner_map_id) if session.winner_map_id else None,
        "started_at": _isoformat(session.started_at),
        "completed_at": _isoformat(session.completed_at),
        "version": session.version,
    }


def _parse_session(row: dict[str, object]) -> SessionRecord:
    return SessionRecord(
        id=UUID(str(row["id"])),
        match_name=str(row["match_name"]),
        format=SessionFormat(row["format"]),
        status=SessionStatus(row["status"]),
        player_count=int(row["player_count"]),
        map_pool_size=int(row["map_pool_size"]),
        turn_timer_seconds=int(row["turn_timer_seconds"]),
        current_turn=int(row.get("current_turn") or 0),
        current_round=int(row.get("current_round") or 0),
        created_by=str(row["created_by"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
        expires_at=_parse_datetime(row["expires_at"]),
        timer_started_at=_parse_optional_datetime(row.get("timer_started_at")),
        timer_paused_at=_parse_optional_datetime(row.get("timer_paused_at")),
        winner_map_id=_parse_uuid(row.get("winner_map_id")),
        started_at=_parse_optional_datetime(row.get("started_at")),
        completed_at=_parse_optional_datetime(row.get("completed_at")),
        version=int(row.get("version") or 0),
    )


def _player_to_row(player: SessionPlayer) -> dict[str, object]:
    return {
        "id": str(player.id),
        "session_id": str(player.session_id),
        "role": player.role.value,
        "team_name": player.team_name,
        "token": player.token,
        "token_expires_at": player.token_expires_at.isoformat(),
        "created_at": player.created_at.isoformat(),
        "ip_address": player.ip_address,
        "last_heartbeat_at": _isoformat(player.last_heartbeat_at),
        "has_voted_this_round": player.has_voted_this_round,
    }


def _parse_player(row: dict[str, object]) -> SessionPlayer:
    return SessionPlayer(
        id=UUID(str(row["id"])),
        session_id=UUID(str(row["session_id"])),
        role=SeatRole(row["role"]),
        team_name=str(row["team_name"]),
        token=str(row["token"]),
        token_expires_at=_parse_datetime(row["token_expires_at"]),
        created_at=_parse_datetime(row["created_at"]),
        ip_address=row.get("ip_address") or None,
        last_heartbeat_at=_parse_optional_datetime(row.get("last_heartbeat_at")),
        has_voted_this_round=bool(row.get("has_voted_this_round")),
    )


def _map_to_row(session_map: SessionMap) -> dict[str, object]:
    return {
        "id": str(session_map.id),
        "session_id": str(session_map.session_id),
        "map_id": session_map.map_id,
        "name": session_map.name,
        "image_url": session_map.image_url,
        "position": session_map.position,
        "state": session_map.state.value,
        "banned_by_player_id": str(session_map.banned_by_player_id)
        if session_map.banned_by_player_id
        else None,
        "banned_at_turn": session_map.banned_at_turn,
        "banned_at_round": session_map.banned_at_round,
        "vote_count": session_map.vote_count,
    }


def _parse_map(row: dict[str, object]) -> SessionMap:
    return SessionMap(
        id=UUID(str(row["id"])),
        session_id=UUID(str(row["session_id"])),
        map_id=str(row["map_id"]),
        name=str(row["name"]),
        image_url=str(row.get("image_url") or ""),
        position=int(row["position"]),
        state=MapState(row.get("state") or MapState.AVAILABLE),
        banned_by_player_id=_parse_uuid(row.get("banned_by_player_id")),
        banned_at_turn=_parse_optional_int(row.get("banned_at_turn")),
        banned_at_round=_parse_optional_int(row.get("banned_at_round")),
        vote_count=_parse_optional_int(row.get("vote_count")),
    )


def _parse_vote(row: dict[str, object]) -> Vote:
    return Vote(
        id=UUID(str(row["id"])),
        session_id=UUID(str(row["session_id"])),
        round=int(row["round"]),
        player_id=UUID(str(row["player_id"])),
        map_id=UUID(str(row["map_id"])),
        submitted_at=_parse_datetime(row["submitted_at"]),
    )


def _parse_audit_entry(row: dict[str, object]) -> AuditLogEntry:
    details = row.get("details")
    return AuditLogEntry(
        id=UUID(str(row["id"])),
        session_id=_parse_uuid(row.get("session_id")),
        action=AuditAction(row["action"]),
        actor_type=ActorType(row["actor_type"]),
        actor_id=row.get("actor_id") or None,
        timestamp=_parse_datetime(row["timestamp"]),
        details=details if isinstance(details, dict) else {},
    )


def _library_map_to_row(library_map: LibraryMap) -> dict[str, object]:
    return {
        "id": str(library_map.id),
        "name": library_map.name,
        "image_url": library_map.image_url,
        "is_active": library_map.is_active,
        "created_at": library_map.created_at.isoformat(),
        "updated_at": library_map.updated_at.isoformat(),
    }


def _parse_library_map(row: dict[str, object]) -> LibraryMap:
    return LibraryMap(
        id=UUID(str(row["id"])),
        name=str(row["name"]),
        image_url=str(row.get("image_url") or ""),
        is_active=bool(row.get("is_active", True)),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _team_to_row(team: Team) -> dict[str, object]:
    return {
        "id": str(team.id),
        "name": team.name,
        "logo_url": team.logo_url,
        "created_at": team.created_at.isoformat(),
        "updated_at": team.updated_at.isoformat(),
    }


def _parse_team(row: dict[str, object]) -> Team:
    return Team(
        id=UUID(str(row["id"])),
        name=str(row["name"]),
        logo_url=row.get("logo_url") or None,
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: object) -> datetime:
    return datetime.fromisoformat(str(value))


def _parse_optional_datetime(value: object) -> datetime | None:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _parse_uuid(value: object) -> UUID | None:
    if not value:
        return None
    return UUID(str(value))


def _parse_optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)
