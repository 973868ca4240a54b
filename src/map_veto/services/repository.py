"""Persistence interfaces shared by the session engine services."""

from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from map_veto.domain.audit import AuditLogEntry
from map_veto.domain.library import LibraryMap, Team
from map_veto.domain.maps import SessionMap, Vote
from map_veto.domain.players import SessionPlayer
from map_veto.domain.sessions import SessionRecord, SessionStatus

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(tz=UTC)


class LibraryRepository(Protocol):
    """Persistence interface for the map and team libraries."""

    def insert_library_map(self, library_map: LibraryMap) -> None:
        """Insert a library map."""

    def get_library_map(self, map_id: UUID) -> LibraryMap | None:
        """Return a library map by id, if present."""

    def list_library_maps(self, include_inactive: bool) -> list[LibraryMap]:
        """Return library maps sorted by name."""

    def update_library_map(self, library_map: LibraryMap) -> None:
        """Replace a library map."""

    def list_sessions_using_map(self, map_id: UUID) -> list[SessionRecord]:
        """Return sessions whose pool snapshots the given library map."""

    def insert_team(self, team: Team) -> None:
        """Insert a team."""

    def get_team(self, team_id: UUID) -> Team | None:
        """Return a team by id, if present."""

    def get_team_by_name(self, name: str) -> Team | None:
        """Return the team with an exact name, if any."""

    def list_teams(self) -> list[Team]:
        """Return teams sorted by name."""

    def update_team(self, team: Team) -> None:
        """Replace a team."""

    def delete_team(self, team_id: UUID) -> None:
        """Delete a team."""

    def list_sessions_using_team(self, team_name: str) -> list[SessionRecord]:
        """Return sessions with a seat assigned to the team name."""


class VetoRepository(LibraryRepository, Protocol):
    """Persistence interface for sessions and every record that references one."""

    def transaction(self) -> AbstractContextManager[None]:
        """Return a context manager that commits on exit or rolls back on error."""

    def insert_session(self, session: SessionRecord) -> None:
        """Insert a new session."""

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session by id, if present."""

    def update_session(
        self, session: SessionRecord, expected_version: int
    ) -> SessionRecord:
        """Replace a session if its stored version matches, bumping the version.

        Raises ConflictError("VERSION_CONFLICT") when the stored version differs.
        """

    def delete_session_tree(
        self, session_id: UUID, preserve_audit_logs: bool
    ) -> dict[str, int]:
        """Atomically delete a session with its votes, seats, maps and audit logs.

        Dependents are collected before the first delete and removed in that
        order, the session row last. Returns the row count per table.
        """

    def list_sessions(
        self, statuses: Iterable[SessionStatus] | None, limit: int | None = None
    ) -> list[SessionRecord]:
        """Return sessions, newest first, optionally filtered by status."""

    def list_expired_sessions(
        self, statuses: Iterable[SessionStatus], before: datetime
    ) -> list[SessionRecord]:
        """Return sessions in the given statuses expiring at or before a time."""

    def insert_player(self, player: SessionPlayer) -> None:
        """Insert a seat."""

    def get_player(self, player_id: UUID) -> SessionPlayer | None:
        """Return a seat by id, if present."""

    def get_player_by_token(self, token: str) -> SessionPlayer | None:
        """Return the seat holding a token, if any."""

    def list_players(self, session_id: UUID) -> list[SessionPlayer]:
        """Return every seat of a session."""

    def update_player(self, player: SessionPlayer) -> None:
        """Replace a seat."""

    def insert_maps(self, maps: Iterable[SessionMap]) -> None:
        """Insert session maps."""

    def list_maps(self, session_id: UUID) -> list[SessionMap]:
        """Return a session's maps ordered by pool position."""

    def update_map(self, session_map: SessionMap) -> None:
        """Replace a session map."""

    def insert_vote(self, vote: Vote) -> None:
        """Insert a ballot."""

    def get_vote(self, session_id: UUID, player_id: UUID, round: int) -> Vote | None:
        """Return the ballot of a seat for a round, if cast."""

    def list_votes(self, session_id: UUID, round: int | None = None) -> list[Vote]:
        """Return ballots of a session, optionally for a single round."""

    def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an audit entry."""

    def list_audit_entries(
        self, session_id: UUID, limit: int | None = None
    ) -> list[AuditLogEntry]:
        """Return audit entries of a session, newest first."""
