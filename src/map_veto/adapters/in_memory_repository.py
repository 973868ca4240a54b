"""In-process repository used for local runs and tests."""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import UUID

from map_veto.domain.audit import AuditLogEntry
from map_veto.domain.library import LibraryMap, Team
from map_veto.domain.maps import SessionMap, Vote
from map_veto.domain.players import SessionPlayer
from map_veto.domain.sessions import SessionRecord, SessionStatus
from map_veto.errors import ConflictError, IntegrityError
from map_veto.services.repository import VetoRepository


@dataclass
class InMemoryVetoRepository(VetoRepository):
    """Dictionary-backed repository with snapshot rollback.

    A re-entrant lock is held for the whole outermost transaction, so
    transactions are serialized. Nested transactions join the outer one.
    """

    sessions: dict[UUID, SessionRecord] = field(default_factory=dict)
    players: dict[UUID, SessionPlayer] = field(default_factory=dict)
    maps: dict[UUID, SessionMap] = field(default_factory=dict)
    votes: dict[UUID, Vote] = field(default_factory=dict)
    audit_entries: dict[UUID, AuditLogEntry] = field(default_factory=dict)
    library_maps: dict[UUID, LibraryMap] = field(default_factory=dict)
    teams: dict[UUID, Team] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _depth: int = field(default=0, repr=False)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            snapshot = self._snapshot()
            self._depth = 1
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._depth = 0

    def insert_session(self, session: SessionRecord) -> None:
        with self._lock:
            self.sessions[session.id] = session

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        with self._lock:
            return self.sessions.get(session_id)

    def update_session(
        self, session: SessionRecord, expected_version: int
    ) -> SessionRecord:
        with self._lock:
            current = self.sessions.get(session.id)
            if current is None or current.version != expected_version:
                raise ConflictError(
                    "VERSION_CONFLICT",
                    "The session changed concurrently; reload and retry.",
                )
            saved = replace(session, version=expected_version + 1)
            self.sessions[session.id] = saved
            return saved

    def delete_session(self, session_id: UUID) -> None:
        with self._lock:
            self.sessions.pop(session_id, None)

    def delete_session_tree(
        self, session_id: UUID, preserve_audit_logs: bool
    ) -> dict[str, int]:
        with self.transaction():
            votes = [vote.id for vote in self.list_votes(session_id)]
            players = [player.id for player in self.list_players(session_id)]
            maps = [session_map.id for session_map in self.list_maps(session_id)]
            entries = (
                []
                if preserve_audit_logs
                else [entry.id for entry in self.list_audit_entries(session_id)]
            )
            self.delete_votes(votes)
            self.delete_players(players)
            self.delete_maps(maps)
            self.delete_audit_entries(entries)
            self.delete_session(session_id)
        return {
            "votes": len(votes),
            "players": len(players),
            "maps": len(maps),
            "audit_logs": len(entries),
        }

    def list_sessions(
        self, statuses: Iterable[SessionStatus] | None, limit: int | None = None
    ) -> list[SessionRecord]:
        with self._lock:
            wanted = set(statuses) if statuses is not None else None
            rows = [
                s
                for s in self.sessions.values()
                if wanted is None or s.status in wanted
            ]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return rows[:limit] if limit is not None else rows

    def list_expired_sessions(
        self, statuses: Iterable[SessionStatus], before: datetime
    ) -> list[SessionRecord]:
        wanted = set(statuses)
        with self._lock:
            return [
                s
                for s in self.sessions.values()
                if s.status in wanted and s.expires_at <= before
            ]

    def insert_player(self, player: SessionPlayer) -> None:
        with self._lock:
            if player.session_id not in self.sessions:
                raise IntegrityError("SESSION_MISSING", "Seat references no session.")
            if any(p.token == player.token for p in self.players.values()):
                raise IntegrityError("TOKEN_COLLISION", "Token is already in use.")
            self.players[player.id] = player

    def get_player(self, player_id: UUID) -> SessionPlayer | None:
        with self._lock:
            return self.players.get(player_id)

    def get_player_by_token(self, token: str) -> SessionPlayer | None:
        with self._lock:
            return next((p for p in self.players.values() if p.token == token), None)

    def list_players(self, session_id: UUID) -> list[SessionPlayer]:
        with self._lock:
            return [p for p in self.players.values() if p.session_id == session_id]

    def update_player(self, player: SessionPlayer) -> None:
        with self._lock:
            self.players[player.id] = player

    def delete_players(self, player_ids: Iterable[UUID]) -> None:
        with self._lock:
            for player_id in player_ids:
                self.players.pop(player_id, None)

    def insert_maps(self, maps: Iterable[SessionMap]) -> None:
        with self._lock:
            for session_map in maps:
                self.maps[session_map.id] = session_map

    def list_maps(self, session_id: UUID) -> list[SessionMap]:
        with self._lock:
            rows = [m for m in self.maps.values() if m.session_id == session_id]
        return sorted(rows, key=lambda m: m.position)

    def update_map(self, session_map: SessionMap) -> None:
        with self._lock:
            self.maps[session_map.id] = session_map

    def delete_maps(self, map_ids: Iterable[UUID]) -> None:
        with self._lock:
            for map_id in map_ids:
                self.maps.pop(map_id, None)

    def insert_vote(self, vote: Vote) -> None:
        with self._lock:
            if self.get_vote(vote.session_id, vote.player_id, vote.round):
                raise ConflictError("ALREADY_VOTED", "You already voted this round.")
            self.votes[vote.id] = vote

    def get_vote(self, session_id: UUID, player_id: UUID, round: int) -> Vote | None:
        with self._lock:
            return next(
                (
                    v
                    for v in self.votes.values()
                    if v.session_id == session_id
                    and v.player_id == player_id
                    and v.round == round
                ),
                None,
            )

    def list_votes(self, session_id: UUID, round: int | None = None) -> list[Vote]:
        with self._lock:
            return [
                v
                for v in self.votes.values()
                if v.session_id == session_id and (round is None or v.round == round)
            ]

    def delete_votes(self, vote_ids: Iterable[UUID]) -> None:
        with self._lock:
            for vote_id in vote_ids:
                self.votes.pop(vote_id, None)

    def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self.audit_entries[entry.id] = entry

    def list_audit_entries(
        self, session_id: UUID, limit: int | None = None
    ) -> list[AuditLogEntry]:
        with self._lock:
            rows = [
                e for e in self.audit_entries.values() if e.session_id == session_id
            ]
        # Insertion order breaks timestamp ties.
        rows.reverse()
        rows.sort(key=lambda e: e.timestamp, reverse=True)
        return rows[:limit] if limit is not None else rows

    def delete_audit_entries(self, entry_ids: Iterable[UUID]) -> None:
        with self._lock:
            for entry_id in entry_ids:
                self.audit_entries.pop(entry_id, None)

    def insert_library_map(self, library_map: LibraryMap) -> None:
        with self._lock:
            self.library_maps[library_map.id] = library_map

    def get_library_map(self, map_id: UUID) -> LibraryMap | None:
        with self._lock:
            return self.library_maps.get(map_id)

    def list_library_maps(self, include_inactive: bool) -> list[LibraryMap]:
        with self._lock:
            rows = [
                m for m in self.library_maps.values() if include_inactive or m.is_active
            ]
        return sorted(rows, key=lambda m: m.name)

    def update_library_map(self, library_map: LibraryMap) -> None:
        with self._lock:
            self.library_maps[library_map.id] = library_map

    def list_sessions_using_map(self, map_id: UUID) -> list[SessionRecord]:
        with self._lock:
            session_ids = {
                m.session_id for m in self.maps.values() if m.map_id == str(map_id)
            }
            return [self.sessions[i] for i in session_ids if i in self.sessions]

    def insert_team(self, team: Team) -> None:
        with self._lock:
            if self.get_team_by_name(team.name):
                raise IntegrityError("TEAM_NAME_TAKEN", "Team name is already in use.")
            self.teams[team.id] = team

    def get_team(self, team_id: UUID) -> Team | None:
        with self._lock:
            return self.teams.get(team_id)

    def get_team_by_name(self, name: str) -> Team | None:
        with self._lock:
            return next((t for t in self.teams.values() if t.name == name), None)

    def list_teams(self) -> list[Team]:
        with self._lock:
            return sorted(self.teams.values(), key=lambda t: t.name)

    def update_team(self, team: Team) -> None:
        with self._lock:
            self.teams[team.id] = team

    def delete_team(self, team_id: UUID) -> None:
        with self._lock:
            self.teams.pop(team_id, None)

    def list_sessions_using_team(self, team_name: str) -> list[SessionRecord]:
        with self._lock:
            session_ids = {
                p.session_id for p in self.players.values() if p.team_name == team_name
            }
            return [self.sessions[i] for i in session_ids if i in self.sessions]

    def _snapshot(self) -> tuple[dict, ...]:
        return (
            dict(self.sessions),
            dict(self.players),
            dict(self.maps),
            dict(self.votes),
            dict(self.audit_entries),
            dict(self.library_maps),
            dict(self.teams),
        )

    def _restore(self, snapshot: tuple[dict, ...]) -> None:
        (
            self.sessions,
            self.players,
            self.maps,
            self.votes,
            self.audit_entries,
            self.library_maps,
            self.teams,
        ) = snapshot
