"""Session lifecycle state machine."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from map_veto.config import Settings
from map_veto.domain.audit import ActorType, AuditAction
from map_veto.domain.maps import MapState, SessionMap
from map_veto.domain.players import ROLES_BY_FORMAT, SeatRole, SessionPlayer, role_order
from map_veto.domain.sessions import (
    EXPIRABLE_STATUSES,
    PLAYER_COUNTS,
    SessionFormat,
    SessionRecord,
    SessionStatus,
    can_transition,
)
from map_veto.errors import ConflictError, NotFoundError, ValidationError
from map_veto.services.audit import AuditService
from map_veto.services.repository import Clock, VetoRepository, utcnow
from map_veto.services.tokens import PlayerTokenService
from map_veto.services.turns import (
    TurnEngine,
    TurnOutcome,
    active_seat,
    is_seat_turn,
    seconds_remaining,
)
from map_veto.services.validation import validate_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionLimits:
    """Configured bounds for new sessions."""

    min_turn_timer_seconds: int = 10
    max_turn_timer_seconds: int = 300
    default_turn_timer_seconds: int = 30
    min_map_pool_size: int = 3
    max_map_pool_size: int = 15
    default_map_pool_size: int = 5
    session_expiry: timedelta = timedelta(days=14)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionLimits":
        return cls(
            min_turn_timer_seconds=settings.min_turn_timer_seconds,
            max_turn_timer_seconds=settings.max_turn_timer_seconds,
            default_turn_timer_seconds=settings.default_turn_timer_seconds,
            min_map_pool_size=settings.min_map_pool_size,
            max_map_pool_size=settings.max_map_pool_size,
            default_map_pool_size=settings.default_map_pool_size,
            session_expiry=timedelta(days=settings.session_expiry_days),
        )


@dataclass(frozen=True)
class ExpirySweepResult:
    """Outcome of an expiration sweep."""

    expired_count: int
    ips_cleared: int


@dataclass
class SessionService:
    """Owns the session lifecycle and gates which operations are legal."""

    repository: VetoRepository
    audit_service: AuditService
    token_service: PlayerTokenService
    turn_engine: TurnEngine
    limits: SessionLimits = SessionLimits()
    clock: Clock = utcnow

    # -- administrator operations -------------------------------------------

    def create_session(
        self,
        admin_id: str,
        match_name: str,
        format: SessionFormat,
        turn_timer_seconds: int | None = None,
        map_pool_size: int | None = None,
    ) -> SessionRecord:
        """Create a DRAFT session with no seats or maps."""
        name = validate_name(match_name, "Match")
        timer = _validate_range(
            turn_timer_seconds,
            self.limits.default_turn_timer_seconds,
            self.limits.min_turn_timer_seconds,
            self.limits.max_turn_timer_seconds,
            "Turn timer",
        )
        pool_size = _validate_range(
            map_pool_size,
            self.limits.default_map_pool_size,
            self.limits.min_map_pool_size,
            self.limits.max_map_pool_size,
            "Map pool size",
        )
        now = self.clock()
        session = SessionRecord(
            id=uuid4(),
            match_name=name,
            format=format,
            status=SessionStatus.DRAFT,
            player_count=PLAYER_COUNTS[format],
            map_pool_size=pool_size,
            turn_timer_seconds=timer,
            current_turn=0,
            current_round=0,
            created_by=admin_id,
            created_at=now,
            updated_at=now,
            expires_at=now + self.limits.session_expiry,
        )
        with self.repository.transaction():
            self.repository.insert_session(session)
            self.audit_service.record_event(
                session_id=session.id,
                action=AuditAction.SESSION_CREATED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                details={"format": format.value, "map_pool_size": pool_size},
            )
        logger.info("Session created", extra={"session_id": str(session.id)})
        return session

    def update_session(
        self,
        admin_id: str,
        session_id: UUID,
        match_name: str | None = None,
        turn_timer_seconds: int | None = None,
    ) -> SessionRecord:
        """Rename a session or change its timer while it is DRAFT or WAITING."""
        changes: dict[str, object] = {}
        if match_name is not None:
            changes["match_name"] = validate_name(match_name, "Match")
        if turn_timer_seconds is not None:
            changes["turn_timer_seconds"] = _validate_range(
                turn_timer_seconds,
                self.limits.default_turn_timer_seconds,
                self.limits.min_turn_timer_seconds,
                self.limits.max_turn_timer_seconds,
                "Turn timer",
            )
        if not changes:
            raise ValidationError("NOTHING_TO_UPDATE", "No changes were provided.")
        with self.repository.transaction():
            session = self._load(session_id)
            if session.status not in EXPIRABLE_STATUSES:
                raise ConflictError(
                    "INVALID_STATE",
                    f"Cannot update a session in {session.status.value} state.",
                )
            saved = self.repository.update_session(
                replace(session, updated_at=self.clock(), **changes),
                expected_version=session.version,
            )
            self.audit_service.record_event(
                session_id=session_id,
                action=AuditAction.SESSION_UPDATED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                details={"reason": f"Updated: {', '.join(sorted(changes))}"},
            )
            return saved

    def assign_seat(
        self, admin_id: str, session_id: UUID, role: SeatRole, team_name: str
    ) -> SessionPlayer:
        """Allocate a seat for a team and issue its access token."""
        team = validate_name(team_name, "Team")
        with self.repository.transaction():
            session = self._load(session_id)
            if session.status is not SessionStatus.DRAFT:
                raise ConflictError(
                    "INVALID_STATE",
                    f"Seats can only be assigned in DRAFT, not {session.status.value}.",
                )
            if role not in ROLES_BY_FORMAT[session.format]:
                raise ValidationError(
                    "INVALID_ROLE",
                    f"{role.value} is not a seat of a {session.format.value} session.",
                )
            players = self.repository.list_players(session_id)
            if any(player.role is role for player in players):
                raise ConflictError(
                    "ROLE_OCCUPIED", f"{role.value} is already assigned."
                )

            seat_id = uuid4()
            issued = self.token_service.issue(session_id, seat_id)
            now = self.clock()
            seat = SessionPlayer(
                id=seat_id,
                session_id=session_id,
                role=role,
                team_name=team,
                token=issued.token,
                token_expires_at=issued.expires_at,
                created_at=now,
            )
            session = self.repository.update_session(
                replace(session, updated_at=now), expected_version=session.version
            )
            self.repository.insert_player(seat)
            self.audit_service.record_event(
                session_id=session_id,
                action=AuditAction.PLAYER_ASSIGNED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                details={"team_name": team, "role": role.value},
            )
            self._finalize_if_ready(session, admin_id)
            return seat

    def set_map_pool(
        self, admin_id: str, session_id: UUID, map_ids: Sequence[UUID]
    ) -> list[SessionMap]:
        """Snapshot exactly map_pool_size active library maps into the session.

        The snapshot copies name and image, so later library edits never
        reach a session that already has its pool.
        """
        with self.repository.transaction():
            session = self._load(session_id)
            if session.status is not SessionStatus.DRAFT:
                raise ConflictError(
                    "INVALID_STATE",
                    f"Maps can only be set in DRAFT, not {session.status.value}.",
                )
            if len(map_ids) != session.map_pool_size:
                raise ValidationError(
                    "WRONG_POOL_SIZE",
                    f"Expected {session.map_pool_size} maps, received {len(map_ids)}.",
                )
            if len(set(map_ids)) != len(map_ids):
                raise ValidationError(
                    "DUPLICATE_MAP", "Duplicate maps are not allowed in a session."
                )
            if self.repository.list_maps(session_id):
                raise ConflictError(
                    "POOL_ALREADY_SET", "The map pool of this session is already set."
                )
            sources = []
            for map_id in map_ids:
                source = self.repository.get_library_map(map_id)
                if source is None:
                    raise NotFoundError(
                        "MAP_NOT_FOUND",
                        f"Map not found: {map_id}",
                        details={"map_id": str(map_id)},
                    )
                if not source.is_active:
                    raise ValidationError(
                        "MAP_INACTIVE",
                        f'Map "{source.name}" is not active.',
                        details={"map_id": str(map_id)},
                    )
                sources.append(source)

            session = self.repository.update_session(
                replace(session, updated_at=self.clock()),
                expected_version=session.version,
            )
            session_maps = [
                SessionMap(
                    id=uuid4(),
                    session_id=session_id,
                    map_id=str(source.id),
                    name=source.name,
                    image_url=source.image_url,
                    position=position,
                )
                for position, source in enumerate(sources)
            ]
            self.repository.insert_maps(session_maps)
            self.audit_service.record_event(
                session_id=session_id,
                action=AuditAction.MAPS_ASSIGNED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                details={"maps": [m.name for m in session_maps]},
            )
            self._finalize_if_ready(session, admin_id)
            return session_maps

    def start_session(self, admin_id: str, session_id: UUID) -> SessionRecord:
        """WAITING -> IN_PROGRESS; counters reset and the timer starts."""
        with self.repository.transaction():
            session = self._load(session_id)
            now = self.clock()
            return self._transition(
                session,
                SessionStatus.IN_PROGRESS,
                AuditAction.SESSION_STARTED,
                ActorType.ADMIN,
                admin_id,
                current_turn=0,
                current_round=1,
                timer_started_at=now,
                timer_paused_at=None,
                started_at=now,
            )

    def pause_session(self, admin_id: str, session_id: UUID) -> SessionRecord:
        """IN_PROGRESS -> PAUSED; the timer freezes."""
        with self.repository.transaction():
            session = self._load(session_id)
            return self._transition(
                session,
                SessionStatus.PAUSED,
                AuditAction.SESSION_PAUSED,
                ActorType.ADMIN,
                admin_id,
                timer_paused_at=self.clock(),
            )

    def resume_session(self, admin_id: str, session_id: UUID) -> SessionRecord:
        """PAUSED -> IN_PROGRESS; the timer continues with its remaining time."""
        with self.repository.transaction():
            session = self._load(session_id)
            now = self.clock()
            timer_started_at = session.timer_started_at
            if timer_started_at is not None and session.timer_paused_at is not None:
                timer_started_at += now - session.timer_paused_at
            return self._transition(
                session,
                SessionStatus.IN_PROGRESS,
                AuditAction.SESSION_RESUMED,
                ActorType.ADMIN,
                admin_id,
                timer_started_at=timer_started_at or now,
                timer_paused_at=None,
            )

    def complete_session(
        self,
        session_id: UUID,
        actor_type: ActorType = ActorType.ADMIN,
        actor_id: str | None = None,
    ) -> SessionRecord:
        """IN_PROGRESS -> COMPLETE once a winner has been declared."""
        with self.repository.transaction():
            return self._complete(self._load(session_id), actor_type, actor_id)

    def expire_session(
        self,
        session_id: UUID,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
    ) -> bool:
        """DRAFT/WAITING -> EXPIRED once past expiry; no-op when already expired."""
        with self.repository.transaction():
            session = self._load(session_id)
            return self._expire(session, actor_type, actor_id) is not None

    def expire_stale_sessions(self) -> ExpirySweepResult:
        """Scheduler entry point expiring every overdue DRAFT/WAITING session."""
        expired = 0
        cleared = 0
        stale = self.repository.list_expired_sessions(EXPIRABLE_STATUSES, self.clock())
        for candidate in stale:
            try:
                with self.repository.transaction():
                    session = self._load(candidate.id)
                    result = self._expire(session, ActorType.SYSTEM, None)
            except (ConflictError, NotFoundError) as exc:
                logger.warning(
                    "Skipped session during expiry sweep: %s",
                    exc.code,
                    extra={"session_id": str(candidate.id)},
                )
                continue
            if result is not None:
                expired += 1
                cleared += result
        if expired:
            logger.info(
                "Expired %s stale session(s), cleared %s IP address(es)",
                expired,
                cleared,
            )
        return ExpirySweepResult(expired_count=expired, ips_cleared=cleared)

    # -- player operations --------------------------------------------------

    def authenticate_by_token(
        self, token: str, request_ip: str | None
    ) -> SessionPlayer:
        """Resolve and IP-lock a seat token."""
        return self.token_service.authenticate(token, request_ip)

    def heartbeat(self, token: str, request_ip: str | None) -> SessionPlayer:
        """Record that a seat is still connected."""
        seat = self.token_service.authenticate(token, request_ip)
        return self.token_service.record_heartbeat(seat)

    def submit_ban(
        self, token: str, request_ip: str | None, map_id: UUID
    ) -> TurnOutcome:
        """Ban a map for the authenticated seat (ABBA)."""
        seat = self.token_service.authenticate(token, request_ip)
        self.check_timeout(seat.session_id)
        with self.repository.transaction():
            session = self._load(seat.session_id)
            outcome = self.turn_engine.submit_ban(session, seat, map_id)
            return self._complete_if_won(outcome)

    def submit_vote(
        self, token: str, request_ip: str | None, map_id: UUID, round: int
    ) -> TurnOutcome:
        """Cast a ballot for the authenticated seat (multiplayer)."""
        seat = self.token_service.authenticate(token, request_ip)
        self.check_timeout(seat.session_id)
        with self.repository.transaction():
            session = self._load(seat.session_id)
            outcome = self.turn_engine.submit_vote(session, seat, map_id, round)
            return self._complete_if_won(outcome)

    def check_timeout(self, session_id: UUID) -> bool:
        """Lazily apply an expired turn timer; return whether an action ran."""
        with self.repository.transaction():
            session = self._load(session_id)
            outcome = self.turn_engine.apply_timeout(session)
            if outcome is None:
                return False
            self._complete_if_won(outcome)
            return True

    def sweep_timeouts(self) -> int:
        """Scheduler entry point applying due timeouts to running sessions."""
        applied = 0
        for session in self.repository.list_sessions([SessionStatus.IN_PROGRESS]):
            try:
                if self.check_timeout(session.id):
                    applied += 1
            except (ConflictError, NotFoundError) as exc:
                logger.warning(
                    "Skipped session during timeout sweep: %s",
                    exc.code,
                    extra={"session_id": str(session.id)},
                )
        return applied

    # -- views --------------------------------------------------------------

    def get_session_view(
        self,
        token: str | None = None,
        session_id: UUID | None = None,
        request_ip: str | None = None,
    ) -> dict[str, object]:
        """Return the player view for a token or the admin view for a session."""
        if token is not None:
            return self.get_player_view(token, request_ip)
        if session_id is not None:
            return self.get_admin_view(session_id)
        raise ValidationError(
            "MISSING_IDENTIFIER", "A token or session id is required."
        )

    def get_player_view(self, token: str, request_ip: str | None) -> dict[str, object]:
        """Return the sanitized view of a session for one seat."""
        seat = self.token_service.authenticate(token, request_ip)
        self._apply_due_timeout(seat.session_id)
        session = self._load(seat.session_id)
        players = self.repository.list_players(session.id)
        me = next((p for p in players if p.id == seat.id), seat)
        due = active_seat(session, players)
        return {
            "session": self._serialize_session(session),
            "player": self._serialize_seat(me),
            "other_players": [
                self._serialize_seat(p) for p in _ordered(players) if p.id != me.id
            ],
            "maps": [
                _serialize_map(m) for m in self.repository.list_maps(session.id)
            ],
            "is_your_turn": is_seat_turn(session, me, players),
            "active_role": due.role.value
            if due and session.status is SessionStatus.IN_PROGRESS
            else None,
        }

    def get_admin_view(self, session_id: UUID) -> dict[str, object]:
        """Return the full view of a session, including seat tokens but no IPs."""
        self._apply_due_timeout(session_id)
        session = self._load(session_id)
        players = self.repository.list_players(session_id)
        due = active_seat(session, players)
        return {
            "session": {
                **self._serialize_session(session),
                "player_count": session.player_count,
                "map_pool_size": session.map_pool_size,
                "created_by": session.created_by,
                "created_at": session.created_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "started_at": _isoformat(session.started_at),
                "completed_at": _isoformat(session.completed_at),
            },
            "players": [
                {
                    **self._serialize_seat(p),
                    "token": p.token,
                    "token_expires_at": p.token_expires_at.isoformat(),
                }
                for p in _ordered(players)
            ],
            "maps": [_serialize_map(m) for m in self.repository.list_maps(session_id)],
            "active_role": due.role.value
            if due and session.status is SessionStatus.IN_PROGRESS
            else None,
        }

    def list_sessions(
        self, status: SessionStatus | None = None, limit: int = 20
    ) -> list[dict[str, object]]:
        """Return sessions for the admin dashboard, newest first."""
        statuses = [status] if status else None
        summaries = []
        for session in self.repository.list_sessions(statuses, limit=limit):
            players = _ordered(self.repository.list_players(session.id))
            summaries.append(
                {
                    "id": str(session.id),
                    "match_name": session.match_name,
                    "format": session.format.value,
                    "status": session.status.value,
                    "player_count": session.player_count,
                    "assigned_player_count": len(players),
                    "teams": list(dict.fromkeys(p.team_name for p in players)),
                    "created_at": session.created_at.isoformat(),
                }
            )
        return summaries

    def get_results(self, session_id: UUID) -> dict[str, object]:
        """Return the public results of a completed session."""
        session = self._load(session_id)
        if session.status is not SessionStatus.COMPLETE:
            raise ConflictError(
                "SESSION_NOT_COMPLETE", "Results are available once the session ends."
            )
        players = _ordered(self.repository.list_players(session_id))
        teams_by_id = {p.id: p.team_name for p in players}
        maps = self.repository.list_maps(session_id)
        winner = next((m for m in maps if m.state is MapState.WINNER), None)
        banned = sorted(
            (m for m in maps if m.state is MapState.BANNED),
            key=lambda m: m.banned_at_turn or 0,
        )
        return {
            "session": {
                "id": str(session.id),
                "match_name": session.match_name,
                "format": session.format.value,
                "status": session.status.value,
                "completed_at": _isoformat(session.completed_at),
            },
            "teams": list(dict.fromkeys(p.team_name for p in players)),
            "winner": _serialize_map(winner) if winner else None,
            "ban_history": [
                {
                    "order": index,
                    "team_name": teams_by_id.get(m.banned_by_player_id)
                    if m.banned_by_player_id
                    else None,
                    "map_name": m.name,
                    "image_url": m.image_url,
                    "round": m.banned_at_round,
                    "vote_count": m.vote_count,
                }
                for index, m in enumerate(banned, start=1)
            ],
        }

    # -- internals ----------------------------------------------------------

    def _apply_due_timeout(self, session_id: UUID) -> None:
        """Apply a due timeout before a read; losing that race is not an error."""
        try:
            self.check_timeout(session_id)
        except ConflictError as exc:
            if exc.code != "VERSION_CONFLICT":
                raise
            logger.info(
                "Timeout was applied by a concurrent writer",
                extra={"session_id": str(session_id)},
            )

    def _load(self, session_id: UUID) -> SessionRecord:
        session = self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError("SESSION_NOT_FOUND", "Session not found.")
        return session

    def _transition(  # noqa: PLR0913
        self,
        session: SessionRecord,
        target: SessionStatus,
        action: AuditAction,
        actor_type: ActorType,
        actor_id: str | None,
        **changes: object,
    ) -> SessionRecord:
        if not can_transition(session.status, target):
            raise ConflictError(
                "INVALID_TRANSITION",
                f"Cannot move a session from {session.status.value} to {target.value}.",
                details={"from": session.status.value, "to": target.value},
            )
        saved = self.repository.update_session(
            replace(session, status=target, updated_at=self.clock(), **changes),
            expected_version=session.version,
        )
        self.audit_service.record_event(
            session_id=session.id,
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            details={"from": session.status.value, "to": target.value},
        )
        logger.info(
            "Session %s -> %s",
            session.status.value,
            target.value,
            extra={"session_id": str(session.id)},
        )
        return saved

    def _finalize_if_ready(self, session: SessionRecord, admin_id: str) -> None:
        players = self.repository.list_players(session.id)
        maps = self.repository.list_maps(session.id)
        if len(players) == session.player_count and len(maps) == session.map_pool_size:
            self._transition(
                session,
                SessionStatus.WAITING,
                AuditAction.SESSION_FINALIZED,
                ActorType.ADMIN,
                admin_id,
            )

    def _complete(
        self, session: SessionRecord, actor_type: ActorType, actor_id: str | None
    ) -> SessionRecord:
        if session.winner_map_id is None:
            raise ConflictError(
                "NO_WINNER", "A session can only complete once a winner is declared."
            )
        completed = self._transition(
            session,
            SessionStatus.COMPLETE,
            AuditAction.SESSION_ENDED,
            actor_type,
            actor_id,
            completed_at=self.clock(),
            timer_started_at=None,
            timer_paused_at=None,
        )
        self.token_service.purge_ip(session.id)
        return completed

    def _complete_if_won(self, outcome: TurnOutcome) -> TurnOutcome:
        if outcome.winner is None:
            return outcome
        completed = self._complete(outcome.session, ActorType.SYSTEM, None)
        return replace(outcome, session=completed)

    def _expire(
        self, session: SessionRecord, actor_type: ActorType, actor_id: str | None
    ) -> int | None:
        if session.status is SessionStatus.EXPIRED:
            return None
        if session.status in EXPIRABLE_STATUSES and self.clock() < session.expires_at:
            raise ConflictError(
                "NOT_EXPIRED", "The session has not reached its expiry time."
            )
        self._transition(
            session,
            SessionStatus.EXPIRED,
            AuditAction.SESSION_EXPIRED,
            actor_type,
            actor_id,
        )
        return self.token_service.purge_ip(session.id)

    def _serialize_session(self, session: SessionRecord) -> dict[str, object]:
        return {
            "id": str(session.id),
            "match_name": session.match_name,
            "format": session.format.value,
            "status": session.status.value,
            "turn_timer_seconds": session.turn_timer_seconds,
            "current_turn": session.current_turn,
            "current_round": session.current_round,
            "timer_started_at": _isoformat(session.timer_started_at),
            "timer_paused_at": _isoformat(session.timer_paused_at),
            "seconds_remaining": seconds_remaining(session, self.clock()),
            "winner_map_id": str(session.winner_map_id)
            if session.winner_map_id
            else None,
        }

    def _serialize_seat(self, seat: SessionPlayer) -> dict[str, object]:
        return {
            "id": str(seat.id),
            "role": seat.role.value,
            "team_name": seat.team_name,
            "is_connected": self.token_service.is_connected(seat),
            "has_voted_this_round": seat.has_voted_this_round,
        }


def _validate_range(
    value: int | None, default: int, minimum: int, maximum: int, label: str
) -> int:
    resolved = default if value is None else value
    if isinstance(resolved, bool) or not isinstance(resolved, int):
        raise ValidationError("OUT_OF_RANGE", f"{label} must be a whole number.")
    if not minimum <= resolved <= maximum:
        raise ValidationError(
            "OUT_OF_RANGE",
            f"{label} must be between {minimum} and {maximum}.",
            details={"value": resolved, "min": minimum, "max": maximum},
        )
    return resolved


def _ordered(players: list[SessionPlayer]) -> list[SessionPlayer]:
    return sorted(players, key=lambda p: role_order(p.role))


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_map(session_map: SessionMap) -> dict[str, object]:
    return {
        "id": str(session_map.id),
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
