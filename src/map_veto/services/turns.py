"""Server-authoritative turn and round resolution."""

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from map_veto.domain.audit import ActorType, AuditAction
from map_veto.domain.maps import MapState, SessionMap, Vote
from map_veto.domain.players import SessionPlayer, role_order
from map_veto.domain.sessions import SessionFormat, SessionRecord, SessionStatus
from map_veto.errors import ConflictError, NotFoundError
from map_veto.services.audit import AuditService
from map_veto.services.repository import Clock, VetoRepository, utcnow

logger = logging.getLogger(__name__)

# Indexes into the role-ordered seats (PLAYER_A, PLAYER_B).
ABBA_PATTERN = (0, 1, 1, 0)


@dataclass(frozen=True)
class TurnOutcome:
    """Result of a turn-mutating action."""

    session: SessionRecord
    banned_map: SessionMap | None = None
    winner: SessionMap | None = None
    round_resolved: bool = False


def active_seat(
    session: SessionRecord, seats: Sequence[SessionPlayer]
) -> SessionPlayer | None:
    """Return the seat expected to act next.

    ABBA walks the fixed A,B,B,A pattern by current turn. Multiplayer returns
    the first seat, in role order, that has not voted this round.
    """
    ordered = sorted(seats, key=lambda seat: role_order(seat.role))
    if session.format is SessionFormat.ABBA:
        if len(ordered) < 2:
            return None
        return ordered[ABBA_PATTERN[session.current_turn % len(ABBA_PATTERN)]]
    return next((seat for seat in ordered if not seat.has_voted_this_round), None)


def is_seat_turn(
    session: SessionRecord, seat: SessionPlayer, seats: Sequence[SessionPlayer]
) -> bool:
    """Return true when the seat may act right now."""
    if session.status is not SessionStatus.IN_PROGRESS:
        return False
    if session.format is SessionFormat.MULTIPLAYER:
        return not seat.has_voted_this_round
    due = active_seat(session, seats)
    return due is not None and due.id == seat.id


def seconds_remaining(session: SessionRecord, now: datetime) -> int | None:
    """Return whole seconds left on the turn timer, if it is running."""
    if session.timer_started_at is None or session.status not in {
        SessionStatus.IN_PROGRESS,
        SessionStatus.PAUSED,
    }:
        return None
    reference = session.timer_paused_at or now
    elapsed = (reference - session.timer_started_at).total_seconds()
    return max(0, int(session.turn_timer_seconds - elapsed))


@dataclass
class TurnEngine:
    """Computes turn order and applies bans, votes and timeouts."""

    repository: VetoRepository
    audit_service: AuditService
    clock: Clock = utcnow

    def compute_active_seat(self, session: SessionRecord) -> SessionPlayer | None:
        """Return the seat whose action is due."""
        return active_seat(session, self.repository.list_players(session.id))

    def submit_ban(
        self, session: SessionRecord, seat: SessionPlayer, map_id: UUID
    ) -> TurnOutcome:
        """Ban a map on behalf of the seat whose turn it is (ABBA)."""
        _require_in_progress(session)
        if session.format is not SessionFormat.ABBA:
            raise ConflictError(
                "WRONG_FORMAT", "Bans are only submitted in ABBA sessions."
            )
        due = self.compute_active_seat(session)
        if due is None or due.id != seat.id:
            raise ConflictError("NOT_YOUR_TURN", "It is not your turn to ban.")
        maps = self.repository.list_maps(session.id)
        target = _find_map(maps, map_id)
        if target.state is not MapState.AVAILABLE:
            raise ConflictError("MAP_NOT_AVAILABLE", f"{target.name} is not available.")
        claimed, winner = self._claim(session, maps, target, next_round=False)
        return self._record_ban(
            session,
            claimed,
            winner,
            due,
            target,
            actor_type=ActorType.PLAYER,
            actor_id=str(seat.id),
        )

    def submit_vote(
        self, session: SessionRecord, seat: SessionPlayer, map_id: UUID, round: int
    ) -> TurnOutcome:
        """Cast one seat's ballot for the current round (multiplayer)."""
        _require_in_progress(session)
        if session.format is not SessionFormat.MULTIPLAYER:
            raise ConflictError(
                "WRONG_FORMAT", "Votes are only submitted in multiplayer sessions."
            )
        if round != session.current_round:
            raise ConflictError(
                "STALE_ROUND",
                f"Round {round} is not the current round ({session.current_round}).",
            )
        voter = self.repository.get_player(seat.id)
        if voter is None or voter.session_id != session.id:
            raise NotFoundError("SEAT_NOT_FOUND", "Seat not found in this session.")
        if voter.has_voted_this_round or self.repository.get_vote(
            session.id, voter.id, round
        ):
            raise ConflictError("ALREADY_VOTED", "You already voted this round.")
        maps = self.repository.list_maps(session.id)
        target = _find_map(maps, map_id)
        if target.state is not MapState.AVAILABLE:
            raise ConflictError("MAP_NOT_AVAILABLE", f"{target.name} is not available.")

        now = self.clock()
        vote = Vote(
            id=uuid4(),
            session_id=session.id,
            round=round,
            player_id=voter.id,
            map_id=target.id,
            submitted_at=now,
        )
        seats = self.repository.list_players(session.id)
        closes_round = all(
            player.has_voted_this_round or player.id == voter.id for player in seats
        )
        # Every ballot bumps the session version, so two last ballots cannot
        # both see an open round.
        if closes_round:
            ballots = [*self.repository.list_votes(session.id, round=round), vote]
            tally = Counter(ballot.map_id for ballot in ballots)
            banned_target, _ = _round_target(_available(maps), tally)
            claimed, winner = self._claim(session, maps, banned_target, next_round=True)
        else:
            claimed = self.repository.update_session(
                replace(session, updated_at=now), expected_version=session.version
            )

        self.repository.insert_vote(vote)
        self.repository.update_player(replace(voter, has_voted_this_round=True))
        self.audit_service.record_event(
            session_id=session.id,
            action=AuditAction.VOTE_SUBMITTED,
            actor_type=ActorType.PLAYER,
            actor_id=str(voter.id),
            details={
                "map_id": str(target.id),
                "map_name": target.name,
                "team_name": voter.team_name,
                "round": round,
            },
        )
        if not closes_round:
            return TurnOutcome(session=claimed)
        return self._record_round(
            session,
            claimed,
            winner,
            banned_target,
            tally,
            _available(maps),
            self.repository.list_players(session.id),
        )

    def check_and_apply_timeout(self, session: SessionRecord) -> bool:
        """Apply the automatic action for an expired turn; return whether it ran."""
        return self.apply_timeout(session) is not None

    def apply_timeout(self, session: SessionRecord) -> TurnOutcome | None:
        """Apply the automatic action for an expired turn, if one is due."""
        if session.status is not SessionStatus.IN_PROGRESS:
            return None
        if session.timer_started_at is None:
            return None
        elapsed = self.clock() - session.timer_started_at
        if elapsed < timedelta(seconds=session.turn_timer_seconds):
            return None

        seats = self.repository.list_players(session.id)
        maps = self.repository.list_maps(session.id)
        available = _available(maps)
        if not available:
            return None

        if session.format is SessionFormat.ABBA:
            due = active_seat(session, seats)
            target = available[0]
            claimed, winner = self._claim(session, maps, target, next_round=False)
            logger.info(
                "Turn timer expired",
                extra={"session_id": str(session.id), "turn": session.current_turn},
            )
            self.audit_service.record_event(
                session_id=session.id,
                action=AuditAction.TIMER_EXPIRED,
                actor_type=ActorType.SYSTEM,
                details={
                    "turn": session.current_turn,
                    "team_name": due.team_name if due else None,
                    "map_id": str(target.id),
                    "map_name": target.name,
                },
            )
            return self._record_ban(
                session,
                claimed,
                winner,
                due,
                target,
                actor_type=ActorType.SYSTEM,
                actor_id=None,
                reason="timer_expired",
            )

        votes = self.repository.list_votes(session.id, round=session.current_round)
        tally = Counter(vote.map_id for vote in votes)
        target, fallback = _round_target(available, tally)
        claimed, winner = self._claim(session, maps, target, next_round=True)
        logger.info(
            "Round timer expired",
            extra={"session_id": str(session.id), "round": session.current_round},
        )
        abstained = [seat.team_name for seat in seats if not seat.has_voted_this_round]
        self.audit_service.record_event(
            session_id=session.id,
            action=AuditAction.TIMER_EXPIRED,
            actor_type=ActorType.SYSTEM,
            details={"round": session.current_round, "abstained": abstained},
        )
        return self._record_round(
            session, claimed, winner, target, tally, available, seats, fallback
        )

    def _claim(
        self,
        session: SessionRecord,
        maps: list[SessionMap],
        target: SessionMap,
        next_round: bool,
    ) -> tuple[SessionRecord, SessionMap | None]:
        """Advance the session past this ban with a version check.

        Runs before any dependent row is written, so a writer that lost the
        race leaves nothing behind.
        """
        now = self.clock()
        remaining = [m for m in _available(maps) if m.id != target.id]
        winner = None
        if len(remaining) == 1:
            winner = replace(remaining[0], state=MapState.WINNER)
        updated = replace(
            session,
            current_turn=session.current_turn + 1,
            current_round=session.current_round + (1 if next_round else 0),
            timer_started_at=None if winner else now,
            winner_map_id=winner.id if winner else session.winner_map_id,
            updated_at=now,
        )
        saved = self.repository.update_session(
            updated, expected_version=session.version
        )
        return saved, winner

    def _record_ban(  # noqa: PLR0913
        self,
        session: SessionRecord,
        claimed: SessionRecord,
        winner: SessionMap | None,
        seat: SessionPlayer | None,
        target: SessionMap,
        actor_type: ActorType,
        actor_id: str | None,
        reason: str | None = None,
    ) -> TurnOutcome:
        banned = replace(
            target,
            state=MapState.BANNED,
            banned_by_player_id=seat.id if seat else None,
            banned_at_turn=session.current_turn,
            banned_at_round=session.current_round,
        )
        self.repository.update_map(banned)
        details: dict[str, object] = {
            "map_id": str(target.id),
            "map_name": target.name,
            "team_name": seat.team_name if seat else None,
            "turn": session.current_turn,
        }
        if reason:
            details["reason"] = reason
        self.audit_service.record_event(
            session_id=session.id,
            action=AuditAction.MAP_BANNED,
            actor_type=actor_type,
            actor_id=actor_id,
            details=details,
        )
        self._declare_winner(session, winner)
        return TurnOutcome(session=claimed, banned_map=banned, winner=winner)

    def _record_round(  # noqa: PLR0913
        self,
        session: SessionRecord,
        claimed: SessionRecord,
        winner: SessionMap | None,
        target: SessionMap,
        tally: Counter[UUID],
        available: list[SessionMap],
        seats: list[SessionPlayer],
        fallback: bool = False,
    ) -> TurnOutcome:
        if fallback:
            self.audit_service.record_event(
                session_id=session.id,
                action=AuditAction.FALLBACK_SELECTION,
                actor_type=ActorType.SYSTEM,
                details={
                    "round": session.current_round,
                    "map_id": str(target.id),
                    "map_name": target.name,
                    "reason": "no_votes",
                },
            )
        banned = replace(
            target,
            state=MapState.BANNED,
            banned_at_turn=session.current_turn,
            banned_at_round=session.current_round,
            vote_count=tally[target.id],
        )
        self.repository.update_map(banned)
        for seat in seats:
            if seat.has_voted_this_round:
                self.repository.update_player(replace(seat, has_voted_this_round=False))
        self.audit_service.record_event(
            session_id=session.id,
            action=AuditAction.ROUND_RESOLVED,
            actor_type=ActorType.SYSTEM,
            details={
                "round": session.current_round,
                "map_id": str(target.id),
                "map_name": target.name,
                "votes": {m.name: tally[m.id] for m in available if tally[m.id]},
            },
        )
        self._declare_winner(session, winner)
        return TurnOutcome(
            session=claimed, banned_map=banned, winner=winner, round_resolved=True
        )

    def _declare_winner(
        self, session: SessionRecord, winner: SessionMap | None
    ) -> None:
        if winner is None:
            return
        self.repository.update_map(winner)
        self.audit_service.record_event(
            session_id=session.id,
            action=AuditAction.WINNER_DECLARED,
            actor_type=ActorType.SYSTEM,
            details={"map_id": str(winner.id), "map_name": winner.name},
        )


def _round_target(
    available: list[SessionMap], tally: Counter[UUID]
) -> tuple[SessionMap, bool]:
    """Return the map a round bans and whether it is the no-vote fallback."""
    candidates = [m for m in available if tally[m.id] > 0]
    if not candidates:
        return available[0], True
    top = max(tally[m.id] for m in candidates)
    # Ties go to the lowest pool position.
    target = min(
        (m for m in candidates if tally[m.id] == top), key=lambda m: m.position
    )
    return target, False


def _require_in_progress(session: SessionRecord) -> None:
    if session.status is not SessionStatus.IN_PROGRESS:
        raise ConflictError(
            "SESSION_NOT_IN_PROGRESS",
            f"Session is {session.status.value}, not IN_PROGRESS.",
        )


def _available(maps: list[SessionMap]) -> list[SessionMap]:
    return sorted(
        (m for m in maps if m.state is MapState.AVAILABLE), key=lambda m: m.position
    )


def _find_map(maps: list[SessionMap], map_id: UUID) -> SessionMap:
    for session_map in maps:
        if session_map.id == map_id:
            return session_map
    raise NotFoundError("MAP_NOT_FOUND", "Map not found in this session.")
