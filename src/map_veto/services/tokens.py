"""Per-seat access tokens with first-use IP locking."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import UUID

from map_veto.domain.audit import ActorType, AuditAction
from map_veto.domain.players import SessionPlayer
from map_veto.domain.sessions import TERMINAL_STATUSES, SessionStatus
from map_veto.errors import AuthError, IntegrityError, NotFoundError, ValidationError
from map_veto.services.audit import AuditService
from map_veto.services.repository import Clock, VetoRepository, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16


def generate_token() -> str:
    """Return a new opaque token (32 hex characters)."""
    return secrets.token_hex(TOKEN_BYTES)


@dataclass(frozen=True)
class IssuedToken:
    """A freshly generated token and its expiry."""

    token: str
    expires_at: datetime


@dataclass(frozen=True)
class IpSweepResult:
    """Outcome of an IP purge sweep."""

    sessions_processed: int
    ips_cleared: int


@dataclass
class PlayerTokenService:
    """Issues and validates seat tokens."""

    repository: VetoRepository
    audit_service: AuditService
    token_ttl: timedelta = timedelta(hours=24)
    heartbeat_timeout: timedelta = timedelta(seconds=30)
    clock: Clock = utcnow
    token_factory: Callable[[], str] = generate_token

    def issue(self, session_id: UUID, seat_id: UUID) -> IssuedToken:
        """Generate a token for a seat, refusing any collision.

        The uniqueness check must run in the same transaction as the seat
        insert; callers regenerate on IntegrityError.
        """
        token = self.token_factory()
        existing = self.repository.get_player_by_token(token)
        if existing is not None:
            logger.error(
                "Token collision while issuing seat token",
                extra={
                    "session_id": str(session_id),
                    "seat_id": str(seat_id),
                    "colliding_seat_id": str(existing.id),
                },
            )
            raise IntegrityError(
                "TOKEN_COLLISION",
                "Generated token is already in use; regenerate and retry.",
                details={"session_id": str(session_id), "seat_id": str(seat_id)},
            )
        return IssuedToken(token=token, expires_at=self.clock() + self.token_ttl)

    def authenticate(self, token: str, request_ip: str | None) -> SessionPlayer:
        """Resolve a token to its seat, locking the seat to the first IP seen."""
        if not request_ip:
            raise ValidationError("MISSING_IP", "Request IP address is required.")
        with self.repository.transaction():
            player = self.repository.get_player_by_token(token)
            if player is None:
                logger.warning("Rejected unknown seat token")
                raise AuthError("INVALID_TOKEN", "This access link is not valid.")
            if self.clock() > player.token_expires_at:
                logger.warning(
                    "Rejected expired seat token", extra={"seat_id": str(player.id)}
                )
                raise AuthError("TOKEN_EXPIRED", "This access link has expired.")
            if player.ip_address is None:
                return self._lock_ip(player, request_ip)
            if player.ip_address != request_ip:
                logger.warning(
                    "Rejected seat token from a different IP",
                    extra={"seat_id": str(player.id)},
                )
                raise AuthError(
                    "IP_MISMATCH",
                    "This access link is already in use from another device.",
                )
            return player

    def record_heartbeat(self, seat: SessionPlayer) -> SessionPlayer:
        """Update the last-seen timestamp of a seat."""
        with self.repository.transaction():
            current = self.repository.get_player(seat.id)
            if current is None:
                raise NotFoundError("SEAT_NOT_FOUND", "Seat not found.")
            updated = replace(current, last_heartbeat_at=self.clock())
            self.repository.update_player(updated)
            return updated

    def is_connected(self, seat: SessionPlayer) -> bool:
        """Return true when the seat has sent a recent heartbeat."""
        if seat.last_heartbeat_at is None:
            return False
        return self.clock() - seat.last_heartbeat_at <= self.heartbeat_timeout

    def purge_ip(self, session_id: UUID) -> int:
        """Clear every locked IP of a session and return how many were set."""
        cleared = 0
        with self.repository.transaction():
            for player in self.repository.list_players(session_id):
                if player.ip_address is None:
                    continue
                self.repository.update_player(replace(player, ip_address=None))
                cleared += 1
        if cleared:
            logger.info(
                "Cleared %s IP address(es)",
                cleared,
                extra={"session_id": str(session_id)},
            )
        return cleared

    def purge_terminal_ips(self) -> IpSweepResult:
        """Safety-net sweep clearing IPs of every COMPLETE or EXPIRED session."""
        processed = 0
        total = 0
        sessions = self.repository.list_sessions(
            [SessionStatus.COMPLETE, SessionStatus.EXPIRED]
        )
        for session in sessions:
            cleared = self.purge_ip(session.id)
            if cleared:
                processed += 1
                total += cleared
        return IpSweepResult(sessions_processed=processed, ips_cleared=total)

    def _lock_ip(self, player: SessionPlayer, request_ip: str) -> SessionPlayer:
        session = self.repository.get_session(player.session_id)
        if session is None:
            raise NotFoundError("SESSION_NOT_FOUND", "Session not found.")
        if session.status in TERMINAL_STATUSES:
            return player
        locked = replace(player, ip_address=request_ip)
        self.repository.update_player(locked)
        self.audit_service.record_event(
            session_id=player.session_id,
            action=AuditAction.PLAYER_CONNECTED,
            actor_type=ActorType.PLAYER,
            actor_id=str(player.id),
            details={"team_name": player.team_name, "role": player.role.value},
        )
        return locked
