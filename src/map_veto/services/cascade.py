"""Dependency-ordered session deletion."""

import logging
from dataclasses import dataclass
from uuid import UUID

from map_veto.domain.audit import ActorType, AuditAction
from map_veto.errors import IntegrityError, NotFoundError
from map_veto.services.audit import AuditService
from map_veto.services.repository import VetoRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionCounts:
    """Rows removed per table by one cascade delete."""

    votes: int
    players: int
    maps: int
    audit_logs: int
    session: int = 1

    def as_dict(self) -> dict[str, int]:
        return {
            "votes": self.votes,
            "players": self.players,
            "maps": self.maps,
            "audit_logs": self.audit_logs,
            "session": self.session,
        }


@dataclass
class CascadeDeleteService:
    """Removes a session and every dependent record in one transaction."""

    repository: VetoRepository
    audit_service: AuditService

    def delete_session(
        self,
        session_id: UUID,
        admin_id: str | None = None,
        preserve_audit_logs: bool = False,
    ) -> DeletionCounts:
        """Delete votes, seats, maps, optionally audit logs, then the session.

        Nothing is deleted when any step fails.
        """
        with self.repository.transaction():
            session = self.repository.get_session(session_id)
            if session is None:
                raise NotFoundError("SESSION_NOT_FOUND", "Session not found.")

            deleted = self.repository.delete_session_tree(
                session_id, preserve_audit_logs
            )
            self._verify_empty(session_id, check_audit=not preserve_audit_logs)

            counts = DeletionCounts(
                votes=deleted["votes"],
                players=deleted["players"],
                maps=deleted["maps"],
                audit_logs=deleted["audit_logs"],
            )
            self.audit_service.record_event(
                session_id=session_id if preserve_audit_logs else None,
                action=AuditAction.SESSION_DELETED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                details={
                    "deleted_session_id": str(session_id),
                    "match_name": session.match_name,
                    "counts": counts.as_dict(),
                },
            )
        logger.info(
            "Session deleted",
            extra={"session_id": str(session_id), "counts": counts.as_dict()},
        )
        return counts

    def _verify_empty(self, session_id: UUID, check_audit: bool) -> None:
        leftovers = {
            "session": int(self.repository.get_session(session_id) is not None),
            "votes": len(self.repository.list_votes(session_id)),
            "players": len(self.repository.list_players(session_id)),
            "maps": len(self.repository.list_maps(session_id)),
        }
        if check_audit:
            leftovers["audit_logs"] = len(
                self.repository.list_audit_entries(session_id)
            )
        orphans = {table: count for table, count in leftovers.items() if count}
        if orphans:
            logger.error(
                "Cascade delete left dependent rows",
                extra={"session_id": str(session_id), "orphans": orphans},
            )
            raise IntegrityError(
                "CASCADE_INCONSISTENT",
                "Dependent records remained after deletion.",
                details=orphans,
            )
