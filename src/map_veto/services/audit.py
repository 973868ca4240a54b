"""Audit logging service."""

from dataclasses import dataclass
from uuid import UUID, uuid4

from map_veto.domain.audit import ActorType, AuditAction, AuditLogEntry
from map_veto.services.repository import Clock, VetoRepository, utcnow

MAX_AUDIT_PAGE = 100


@dataclass
class AuditService:
    """Service for recording audit events.

    Entries are written through the same repository as the mutation they
    describe, so they commit or roll back together with it.
    """

    repository: VetoRepository
    clock: Clock = utcnow

    def record_event(  # noqa: PLR0913
        self,
        session_id: UUID | None,
        action: AuditAction,
        actor_type: ActorType,
        actor_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> AuditLogEntry:
        """Persist an audit event."""
        entry = AuditLogEntry(
            id=uuid4(),
            session_id=session_id,
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            timestamp=self.clock(),
            details=dict(details or {}),
        )
        self.repository.insert_audit_entry(entry)
        return entry

    def list_for_session(
        self, session_id: UUID, limit: int = 50
    ) -> list[AuditLogEntry]:
        """Return the most recent entries for a session, capped at 100."""
        return self.repository.list_audit_entries(
            session_id, limit=max(1, min(limit, MAX_AUDIT_PAGE))
        )


def serialize_entry(entry: AuditLogEntry) -> dict[str, object]:
    return {
        "id": str(entry.id),
        "session_id": str(entry.session_id) if entry.session_id else None,
        "action": entry.action.value,
        "actor_type": entry.actor_type.value,
        "actor_id": entry.actor_id,
        "details": entry.details,
        "timestamp": entry.timestamp.isoformat(),
    }
