"""Tests for dependency-ordered session deletion."""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest

from map_veto.adapters.in_memory_repository import InMemoryVetoRepository
from map_veto.domain.audit import AuditAction
from map_veto.domain.players import SeatRole
from map_veto.domain.sessions import SessionFormat
from map_veto.errors import IntegrityError, NotFoundError
from tests.conftest import (
    ADMIN_ID,
    build_test_container,
    make_started_session,
    seat_ip,
)


@dataclass
class LeakyRepository(InMemoryVetoRepository):
    """Repository whose map deletes silently do nothing."""

    def delete_maps(self, map_ids: Iterable[UUID]) -> None:
        return


def _play_one_round(service, repository) -> UUID:
    session, seats = make_started_session(service, SessionFormat.MULTIPLAYER)
    maps = repository.list_maps(session.id)
    for seat in seats.values():
        service.submit_vote(seat.token, seat_ip(seat.role), maps[0].id, 1)
    return session.id


def test_delete_removes_every_dependent_record(container, repository) -> None:
    session_id = _play_one_round(container.session_service, repository)
    audit_before = len(repository.list_audit_entries(session_id))

    counts = container.cascade_service.delete_session(session_id, admin_id=ADMIN_ID)

    assert counts.as_dict() == {
        "votes": 4,
        "players": 4,
        "maps": 5,
        "audit_logs": audit_before,
        "session": 1,
    }
    assert repository.get_session(session_id) is None
    assert repository.list_players(session_id) == []
    assert repository.list_maps(session_id) == []
    assert repository.list_votes(session_id) == []
    assert repository.list_audit_entries(session_id) == []
    global_entries = [
        e for e in repository.audit_entries.values() if e.session_id is None
    ]
    assert [e.action for e in global_entries] == [AuditAction.SESSION_DELETED]
    assert global_entries[0].details["deleted_session_id"] == str(session_id)


def test_delete_can_preserve_audit_logs(container, repository) -> None:
    session_id = _play_one_round(container.session_service, repository)
    audit_before = len(repository.list_audit_entries(session_id))

    counts = container.cascade_service.delete_session(
        session_id, admin_id=ADMIN_ID, preserve_audit_logs=True
    )

    assert counts.audit_logs == 0
    entries = repository.list_audit_entries(session_id)
    assert len(entries) == audit_before + 1
    assert entries[0].action is AuditAction.SESSION_DELETED


def test_delete_unknown_session_is_not_found(container) -> None:
    with pytest.raises(NotFoundError):
        container.cascade_service.delete_session(uuid4())


def test_orphans_roll_back_the_whole_delete(settings, clock) -> None:
    repository = LeakyRepository()
    container = build_test_container(settings, repository, clock)
    session, _ = make_started_session(container.session_service)

    with pytest.raises(IntegrityError) as exc_info:
        container.cascade_service.delete_session(session.id, admin_id=ADMIN_ID)

    assert exc_info.value.code == "CASCADE_INCONSISTENT"
    assert exc_info.value.details == {"maps": 5}
    assert repository.get_session(session.id) is not None
    assert {p.role for p in repository.list_players(session.id)} == {
        SeatRole.PLAYER_A,
        SeatRole.PLAYER_B,
    }
    assert repository.list_audit_entries(session.id)
