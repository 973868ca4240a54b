"""Tests for the in-memory repository."""

import threading
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from map_veto.adapters.in_memory_repository import InMemoryVetoRepository
from map_veto.domain.sessions import SessionFormat, SessionRecord, SessionStatus
from map_veto.errors import ConflictError

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _session(**overrides) -> SessionRecord:
    values = {
        "id": uuid4(),
        "match_name": "Final",
        "format": SessionFormat.ABBA,
        "status": SessionStatus.DRAFT,
        "player_count": 2,
        "map_pool_size": 5,
        "turn_timer_seconds": 30,
        "current_turn": 0,
        "current_round": 0,
        "created_by": "admin-1",
        "created_at": NOW,
        "updated_at": NOW,
        "expires_at": NOW + timedelta(days=14),
    }
    values.update(overrides)
    return SessionRecord(**values)


def test_transaction_rolls_back_on_error() -> None:
    repository = InMemoryVetoRepository()
    kept = _session()
    repository.insert_session(kept)

    with pytest.raises(RuntimeError), repository.transaction():
        repository.insert_session(_session())
        repository.update_session(replace(kept, match_name="Renamed"), 0)
        raise RuntimeError("boom")

    assert list(repository.sessions) == [kept.id]
    assert repository.get_session(kept.id).match_name == "Final"


def test_nested_transaction_joins_outer_one() -> None:
    repository = InMemoryVetoRepository()

    with pytest.raises(ValueError), repository.transaction():
        with repository.transaction():
            repository.insert_session(_session())
        raise ValueError("outer failure")

    assert repository.sessions == {}


def test_update_session_bumps_version() -> None:
    repository = InMemoryVetoRepository()
    session = _session()
    repository.insert_session(session)

    saved = repository.update_session(replace(session, current_turn=1), 0)

    assert saved.version == 1
    with pytest.raises(ConflictError):
        repository.update_session(replace(saved, current_turn=2), 0)


def test_concurrent_writers_cannot_both_win() -> None:
    repository = InMemoryVetoRepository()
    session = _session()
    repository.insert_session(session)
    barrier = threading.Barrier(8)
    outcomes: list[str] = []

    def writer(index: int) -> None:
        barrier.wait()
        try:
            repository.update_session(
                replace(session, match_name=f"Writer {index}"), session.version
            )
        except ConflictError:
            outcomes.append("conflict")
        else:
            outcomes.append("saved")

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("saved") == 1
    assert outcomes.count("conflict") == 7
    assert repository.get_session(session.id).version == 1


def test_list_sessions_is_newest_first_and_filtered() -> None:
    repository = InMemoryVetoRepository()
    old = _session(created_at=NOW - timedelta(days=1))
    new = _session(status=SessionStatus.WAITING)
    repository.insert_session(old)
    repository.insert_session(new)

    assert [s.id for s in repository.list_sessions(None)] == [new.id, old.id]
    assert [s.id for s in repository.list_sessions([SessionStatus.DRAFT])] == [old.id]
    assert len(repository.list_sessions(None, limit=1)) == 1


def test_list_expired_sessions_uses_expiry() -> None:
    repository = InMemoryVetoRepository()
    stale = _session(expires_at=NOW - timedelta(seconds=1))
    due_now = _session(expires_at=NOW)
    fresh = _session()
    for session in (stale, due_now, fresh):
        repository.insert_session(session)

    expired = repository.list_expired_sessions([SessionStatus.DRAFT], NOW)

    assert {s.id for s in expired} == {stale.id, due_now.id}
