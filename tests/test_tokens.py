"""Tests for seat tokens and IP locking."""

import string
from dataclasses import replace
from datetime import timedelta

import pytest

from map_veto.domain.audit import AuditAction
from map_veto.domain.players import SeatRole
from map_veto.domain.sessions import SessionFormat, SessionStatus
from map_veto.errors import AuthError, IntegrityError, ValidationError
from map_veto.services.tokens import generate_token
from tests.conftest import ADMIN_ID, make_ready_session


def test_generate_token_is_32_hex_characters() -> None:
    tokens = {generate_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(len(token) == 32 for token in tokens)
    assert all(set(token) <= set(string.hexdigits.lower()) for token in tokens)


def test_generated_tokens_do_not_collide() -> None:
    tokens = [generate_token() for _ in range(10_000)]

    assert len(set(tokens)) == len(tokens)


def test_issued_token_expires_after_ttl(container, clock) -> None:
    session = container.session_service.create_session(
        ADMIN_ID, "Final", SessionFormat.ABBA
    )
    seat = container.session_service.assign_seat(
        ADMIN_ID, session.id, SeatRole.PLAYER_A, "Alpha"
    )

    assert seat.token_expires_at == clock.now + timedelta(hours=24)


def test_token_collision_is_rejected_and_rolled_back(container, repository) -> None:
    container.token_service.token_factory = lambda: "f" * 32
    service = container.session_service
    session = service.create_session(ADMIN_ID, "Final", SessionFormat.ABBA)
    service.assign_seat(ADMIN_ID, session.id, SeatRole.PLAYER_A, "Alpha")
    version = repository.get_session(session.id).version

    with pytest.raises(IntegrityError) as exc_info:
        service.assign_seat(ADMIN_ID, session.id, SeatRole.PLAYER_B, "Bravo")

    assert exc_info.value.code == "TOKEN_COLLISION"
    assert [p.role for p in repository.list_players(session.id)] == [SeatRole.PLAYER_A]
    assert repository.get_session(session.id).version == version


def test_authenticate_requires_ip(container) -> None:
    with pytest.raises(ValidationError) as exc_info:
        container.token_service.authenticate("a" * 32, None)

    assert exc_info.value.code == "MISSING_IP"


def test_authenticate_rejects_unknown_token(container) -> None:
    with pytest.raises(AuthError) as exc_info:
        container.token_service.authenticate("a" * 32, "10.0.0.1")

    assert exc_info.value.code == "INVALID_TOKEN"


def test_first_use_locks_ip(container, repository) -> None:
    session, seats = make_ready_session(container.session_service)
    seat = seats[SeatRole.PLAYER_A]

    locked = container.token_service.authenticate(seat.token, "203.0.113.7")
    again = container.token_service.authenticate(seat.token, "203.0.113.7")

    assert locked.ip_address == "203.0.113.7"
    assert again.id == seat.id
    assert repository.get_player(seat.id).ip_address == "203.0.113.7"
    actions = [e.action for e in container.audit_service.list_for_session(session.id)]
    assert actions.count(AuditAction.PLAYER_CONNECTED) == 1

    with pytest.raises(AuthError) as exc_info:
        container.token_service.authenticate(seat.token, "198.51.100.2")
    assert exc_info.value.code == "IP_MISMATCH"


def test_expired_token_is_rejected(container, clock) -> None:
    _, seats = make_ready_session(container.session_service)
    seat = seats[SeatRole.PLAYER_B]

    clock.advance(hours=24)
    container.token_service.authenticate(seat.token, "10.0.0.9")

    clock.advance(seconds=1)
    with pytest.raises(AuthError) as exc_info:
        container.token_service.authenticate(seat.token, "10.0.0.9")
    assert exc_info.value.code == "TOKEN_EXPIRED"


def test_terminal_session_does_not_lock_ip(container, repository, clock) -> None:
    session, seats = make_ready_session(container.session_service)
    clock.advance(days=15)
    container.session_service.expire_session(session.id)

    seat = container.token_service.authenticate(
        seats[SeatRole.PLAYER_A].token, "10.0.0.1"
    )

    assert seat.ip_address is None
    assert repository.get_player(seat.id).ip_address is None


def test_heartbeat_tracks_connection(container, clock) -> None:
    _, seats = make_ready_session(container.session_service)
    seat = seats[SeatRole.PLAYER_A]

    beat = container.session_service.heartbeat(seat.token, "10.0.0.1")
    assert container.token_service.is_connected(beat) is True

    clock.advance(seconds=31)
    assert container.token_service.is_connected(beat) is False


def test_purge_terminal_ips_clears_finished_sessions(container, repository) -> None:
    finished, finished_seats = make_ready_session(container.session_service)
    waiting, waiting_seats = make_ready_session(container.session_service)
    for seat in [*finished_seats.values(), *waiting_seats.values()]:
        repository.update_player(replace(seat, ip_address="10.1.1.1"))
    expired = replace(repository.get_session(finished.id), status=SessionStatus.EXPIRED)
    repository.update_session(expired, expected_version=expired.version)

    result = container.token_service.purge_terminal_ips()

    assert (result.sessions_processed, result.ips_cleared) == (1, 2)
    assert all(p.ip_address is None for p in repository.list_players(finished.id))
    assert all(p.ip_address for p in repository.list_players(waiting.id))
