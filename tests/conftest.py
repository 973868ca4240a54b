"""Shared test fixtures."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from map_veto.adapters.in_memory_repository import InMemoryVetoRepository
from map_veto.config import Settings
from map_veto.containers import AppContainer
from map_veto.domain.library import LibraryMap
from map_veto.domain.players import ROLES_BY_FORMAT, SeatRole, SessionPlayer
from map_veto.domain.sessions import SessionFormat, SessionRecord
from map_veto.services.audit import AuditService
from map_veto.services.cascade import CascadeDeleteService
from map_veto.services.library import MapLibraryService, TeamLibraryService
from map_veto.services.sessions import SessionLimits, SessionService
from map_veto.services.tokens import PlayerTokenService
from map_veto.services.turns import TurnEngine

ADMIN_ID = "admin-1"
ADMIN_HEADERS = {"X-Admin-Token": "admin-token", "X-Admin-Id": ADMIN_ID}

LIBRARY_CREATED_AT = datetime(2026, 1, 1, tzinfo=UTC)


@dataclass
class FakeClock:
    """Manually advanced clock."""

    now: datetime = field(
        default_factory=lambda: datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def seat_ip(role: SeatRole) -> str:
    """Return a stable per-role client IP."""
    return f"10.0.0.{list(SeatRole).index(role) + 1}"


def seed_library_maps(
    repository: InMemoryVetoRepository, count: int, is_active: bool = True
) -> list[UUID]:
    """Insert "Map 1".."Map N" into the library and return their ids."""
    map_ids = []
    for index in range(1, count + 1):
        library_map = LibraryMap(
            id=uuid4(),
            name=f"Map {index}",
            image_url=f"https://cdn.example.com/maps/{index}.png",
            is_active=is_active,
            created_at=LIBRARY_CREATED_AT,
            updated_at=LIBRARY_CREATED_AT,
        )
        repository.insert_library_map(library_map)
        map_ids.append(library_map.id)
    return map_ids


def build_test_container(
    settings: Settings, repository: InMemoryVetoRepository, clock: FakeClock
) -> AppContainer:
    audit_service = AuditService(repository, clock=clock)
    token_service = PlayerTokenService(
        repository=repository,
        audit_service=audit_service,
        token_ttl=timedelta(hours=settings.token_ttl_hours),
        heartbeat_timeout=timedelta(seconds=settings.heartbeat_timeout_seconds),
        clock=clock,
    )
    turn_engine = TurnEngine(repository, audit_service, clock=clock)
    session_service = SessionService(
        repository=repository,
        audit_service=audit_service,
        token_service=token_service,
        turn_engine=turn_engine,
        limits=SessionLimits.from_settings(settings),
        clock=clock,
    )
    return AppContainer(
        settings=settings,
        repository=repository,
        audit_service=audit_service,
        token_service=token_service,
        turn_engine=turn_engine,
        session_service=session_service,
        cascade_service=CascadeDeleteService(repository, audit_service),
        map_library_service=MapLibraryService(repository, clock=clock),
        team_library_service=TeamLibraryService(repository, clock=clock),
    )


def make_ready_session(
    service: SessionService,
    format: SessionFormat = SessionFormat.ABBA,
    map_pool_size: int = 5,
    turn_timer_seconds: int = 30,
) -> tuple[SessionRecord, dict[SeatRole, SessionPlayer]]:
    """Create a session with every seat and the full pool assigned (WAITING)."""
    session = service.create_session(
        ADMIN_ID,
        "Grand Final",
        format,
        turn_timer_seconds=turn_timer_seconds,
        map_pool_size=map_pool_size,
    )
    seats = {
        role: service.assign_seat(
            ADMIN_ID, session.id, role, f"Team {role.value.rsplit('_', 1)[1]}"
        )
        for role in ROLES_BY_FORMAT[format]
    }
    map_ids = seed_library_maps(service.repository, map_pool_size)
    service.set_map_pool(ADMIN_ID, session.id, map_ids)
    return service.repository.get_session(session.id), seats


def make_started_session(
    service: SessionService,
    format: SessionFormat = SessionFormat.ABBA,
    map_pool_size: int = 5,
    turn_timer_seconds: int = 30,
) -> tuple[SessionRecord, dict[SeatRole, SessionPlayer]]:
    """Create a ready session and start it."""
    session, seats = make_ready_session(
        service, format, map_pool_size, turn_timer_seconds
    )
    return service.start_session(ADMIN_ID, session.id), seats


@pytest.fixture
def settings() -> Settings:
    return Settings(
        admin_token="admin-token",
        supabase_url=None,
        supabase_service_key=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryVetoRepository:
    return InMemoryVetoRepository()


@pytest.fixture
def container(
    settings: Settings, repository: InMemoryVetoRepository, clock: FakeClock
) -> AppContainer:
    return build_test_container(settings, repository, clock)


@pytest.fixture
def session_service(container: AppContainer) -> SessionService:
    return container.session_service
