"""Dependency container wiring for the application."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from supabase import create_client

from map_veto.adapters.in_memory_repository import InMemoryVetoRepository
from map_veto.adapters.supabase_repository import SupabaseVetoRepository
from map_veto.config import Settings
from map_veto.services.audit import AuditService
from map_veto.services.cascade import CascadeDeleteService
from map_veto.services.library import MapLibraryService, TeamLibraryService
from map_veto.services.repository import VetoRepository
from map_veto.services.sessions import SessionLimits, SessionService
from map_veto.services.tokens import PlayerTokenService
from map_veto.services.turns import TurnEngine

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    repository: VetoRepository
    audit_service: AuditService
    token_service: PlayerTokenService
    turn_engine: TurnEngine
    session_service: SessionService
    cascade_service: CascadeDeleteService
    map_library_service: MapLibraryService
    team_library_service: TeamLibraryService


def build_container(
    settings: Settings | None = None, repository: VetoRepository | None = None
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    if repository is None:
        if resolved_settings.uses_supabase:
            repository = SupabaseVetoRepository(
                create_client(
                    resolved_settings.supabase_url,
                    resolved_settings.supabase_service_key,
                )
            )
        else:
            logger.warning("Supabase is not configured; using in-memory storage")
            repository = InMemoryVetoRepository()
    audit_service = AuditService(repository)
    token_service = PlayerTokenService(
        repository=repository,
        audit_service=audit_service,
        token_ttl=timedelta(hours=resolved_settings.token_ttl_hours),
        heartbeat_timeout=timedelta(
            seconds=resolved_settings.heartbeat_timeout_seconds
        ),
    )
    turn_engine = TurnEngine(repository=repository, audit_service=audit_service)
    session_service = SessionService(
        repository=repository,
        audit_service=audit_service,
        token_service=token_service,
        turn_engine=turn_engine,
        limits=SessionLimits.from_settings(resolved_settings),
    )
    cascade_service = CascadeDeleteService(
        repository=repository, audit_service=audit_service
    )
    return AppContainer(
        settings=resolved_settings,
        repository=repository,
        audit_service=audit_service,
        token_service=token_service,
        turn_engine=turn_engine,
        session_service=session_service,
        cascade_service=cascade_service,
        map_library_service=MapLibraryService(repository),
        team_library_service=TeamLibraryService(repository),
    )
