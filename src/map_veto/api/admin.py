"""Admin API endpoints with simple token auth."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from map_veto.api.schemas import (  # noqa: TC001
    AssignSeatRequest,
    CreateMapRequest,
    CreateSessionRequest,
    CreateTeamRequest,
    SetMapPoolRequest,
    UpdateMapRequest,
    UpdateSessionRequest,
    UpdateTeamRequest,
)
from map_veto.domain.audit import ActorType
from map_veto.domain.sessions import SessionStatus  # noqa: TC001
from map_veto.errors import ValidationError
from map_veto.services.audit import serialize_entry
from map_veto.services.library import serialize_library_map, serialize_team

if TYPE_CHECKING:
    from map_veto.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        logger.warning("Rejected admin request with a missing or invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


async def require_admin_id(x_admin_id: str | None = Header(default=None)) -> str:
    """Return the acting administrator's id for audit entries."""
    admin_id = (x_admin_id or "").strip()
    if not admin_id:
        raise ValidationError("MISSING_ADMIN_ID", "X-Admin-Id header is required.")
    return admin_id


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.post(
    "/sessions",
    dependencies=[Depends(require_admin)],
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    payload: CreateSessionRequest,
    request: Request,
    admin_id: str = Depends(require_admin_id),
) -> dict[str, object]:
    """Create a DRAFT session."""
    container: AppContainer = request.app.state.container
    session = container.session_service.create_session(
        admin_id,
        payload.match_name,
        payload.format,
        turn_timer_seconds=payload.turn_timer_seconds,
        map_pool_size=payload.map_pool_size,
    )
    return container.session_service.get_admin_view(session.id)


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(
    request: Request,
    status_filter: SessionStatus | None = Query(default=None, alias="status"),
    limit: int = 20,
) -> dict[str, object]:
    """Return recent sessions."""
    container: AppContainer = request.app.state.container
    return {
        "sessions": container.session_service.list_sessions(
            status_filter, limit=limit
        )
    }


@router.get("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def session_detail(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the full admin view of a session."""
    container: AppContainer = request.app.state.container
    return container.session_service.get_admin_view(session_id)


@router.patch("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def update_session(
    session_id: UUID,
    payload: UpdateSessionRequest,
    request: Request,
    admin_id: str = Depends(require_admin_id),
) -> dict[str, object]:
    """Rename a session or change its turn timer."""
    container: AppContainer = request.app.state.container
    container.session_service.update_session(
        admin_id,
        session_id,
        match_name=payload.match_name,
        turn_timer_seconds=payload.turn_timer_seconds,
    )
    return container.session_service.get_admin_view(session_id)


@router.delete("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def delete_session(
    session_id: UUID,
    request: Request,
    preserve_audit_logs: bool = False,
    admin_id: str = Depends(require_admin_id),
) -> dict[str, object]:
    """Delete a session and every dependent record."""
    container: AppContainer = request.app.state.container
    counts = container.cascade_service.delete_session(
        session_id, admin_id=admin_id, preserve_audit_logs=preserve_audit_logs
    )
    return {"deleted": counts.as_dict()}


@router.post("/sessions/{session_id}/seats", dependencies=[Depends(require_admin)])
async def assign_seat(
    session_id: UUID,
    payload: AssignSeatRequest,
    request: Request,
    admin_id: str = Depends(require_admin_id),
) -> dict[str, object]:
    """Assign a team to a seat and return its access token."""
    container: AppContainer = request.app.state.container
    seat = container.session_service.assign_seat(
        admin_id, session_id, payload.role, payload.team_name
    )
    return {
        "id": str(seat.id),
        "role": seat.role.value,
        "team_name": seat.team_name,
        "token": seat.token,
        "token_expires_at": seat.token_expires_at.isoformat(),
    }


@router.put("/sessions/{session_id}/maps", dependencies=[Depends(require_admin)])
async def set_map_pool(
    session_id: UUID,
    payload: SetMapPoolRequest,
    request: Request,
    admin_id: str = Depends(require_admin_id),
) -> dict[str, object]:
    """Snapshot the session's map pool."""
    container: AppContainer = request.app.state.container
    container.session_service.set_map_pool(admin_id, session_id, payload.map_ids)
    return container.session_service.get_admin_view(session_id)


@router.post("/sessions/{session_id}/start", dependencies=[Depends(require_admin)])
async def start_session(
    session_id: UUID, request: Request, admin_id: str = Depends(require_admin_id)
) -> dict[str, object]:
    """Start a WAITING session."""
    container: AppContainer = request.app.state.container
    container.session_service.start_session(admin_id, session_id)
    return container.session_service.get_admin_view(session_id)


@router.post("/sessions/{session_id}/pause", dependencies=[Depends(require_admin)])
async def pause_session(
    session_id: UUID, request: Request, admin_id: str = Depends(require_admin_id)
) -> dict[str, object]:
    """Pause a running session."""
    container: AppContainer = request.app.state.container
    container.session_service.pause_session(admin_id, session_id)
    return container.session_service.get_admin_view(session_id)


@router.post("/sessions/{session_id}/resume", dependencies=[Depends(require_admin)])
async def resume_session(
    session_id: UUID, request: Request, admin_id: str = Depends(require_admin_id)
) -> dict[str, object]:
    """Resume a paused session."""
    container: AppContainer = request.app.state.container
    container.session_service.resume_session(admin_id, session_id)
    return container.session_service.get_admin_view(session_id)


@router.post("/sessions/{session_id}/complete", dependencies=[Depends(require_admin)])
async def complete_session(
    session_id: UUID, request: Request, admin_id: str = Depends(require_admin_id)
) -> dict[str, object]:
    """Complete a session whose winner is declared."""
    container: AppContainer = request.app.state.container
    container.session_service.complete_session(session_id, actor_id=admin_id)
    return container.session_service.get_admin_view(session_id)


@router.post("/sessions/{session_id}/expire", dependencies=[Depends(require_admin)])
async def expire_session(
    session_id: UUID, request: Request, admin_id: str = Depends(require_admin_id)
) -> dict[str, object]:
    """Expire an overdue DRAFT or WAITING session."""
    container: AppContainer = request.app.state.container
    changed = container.session_service.expire_session(
        session_id, actor_type=ActorType.ADMIN, actor_id=admin_id
    )
    return {"expired": changed}


@router.get("/sessions/{session_id}/audit", dependencies=[Depends(require_admin)])
async def audit_log(
    session_id: UUID, request: Request, limit: int = 50
) -> dict[str, object]:
    """Return the most recent audit entries of a session."""
    container: AppContainer = request.app.state.container
    entries = container.audit_service.list_for_session(session_id, limit=limit)
    return {"entries": [serialize_entry(entry) for entry in entries]}


@router.post("/maintenance/expire-stale", dependencies=[Depends(require_admin)])
async def expire_stale(request: Request) -> dict[str, int]:
    """Expire every overdue DRAFT or WAITING session."""
    container: AppContainer = request.app.state.container
    result = container.session_service.expire_stale_sessions()
    return {"expired_count": result.expired_count, "ips_cleared": result.ips_cleared}


@router.post("/maintenance/purge-ips", dependencies=[Depends(require_admin)])
async def purge_ips(request: Request) -> dict[str, int]:
    """Clear locked IPs of every finished session."""
    container: AppContainer = request.app.state.container
    result = container.token_service.purge_terminal_ips()
    return {
        "sessions_processed": result.sessions_processed,
        "ips_cleared": result.ips_cleared,
    }


@router.post("/maintenance/timeouts", dependencies=[Depends(require_admin)])
async def sweep_timeouts(request: Request) -> dict[str, int]:
    """Apply every due turn timeout."""
    container: AppContainer = request.app.state.container
    return {"timeouts_applied": container.session_service.sweep_timeouts()}


@router.get("/maps", dependencies=[Depends(require_admin)])
async def list_maps(
    request: Request, include_inactive: bool = False
) -> dict[str, object]:
    """Return library maps sorted by name."""
    container: AppContainer = request.app.state.container
    maps = container.map_library_service.list_maps(include_inactive)
    return {"maps": [serialize_library_map(item) for item in maps]}


@router.post(
    "/maps",
    dependencies=[Depends(require_admin)],
    status_code=status.HTTP_201_CREATED,
)
async def create_map(payload: CreateMapRequest, request: Request) -> dict[str, object]:
    """Add a map to the library."""
    container: AppContainer = request.app.state.container
    library_map = container.map_library_service.create_map(
        payload.name, payload.image_url
    )
    return serialize_library_map(library_map)


@router.get("/maps/{map_id}", dependencies=[Depends(require_admin)])
async def map_detail(map_id: UUID, request: Request) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return serialize_library_map(container.map_library_service.get_map(map_id))


@router.patch("/maps/{map_id}", dependencies=[Depends(require_admin)])
async def update_map(
    map_id: UUID, payload: UpdateMapRequest, request: Request
) -> dict[str, object]:
    """Rename a library map or change its image."""
    container: AppContainer = request.app.state.container
    library_map = container.map_library_service.update_map(
        map_id, name=payload.name, image_url=payload.image_url
    )
    return serialize_library_map(library_map)


@router.post("/maps/{map_id}/deactivate", dependencies=[Depends(require_admin)])
async def deactivate_map(map_id: UUID, request: Request) -> dict[str, object]:
    """Hide a map from new pools."""
    container: AppContainer = request.app.state.container
    return serialize_library_map(container.map_library_service.deactivate_map(map_id))


@router.post("/maps/{map_id}/reactivate", dependencies=[Depends(require_admin)])
async def reactivate_map(map_id: UUID, request: Request) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return serialize_library_map(container.map_library_service.reactivate_map(map_id))


@router.get("/teams", dependencies=[Depends(require_admin)])
async def list_teams(request: Request) -> dict[str, object]:
    """Return library teams sorted by name."""
    container: AppContainer = request.app.state.container
    teams = container.team_library_service.list_teams()
    return {"teams": [serialize_team(team) for team in teams]}


@router.post(
    "/teams",
    dependencies=[Depends(require_admin)],
    status_code=status.HTTP_201_CREATED,
)
async def create_team(
    payload: CreateTeamRequest, request: Request
) -> dict[str, object]:
    """Add a team to the library."""
    container: AppContainer = request.app.state.container
    team = container.team_library_service.create_team(payload.name, payload.logo_url)
    return serialize_team(team)


@router.patch("/teams/{team_id}", dependencies=[Depends(require_admin)])
async def update_team(
    team_id: UUID, payload: UpdateTeamRequest, request: Request
) -> dict[str, object]:
    """Rename a team or change its logo."""
    container: AppContainer = request.app.state.container
    team = container.team_library_service.update_team(
        team_id,
        name=payload.name,
        logo_url=payload.logo_url,
        remove_logo=payload.remove_logo,
    )
    return serialize_team(team)


@router.delete("/teams/{team_id}", dependencies=[Depends(require_admin)])
async def delete_team(team_id: UUID, request: Request) -> dict[str, bool]:
    """Delete a team that no live session uses."""
    container: AppContainer = request.app.state.container
    container.team_library_service.delete_team(team_id)
    return {"deleted": True}
