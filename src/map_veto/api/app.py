"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from map_veto.api.admin import router as admin_router
from map_veto.api.schemas import BanRequest, VoteRequest
from map_veto.app_logging import configure_logging
from map_veto.config import parse_forwarded_for
from map_veto.containers import AppContainer
from map_veto.errors import (
    AuthError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    ValidationError,
    VetoError,
)
from map_veto.services.turns import TurnOutcome

_STATUS_BY_ERROR: dict[type[VetoError], int] = {
    ValidationError: 422,
    ConflictError: 409,
    AuthError: 401,
    NotFoundError: 404,
    IntegrityError: 500,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            state_container.session_service.expire_stale_sessions()
            state_container.token_service.purge_terminal_ips()
        except Exception:
            logger.exception("Startup maintenance sweep failed")
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.exception_handler(VetoError)
    async def handle_veto_error(request: Request, exc: VetoError) -> JSONResponse:
        return JSONResponse(
            status_code=error_status(exc), content=exc.to_payload()
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/play/{token}")
    async def player_view(token: str, request: Request) -> dict[str, object]:
        """Return the sanitized session view for a seat token."""
        state_container: AppContainer = request.app.state.container
        return state_container.session_service.get_player_view(
            token, client_ip(request)
        )

    @app.post("/play/{token}/heartbeat")
    async def heartbeat(token: str, request: Request) -> dict[str, object]:
        """Mark a seat as connected."""
        state_container: AppContainer = request.app.state.container
        seat = state_container.session_service.heartbeat(token, client_ip(request))
        return {
            "status": "ok",
            "last_heartbeat_at": seat.last_heartbeat_at.isoformat()
            if seat.last_heartbeat_at
            else None,
        }

    @app.post("/play/{token}/ban")
    async def submit_ban(
        token: str, payload: BanRequest, request: Request
    ) -> dict[str, object]:
        """Ban a map for the seat whose turn it is."""
        state_container: AppContainer = request.app.state.container
        outcome = state_container.session_service.submit_ban(
            token, client_ip(request), payload.map_id
        )
        return _serialize_outcome(outcome)

    @app.post("/play/{token}/vote")
    async def submit_vote(
        token: str, payload: VoteRequest, request: Request
    ) -> dict[str, object]:
        """Cast a ballot for the current round."""
        state_container: AppContainer = request.app.state.container
        outcome = state_container.session_service.submit_vote(
            token, client_ip(request), payload.map_id, payload.round
        )
        return _serialize_outcome(outcome)

    @app.get("/results/{session_id}")
    async def results(session_id: UUID, request: Request) -> dict[str, object]:
        """Return public results of a completed session."""
        state_container: AppContainer = request.app.state.container
        return state_container.session_service.get_results(session_id)

    return app


def error_status(exc: VetoError) -> int:
    """Return the HTTP status for a domain error."""
    for error_type, code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def client_ip(request: Request) -> str | None:
    """Return the caller IP, honoring X-Forwarded-For only when trusted."""
    container: AppContainer = request.app.state.container
    if container.settings.trust_forwarded_for:
        forwarded = parse_forwarded_for(request.headers.get("x-forwarded-for"))
        if forwarded:
            return forwarded
    return request.client.host if request.client else None


def _serialize_outcome(outcome: TurnOutcome) -> dict[str, object]:
    session = outcome.session
    return {
        "status": session.status.value,
        "current_turn": session.current_turn,
        "current_round": session.current_round,
        "banned_map_id": str(outcome.banned_map.id) if outcome.banned_map else None,
        "winner_map_id": str(outcome.winner.id) if outcome.winner else None,
        "round_resolved": outcome.round_resolved,
    }
