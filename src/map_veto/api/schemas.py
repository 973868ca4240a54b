"""Pydantic request models for the HTTP API."""

from uuid import UUID

from pydantic import BaseModel

from map_veto.domain.players import SeatRole
from map_veto.domain.sessions import SessionFormat


class CreateSessionRequest(BaseModel):
    """Body for creating a session."""

    match_name: str
    format: SessionFormat
    turn_timer_seconds: int | None = None
    map_pool_size: int | None = None


class UpdateSessionRequest(BaseModel):
    """Body for editing a DRAFT or WAITING session."""

    match_name: str | None = None
    turn_timer_seconds: int | None = None


class AssignSeatRequest(BaseModel):
    """Body for assigning a team to a seat."""

    role: SeatRole
    team_name: str


class SetMapPoolRequest(BaseModel):
    """Body for snapshotting a session's map pool from library map ids."""

    map_ids: list[UUID]


class BanRequest(BaseModel):
    """Body for an ABBA ban."""

    map_id: UUID


class VoteRequest(BaseModel):
    """Body for a multiplayer ballot."""

    map_id: UUID
    round: int


class CreateMapRequest(BaseModel):
    """Body for adding a library map."""

    name: str
    image_url: str


class UpdateMapRequest(BaseModel):
    name: str | None = None
    image_url: str | None = None


class CreateTeamRequest(BaseModel):
    """Body for adding a library team."""

    name: str
    logo_url: str | None = None


class UpdateTeamRequest(BaseModel):
    name: str | None = None
    logo_url: str | None = None
    remove_logo: bool = False
