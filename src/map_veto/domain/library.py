"""Domain models for the managed map and team libraries."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class LibraryMap:
    """A map offered for session pools. Inactive maps stay for history."""

    id: UUID
    name: str
    image_url: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Team:
    """A reusable team, referenced by name when seats are assigned."""

    id: UUID
    name: str
    logo_url: str | None
    created_at: datetime
    updated_at: datetime
