"""Services for the managed map and team libraries."""

import logging
from dataclasses import dataclass, replace
from uuid import UUID, uuid4

from map_veto.domain.library import LibraryMap, Team
from map_veto.domain.sessions import ACTIVE_STATUSES, SessionRecord
from map_veto.errors import ConflictError, NotFoundError
from map_veto.services.repository import Clock, VetoRepository, utcnow
from map_veto.services.validation import validate_name, validate_url

logger = logging.getLogger(__name__)


@dataclass
class MapLibraryService:
    """Maintains the maps administrators pick session pools from."""

    repository: VetoRepository
    clock: Clock = utcnow

    def list_maps(self, include_inactive: bool = False) -> list[LibraryMap]:
        """Return maps sorted by name, active ones only unless asked."""
        return self.repository.list_library_maps(include_inactive)

    def get_map(self, map_id: UUID) -> LibraryMap:
        return self._load(map_id)

    def create_map(self, name: str, image_url: str) -> LibraryMap:
        """Add an active map to the library."""
        now = self.clock()
        library_map = LibraryMap(
            id=uuid4(),
            name=validate_name(name, "Map"),
            image_url=validate_url(image_url, "Image URL"),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        with self.repository.transaction():
            self.repository.insert_library_map(library_map)
        logger.info("Map created", extra={"map_id": str(library_map.id)})
        return library_map

    def update_map(
        self, map_id: UUID, name: str | None = None, image_url: str | None = None
    ) -> LibraryMap:
        """Rename a map or change its image. Existing pools keep their copy."""
        changes: dict[str, object] = {}
        if name is not None:
            changes["name"] = validate_name(name, "Map")
        if image_url is not None:
            changes["image_url"] = validate_url(image_url, "Image URL")
        with self.repository.transaction():
            updated = replace(self._load(map_id), updated_at=self.clock(), **changes)
            self.repository.update_library_map(updated)
        return updated

    def deactivate_map(self, map_id: UUID) -> LibraryMap:
        """Hide a map from new pools unless a live session still uses it."""
        with self.repository.transaction():
            library_map = self._load(map_id)
            if not library_map.is_active:
                raise ConflictError(
                    "MAP_ALREADY_INACTIVE", f'Map "{library_map.name}" is inactive.'
                )
            active = _first_active(self.repository.list_sessions_using_map(map_id))
            if active is not None:
                raise ConflictError(
                    "MAP_IN_USE",
                    f'Cannot deactivate map "{library_map.name}": used in active '
                    f'session "{active.match_name}".',
                    details={"session_id": str(active.id)},
                )
            updated = replace(library_map, is_active=False, updated_at=self.clock())
            self.repository.update_library_map(updated)
        logger.info("Map deactivated", extra={"map_id": str(map_id)})
        return updated

    def reactivate_map(self, map_id: UUID) -> LibraryMap:
        with self.repository.transaction():
            library_map = self._load(map_id)
            if library_map.is_active:
                raise ConflictError(
                    "MAP_ALREADY_ACTIVE", f'Map "{library_map.name}" is active.'
                )
            updated = replace(library_map, is_active=True, updated_at=self.clock())
            self.repository.update_library_map(updated)
        return updated

    def _load(self, map_id: UUID) -> LibraryMap:
        library_map = self.repository.get_library_map(map_id)
        if library_map is None:
            raise NotFoundError("MAP_NOT_FOUND", "Map not found.")
        return library_map


@dataclass
class TeamLibraryService:
    """Maintains reusable team names and logos."""

    repository: VetoRepository
    clock: Clock = utcnow

    def list_teams(self) -> list[Team]:
        return self.repository.list_teams()

    def create_team(self, name: str, logo_url: str | None = None) -> Team:
        """Add a team; names are unique."""
        team_name = validate_name(name, "Team")
        logo = _validate_logo(logo_url)
        now = self.clock()
        team = Team(
            id=uuid4(),
            name=team_name,
            logo_url=logo,
            created_at=now,
            updated_at=now,
        )
        with self.repository.transaction():
            if self.repository.get_team_by_name(team_name) is not None:
                raise ConflictError(
                    "TEAM_NAME_TAKEN", "A team with this name already exists."
                )
            self.repository.insert_team(team)
        logger.info("Team created", extra={"team_id": str(team.id)})
        return team

    def update_team(
        self,
        team_id: UUID,
        name: str | None = None,
        logo_url: str | None = None,
        remove_logo: bool = False,
    ) -> Team:
        """Rename a team or change its logo.

        Seats refer to teams by name, so a rename is refused while a live
        session has a seat for the team.
        """
        with self.repository.transaction():
            team = self._load(team_id)
            changes: dict[str, object] = {}
            if name is not None:
                new_name = validate_name(name, "Team")
                if new_name != team.name:
                    if self.repository.get_team_by_name(new_name) is not None:
                        raise ConflictError(
                            "TEAM_NAME_TAKEN", "A team with this name already exists."
                        )
                    self._ensure_unused(team, "rename")
                    changes["name"] = new_name
            if remove_logo:
                changes["logo_url"] = None
            elif logo_url is not None:
                changes["logo_url"] = _validate_logo(logo_url)
            updated = replace(team, updated_at=self.clock(), **changes)
            self.repository.update_team(updated)
        return updated

    def delete_team(self, team_id: UUID) -> None:
        with self.repository.transaction():
            team = self._load(team_id)
            self._ensure_unused(team, "delete")
            self.repository.delete_team(team_id)
        logger.info("Team deleted", extra={"team_id": str(team_id)})

    def _ensure_unused(self, team: Team, verb: str) -> None:
        active = _first_active(self.repository.list_sessions_using_team(team.name))
        if active is not None:
            raise ConflictError(
                "TEAM_IN_USE",
                f'Cannot {verb} team "{team.name}": used in active session '
                f'"{active.match_name}".',
                details={"session_id": str(active.id)},
            )

    def _load(self, team_id: UUID) -> Team:
        team = self.repository.get_team(team_id)
        if team is None:
            raise NotFoundError("TEAM_NOT_FOUND", "Team not found.")
        return team


def _validate_logo(logo_url: str | None) -> str | None:
    if logo_url is None or not logo_url.strip():
        return None
    return validate_url(logo_url, "Logo URL", allow_internal=False)


def _first_active(sessions: list[SessionRecord]) -> SessionRecord | None:
    return next((s for s in sessions if s.status in ACTIVE_STATUSES), None)


def serialize_library_map(library_map: LibraryMap) -> dict[str, object]:
    return {
        "id": str(library_map.id),
        "name": library_map.name,
        "image_url": library_map.image_url,
        "is_active": library_map.is_active,
        "created_at": library_map.created_at.isoformat(),
        "updated_at": library_map.updated_at.isoformat(),
    }


def serialize_team(team: Team) -> dict[str, object]:
    return {
        "id": str(team.id),
        "name": team.name,
        "logo_url": team.logo_url,
        "created_at": team.created_at.isoformat(),
        "updated_at": team.updated_at.isoformat(),
    }
