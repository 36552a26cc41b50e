"""
Location Repository - Data access for projects and their locations.
"""
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models import Location, Project
from app.domain.exceptions import LocationNotFoundError
from .base_repository import BaseRepository


class LocationRepository(BaseRepository[Location]):
    """Repository for Location rows (budget owners)."""

    def __init__(self, session: Session):
        super().__init__(session, Location)

    def exists(self, **criteria) -> bool:
        """Check if a Location matching the criteria exists."""
        return self.count(**criteria) > 0

    def get(self, location_id: int) -> Location:
        """
        Get a location or raise.

        Raises:
            LocationNotFoundError: If no such location
        """
        location = self.get_by_id(location_id)
        if not location:
            raise LocationNotFoundError(location_id)
        return location

    def get_by_project(self, project_id: int) -> List[Location]:
        return self.session.query(Location).filter(
            Location.project_id == project_id
        ).order_by(Location.location_code).all()

    def get_or_create_project(self, project_code: str, name: Optional[str] = None) -> Project:
        """Find a project by code, creating it when missing."""
        project = self.session.query(Project).filter(Project.project_code == project_code).first()
        if project:
            return project
        project = Project(project_code=project_code, name=name or project_code)
        self.session.add(project)
        self.session.flush()
        return project

    def create(
        self,
        project_id: int,
        location_code: str,
        name: str,
        start_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> Location:
        """Create a location under a project (flushed, not committed)."""
        location = Location(
            project_id=project_id,
            location_code=location_code,
            name=name,
            start_date=start_date,
            description=description,
        )
        self.session.add(location)
        self.session.flush()
        return location
