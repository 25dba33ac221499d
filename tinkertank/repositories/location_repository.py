"""Repository for locations."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.location import Location
from .base_repository import BaseRepository


class LocationRepository(BaseRepository[Location]):
    def __init__(self, db: Session):
        super().__init__(db, Location)

    def get_first_active(self) -> Optional[Location]:
        """First active location by name; the fallback for items without a location."""
        return (
            self._build_query()
            .filter(Location.is_active.is_(True))
            .order_by(Location.name, Location.id)
            .first()
        )

    def get_by_name(self, name: str) -> Optional[Location]:
        return self.find_one_by(name=name)

    def list_all(self, *, include_inactive: bool = False) -> List[Location]:
        query = self._build_query()
        if not include_inactive:
            query = query.filter(Location.is_active.is_(True))
        return self._execute_query(query.order_by(Location.name, Location.id))
