# tinkertank/repositories/event_repository.py
"""
Event Repository for the TinkerTank booking backend.

Calendar events are looked up by stored ``local_day_key`` for slot matching
and by UTC instant ranges for calendar reads.
"""

from datetime import datetime
import logging
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from ..models.event import Event, EventStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class EventRepository(BaseRepository[Event]):
    """Repository for calendar event data access."""

    def __init__(self, db: Session):
        super().__init__(db, Event)

    def find_for_slot(
        self, *, product_id: str, location_id: str, local_day_key: str
    ) -> List[Event]:
        """
        Non-cancelled events for a product at a location on a local day.

        Ordered by id so callers that must pick one pick deterministically.
        """
        query = (
            self._build_query()
            .filter(
                Event.product_id == product_id,
                Event.location_id == location_id,
                Event.local_day_key == local_day_key,
                Event.status != EventStatus.CANCELLED.value,
            )
            .order_by(Event.id)
        )
        return self._execute_query(query)

    def get_day_keys_for_template(self, template_id: str, location_id: str) -> Set[str]:
        rows = (
            self.db.query(Event.local_day_key)
            .filter(Event.template_id == template_id, Event.location_id == location_id)
            .all()
        )
        return {row[0] for row in rows}

    def list_in_range(
        self,
        *,
        start_utc: datetime,
        end_utc: datetime,
        location_id: Optional[str] = None,
        event_type: Optional[str] = None,
        include_cancelled: bool = False,
    ) -> List[Event]:
        """Events starting in ``[start_utc, end_utc)``, ordered by start."""
        query = self._build_query().filter(
            Event.start_datetime >= start_utc,
            Event.start_datetime < end_utc,
        )
        if location_id:
            query = query.filter(Event.location_id == location_id)
        if event_type:
            query = query.filter(Event.event_type == event_type)
        if not include_cancelled:
            query = query.filter(Event.status != EventStatus.CANCELLED.value)
        query = query.order_by(Event.start_datetime, Event.id)
        return self._execute_query(query)

    def list_for_template(self, template_id: str) -> List[Event]:
        query = (
            self._build_query()
            .filter(Event.template_id == template_id)
            .order_by(Event.local_day_key)
        )
        return self._execute_query(query)
