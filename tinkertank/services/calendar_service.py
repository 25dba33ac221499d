"""
Calendar read service.

Events are returned with their stored UTC instants. A "day" query is turned
into the UTC bounds of that local day in the caller's timezone, so an event
at 09:00 Sydney time is listed on the Sydney date even though it starts on
the previous UTC date.
"""

from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, local_day_bounds
from ..models.event import Event
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class EventOccupancy:
    event: Event
    capacity: int
    booked_count: int

    @property
    def spots_remaining(self) -> int:
        return max(self.capacity - self.booked_count, 0)


class CalendarService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.event_repository = RepositoryFactory.create_event_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.location_repository = RepositoryFactory.create_location_repository(db)

    @BaseService.measure_operation("list_calendar_events")
    def list_events(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        day: Optional[date] = None,
        timezone_name: Optional[str] = None,
        location_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[Event]:
        """
        List events by UTC range or by local day.

        Either ``start`` and ``end`` or ``day`` must be given. A ``day`` is
        interpreted in ``timezone_name``, falling back to the timezone of
        ``location_id``.
        """
        if day is not None:
            tz_name = timezone_name or self._location_timezone(location_id)
            if not tz_name:
                raise ValidationException(
                    "A timezone or location is required for day queries",
                    code="TIMEZONE_REQUIRED",
                )
            start_utc, end_utc = local_day_bounds(day, tz_name)
        elif start is not None and end is not None:
            start_utc, end_utc = ensure_utc(start), ensure_utc(end)
        else:
            raise ValidationException(
                "Provide start and end, or day", code="CALENDAR_RANGE_REQUIRED"
            )

        if end_utc <= start_utc:
            raise ValidationException(
                "Range end must be after start",
                code="CALENDAR_RANGE_INVALID",
                details={"start": start_utc.isoformat(), "end": end_utc.isoformat()},
            )
        return self.event_repository.list_in_range(
            start_utc=start_utc,
            end_utc=end_utc,
            location_id=location_id,
            event_type=event_type,
        )

    def _location_timezone(self, location_id: Optional[str]) -> Optional[str]:
        if not location_id:
            return None
        location = self.location_repository.get_by_id(location_id)
        return location.timezone if location is not None else None

    @BaseService.measure_operation("get_calendar_event")
    def get_event(self, event_id: str) -> EventOccupancy:
        event = self.event_repository.get_by_id(event_id)
        if event is None:
            raise NotFoundException(
                "Event not found", code="EVENT_NOT_FOUND", details={"event_id": event_id}
            )
        capacity = event.max_capacity
        if capacity is None:
            capacity = event.location.capacity
        return EventOccupancy(
            event=event,
            capacity=capacity,
            booked_count=self.booking_repository.count_active_for_event(event.id),
        )
