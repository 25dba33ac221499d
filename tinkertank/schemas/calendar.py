"""Calendar read API schemas. Instants are UTC; clients render them in local time."""

from datetime import datetime
from typing import List, Optional

from pydantic import field_serializer

from ..core.timezone_utils import ensure_utc
from ..models.event import Event
from ._strict_base import StrictModel


class CalendarEventResponse(StrictModel):
    id: str
    title: str
    event_type: str
    start_utc: datetime
    end_utc: datetime
    location_id: str
    local_day_key: str
    status: str

    @field_serializer("start_utc", "end_utc")
    def _serialize_instant(self, value: datetime) -> str:
        return ensure_utc(value).isoformat().replace("+00:00", "Z")

    @classmethod
    def from_event(cls, event: Event) -> "CalendarEventResponse":
        return cls(
            id=event.id,
            title=event.title,
            event_type=event.event_type,
            start_utc=ensure_utc(event.start_datetime),
            end_utc=ensure_utc(event.end_datetime),
            location_id=event.location_id,
            local_day_key=event.local_day_key,
            status=event.status,
        )


class CalendarEventDetailResponse(CalendarEventResponse):
    product_id: Optional[str] = None
    template_id: Optional[str] = None
    capacity: int
    booked_count: int
    spots_remaining: int


class CalendarEventListResponse(StrictModel):
    events: List[CalendarEventResponse]
    count: int
