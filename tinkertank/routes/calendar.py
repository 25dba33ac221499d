# tinkertank/routes/calendar.py
"""
Calendar read endpoints.

Event instants are returned in UTC with a ``Z`` suffix; clients render them
in the viewer's timezone. Day queries are resolved against the local day in
the requested timezone, never the UTC date.
"""

from datetime import date, datetime
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..api.dependencies import get_calendar_service, handle_domain_exception
from ..core.exceptions import DomainException
from ..models.event import EventType
from ..schemas.calendar import (
    CalendarEventDetailResponse,
    CalendarEventListResponse,
    CalendarEventResponse,
)
from ..services.calendar_service import CalendarService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar"])


@router.get("/events", response_model=CalendarEventListResponse)
def list_events(
    start: Optional[datetime] = Query(None, description="Range start (UTC instant)"),
    end: Optional[datetime] = Query(None, description="Range end, exclusive (UTC instant)"),
    day: Optional[date] = Query(None, description="Local calendar day"),
    timezone: Optional[str] = Query(None, description="IANA timezone for day queries"),
    location_id: Optional[str] = Query(None),
    event_type: Optional[EventType] = Query(None),
    service: CalendarService = Depends(get_calendar_service),
) -> CalendarEventListResponse:
    """List events by UTC range or by local day."""
    try:
        events = service.list_events(
            start=start,
            end=end,
            day=day,
            timezone_name=timezone,
            location_id=location_id,
            event_type=event_type.value if event_type else None,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    items = [CalendarEventResponse.from_event(event) for event in events]
    return CalendarEventListResponse(events=items, count=len(items))


@router.get("/events/{event_id}", response_model=CalendarEventDetailResponse)
def get_event(
    event_id: str, service: CalendarService = Depends(get_calendar_service)
) -> CalendarEventDetailResponse:
    try:
        occupancy = service.get_event(event_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    base = CalendarEventResponse.from_event(occupancy.event)
    return CalendarEventDetailResponse(
        **base.model_dump(),
        product_id=occupancy.event.product_id,
        template_id=occupancy.event.template_id,
        capacity=occupancy.capacity,
        booked_count=occupancy.booked_count,
        spots_remaining=occupancy.spots_remaining,
    )
