# tinkertank/schemas/templates.py
"""
Schemas for recurring templates, ad-hoc events and generation results.

Dates here are local calendar dates and times are local wall-clock times at
the template's location.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field, field_validator

from ..models.event import EventType
from ._strict_base import StrictModel, StrictRequestModel


class RecurringTemplateCreate(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    event_type: EventType = EventType.CAMP
    product_id: str
    location_id: str
    start_date: date = Field(..., description="First local day of the recurrence window")
    end_date: date = Field(..., description="Last local day of the recurrence window (inclusive)")
    start_time: time = Field(..., description="Local session start time")
    end_time: time = Field(..., description="Local session end time")
    weekdays: Optional[List[int]] = Field(
        default=None,
        description="Weekdays to run on, Monday=0 .. Sunday=6; omit for every day",
    )
    skip_closure_dates: bool = True
    max_capacity: Optional[int] = Field(default=None, ge=0)

    @field_validator("weekdays")
    @classmethod
    def _validate_weekdays(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        if not value:
            raise ValueError("weekdays must not be empty; omit it to run every day")
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekdays must be between 0 (Monday) and 6 (Sunday)")
        return value


class RecurringTemplateResponse(StrictModel):
    id: str
    name: str
    description: Optional[str] = None
    event_type: str
    product_id: str
    location_id: str
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    weekdays: Optional[List[int]] = None
    skip_closure_dates: bool
    max_capacity: Optional[int] = None
    is_active: bool


class EventCreate(StrictRequestModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    event_type: EventType = EventType.CAMP
    product_id: Optional[str] = None
    location_id: str
    day: date = Field(..., description="Local calendar day of the event")
    start_time: time
    end_time: time
    max_capacity: Optional[int] = Field(default=None, ge=0)


class GenerationResultResponse(StrictModel):
    template_id: str
    created: List[str]
    skipped: List[str]
    created_count: int
    generated_at: datetime
