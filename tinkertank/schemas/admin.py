"""Schemas for booking, location and student administration."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_serializer, field_validator

from ..core.constants import CAMP_TYPES
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking, BookingStatus
from ..models.location import Location
from ._strict_base import StrictModel, StrictRequestModel


class AdminBookingResponse(StrictModel):
    id: str
    status: str
    student_id: str
    student_name: Optional[str] = None
    product_id: str
    product_name: Optional[str] = None
    location_id: str
    location_name: Optional[str] = None
    event_id: Optional[str] = None
    order_id: Optional[str] = None
    order_item_id: Optional[str] = None
    local_day_key: str
    start_utc: datetime
    end_utc: datetime
    total_price: float
    notes: Optional[str] = None
    created_at: datetime
    cancelled_at: Optional[datetime] = None

    @field_serializer("start_utc", "end_utc")
    def _serialize_instant(self, value: datetime) -> str:
        return ensure_utc(value).isoformat().replace("+00:00", "Z")

    @classmethod
    def from_booking(cls, booking: Booking) -> "AdminBookingResponse":
        return cls(
            id=booking.id,
            status=booking.status,
            student_id=booking.student_id,
            student_name=booking.student.name if booking.student is not None else None,
            product_id=booking.product_id,
            product_name=booking.product.name if booking.product is not None else None,
            location_id=booking.location_id,
            location_name=booking.location.name if booking.location is not None else None,
            event_id=booking.event_id,
            order_id=booking.order_id,
            order_item_id=booking.order_item_id,
            local_day_key=booking.local_day_key,
            start_utc=ensure_utc(booking.start_date),
            end_utc=ensure_utc(booking.end_date),
            total_price=float(booking.total_price or Decimal("0")),
            notes=booking.notes,
            created_at=booking.created_at,
            cancelled_at=booking.cancelled_at,
        )


class AdminBookingListResponse(StrictModel):
    bookings: List[AdminBookingResponse]
    count: int


class BookingUpdate(StrictRequestModel):
    status: Optional[BookingStatus] = None
    notes: Optional[str] = Field(None, max_length=2000)


class LocationResponse(StrictModel):
    id: str
    name: str
    address: str
    capacity: int
    timezone: str
    is_active: bool
    available_camp_types: List[str]
    available_dates: Optional[List[str]] = None

    @classmethod
    def from_location(cls, location: Location) -> "LocationResponse":
        return cls(**location.to_dict())


class LocationListResponse(StrictModel):
    locations: List[LocationResponse]
    count: int


class LocationAvailabilityUpdate(StrictRequestModel):
    """
    Partial availability change. Only fields present in the request are applied;
    ``available_dates: null`` lifts the date restriction.
    """

    available_dates: Optional[List[date]] = None
    available_camp_types: Optional[List[str]] = None
    capacity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("available_camp_types")
    @classmethod
    def _known_camp_types(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        unknown = sorted(set(value) - CAMP_TYPES)
        if unknown:
            raise ValueError(f"Unknown camp types: {', '.join(unknown)}")
        return sorted(set(value))


class AdminStudentResponse(StrictModel):
    id: str
    name: str
    birthdate: Optional[date] = None
    parent_email: Optional[str] = None
    allergies: Optional[str] = None
    medical_notes: Optional[str] = None
    active_bookings: int
    created_at: datetime


class AdminStudentListResponse(StrictModel):
    students: List[AdminStudentResponse]
    count: int
