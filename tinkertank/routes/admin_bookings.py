# tinkertank/routes/admin_bookings.py
"""
Operator endpoints for bookings, locations and students.

Authentication is handled in front of the service and is not enforced here.
"""

from datetime import date
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..api.dependencies import get_booking_admin_service, handle_domain_exception
from ..core.exceptions import DomainException
from ..models.booking import BookingStatus
from ..schemas.admin import (
    AdminBookingListResponse,
    AdminBookingResponse,
    AdminStudentListResponse,
    AdminStudentResponse,
    BookingUpdate,
    LocationAvailabilityUpdate,
    LocationListResponse,
    LocationResponse,
)
from ..services.booking_admin_service import BookingAdminService, BookingFilters

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


@router.get("/bookings", response_model=AdminBookingListResponse)
def list_bookings(
    status: Optional[BookingStatus] = Query(None),
    location_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    from_day: Optional[date] = Query(None, description="First local day (inclusive)"),
    to_day: Optional[date] = Query(None, description="Last local day (inclusive)"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> AdminBookingListResponse:
    """Bookings by local day, latest first."""
    filters = BookingFilters(
        status=status,
        location_id=location_id,
        student_id=student_id,
        from_day_key=from_day.isoformat() if from_day else None,
        to_day_key=to_day.isoformat() if to_day else None,
    )
    bookings = service.list_bookings(filters, limit=limit, offset=offset)
    items = [AdminBookingResponse.from_booking(booking) for booking in bookings]
    return AdminBookingListResponse(bookings=items, count=len(items))


@router.get("/bookings/{booking_id}", response_model=AdminBookingResponse)
def get_booking(
    booking_id: str,
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> AdminBookingResponse:
    try:
        booking = service.get_booking(booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AdminBookingResponse.from_booking(booking)


@router.put("/bookings/{booking_id}", response_model=AdminBookingResponse)
def update_booking(
    booking_id: str,
    payload: BookingUpdate,
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> AdminBookingResponse:
    """Change status (COMPLETED, NO_SHOW, CANCELLED, ...) and/or notes."""
    try:
        booking = service.update_booking(booking_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AdminBookingResponse.from_booking(booking)


@router.delete("/bookings/{booking_id}", response_model=AdminBookingResponse)
def cancel_booking(
    booking_id: str,
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> AdminBookingResponse:
    """Cancel the booking. The row is kept; the slot becomes free again."""
    try:
        booking = service.cancel_booking(booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AdminBookingResponse.from_booking(booking)


@router.get("/locations", response_model=LocationListResponse)
def list_locations(
    include_inactive: bool = Query(False),
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> LocationListResponse:
    locations = service.list_locations(include_inactive=include_inactive)
    items = [LocationResponse.from_location(location) for location in locations]
    return LocationListResponse(locations=items, count=len(items))


@router.put("/locations/{location_id}/availability", response_model=LocationResponse)
def update_location_availability(
    location_id: str,
    payload: LocationAvailabilityUpdate,
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> LocationResponse:
    try:
        location = service.update_location_availability(location_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return LocationResponse.from_location(location)


@router.get("/students", response_model=AdminStudentListResponse)
def list_students(
    parent_email: Optional[str] = Query(None, max_length=255),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: BookingAdminService = Depends(get_booking_admin_service),
) -> AdminStudentListResponse:
    """Newest students first, with their active booking counts."""
    rows = service.list_students(parent_email=parent_email, limit=limit, offset=offset)
    items = [
        AdminStudentResponse(
            id=student.id,
            name=student.name,
            birthdate=student.birthdate,
            parent_email=student.parent_email,
            allergies=student.allergies,
            medical_notes=student.medical_notes,
            active_bookings=count,
            created_at=student.created_at,
        )
        for student, count in rows
    ]
    return AdminStudentListResponse(students=items, count=len(items))
