# tinkertank/services/booking_admin_service.py
"""
Booking Admin Service for the TinkerTank booking backend.

Operator actions on bookings, locations and students:

- list and inspect bookings with their student, product and location
- move a booking through its operator lifecycle (complete, no-show, cancel)
- list locations and change their availability
- list students with their active booking counts

Cancelling is a soft delete. The row stays for audit, its open flags are
resolved, and the freed slot can be booked again; re-running reconciliation
for the paying order creates a fresh booking.
"""

from dataclasses import dataclass
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import InvalidBookingTransitionException, NotFoundException
from ..models.booking import Booking, BookingStatus
from ..models.location import Location
from ..models.student import Student
from ..repositories.factory import RepositoryFactory
from ..schemas.admin import BookingUpdate, LocationAvailabilityUpdate
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class BookingFilters:
    status: Optional[BookingStatus] = None
    location_id: Optional[str] = None
    student_id: Optional[str] = None
    from_day_key: Optional[str] = None
    to_day_key: Optional[str] = None


class BookingAdminService(BaseService):
    """Operator booking, location and student management."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.location_repository = RepositoryFactory.create_location_repository(db)
        self.student_repository = RepositoryFactory.create_student_repository(db)
        self.flag_repository = RepositoryFactory.create_reconciliation_flag_repository(db)

    # Bookings

    @BaseService.measure_operation("admin_bookings.list")
    def list_bookings(
        self, filters: Optional[BookingFilters] = None, *, limit: int = 100, offset: int = 0
    ) -> List[Booking]:
        filters = filters or BookingFilters()
        return self.booking_repository.search(
            status=filters.status.value if filters.status is not None else None,
            location_id=filters.location_id,
            student_id=filters.student_id,
            from_day_key=filters.from_day_key,
            to_day_key=filters.to_day_key,
            limit=limit,
            offset=offset,
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        return booking

    @BaseService.measure_operation("admin_bookings.update")
    def update_booking(self, booking_id: str, payload: BookingUpdate) -> Booking:
        """
        Apply an operator status change and/or notes edit.

        Setting the current status again is a no-op.

        Raises:
            NotFoundException: If the booking does not exist
            InvalidBookingTransitionException: If the status change is not allowed
        """
        booking = self.get_booking(booking_id)
        target = payload.status.value if payload.status is not None else None
        if target is not None and target != booking.status:
            if not booking.can_transition_to(target):
                raise InvalidBookingTransitionException(booking.id, booking.status, target)

        with self.transaction():
            if "notes" in payload.model_fields_set:
                booking.notes = payload.notes
            if target is not None and target != booking.status:
                previous = booking.status
                if target == BookingStatus.CANCELLED.value:
                    self._cancel(booking)
                else:
                    booking.status = target
                self.log_operation(
                    "update_booking_status", booking_id=booking.id, previous=previous, status=target
                )
        return booking

    @BaseService.measure_operation("admin_bookings.cancel")
    def cancel_booking(self, booking_id: str) -> Booking:
        """
        Cancel a booking. Cancelling an already cancelled booking is a no-op.

        Raises:
            NotFoundException: If the booking does not exist
            InvalidBookingTransitionException: If the booking is COMPLETED or NO_SHOW
        """
        booking = self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            return booking
        if not booking.can_transition_to(BookingStatus.CANCELLED.value):
            raise InvalidBookingTransitionException(
                booking.id, booking.status, BookingStatus.CANCELLED.value
            )
        with self.transaction():
            self._cancel(booking)
        self.log_operation("cancel_booking", booking_id=booking.id, order_id=booking.order_id)
        return booking

    def _cancel(self, booking: Booking) -> None:
        booking.cancel()
        resolved = self.flag_repository.resolve_open_for_booking(booking.id)
        self.booking_repository.flush()
        if resolved:
            self.logger.info(
                "Resolved flags of cancelled booking",
                extra={"booking_id": booking.id, "flags": resolved},
            )

    # Locations

    def list_locations(self, *, include_inactive: bool = False) -> List[Location]:
        return self.location_repository.list_all(include_inactive=include_inactive)

    @BaseService.measure_operation("admin_locations.update_availability")
    def update_location_availability(
        self, location_id: str, payload: LocationAvailabilityUpdate
    ) -> Location:
        """
        Change which days, camp types and capacity a location offers.

        Existing events and bookings are left alone; the new availability
        applies to later expansion runs and cart validation.
        """
        location = self.location_repository.get_by_id(location_id)
        if location is None:
            raise NotFoundException(
                "Location not found",
                code="LOCATION_NOT_FOUND",
                details={"location_id": location_id},
            )
        changes = payload.model_fields_set
        with self.transaction():
            if "available_dates" in changes:
                location.available_dates = (
                    sorted({day.isoformat() for day in payload.available_dates})
                    if payload.available_dates is not None
                    else None
                )
            if "available_camp_types" in changes and payload.available_camp_types is not None:
                location.available_camp_types = payload.available_camp_types
            if "capacity" in changes and payload.capacity is not None:
                location.capacity = payload.capacity
            if "is_active" in changes and payload.is_active is not None:
                location.is_active = payload.is_active
            self.location_repository.flush()
        self.log_operation(
            "update_location_availability", location_id=location.id, fields=sorted(changes)
        )
        return location

    # Students

    def list_students(
        self, *, parent_email: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[Tuple[Student, int]]:
        return self.student_repository.list_with_booking_counts(
            parent_email=parent_email, limit=limit, offset=offset
        )
