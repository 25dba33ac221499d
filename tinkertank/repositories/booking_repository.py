# tinkertank/repositories/booking_repository.py
"""
Booking Repository for the TinkerTank booking backend.

Handles:
- Booking creation with integrity errors exposed for "fetch existing" handling
- Lookup of the active booking for a (student, product, local day, location) slot
- Unlinked booking scans used by event backfill
- Filtered listings for booking administration
- Per-event booked counts for capacity checks
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def _active(self) -> Query:
        return self.db.query(Booking).filter(Booking.status != BookingStatus.CANCELLED.value)

    def find_active_for_slot(
        self,
        *,
        student_id: str,
        product_id: str,
        local_day_key: str,
        location_id: str,
    ) -> Optional[Booking]:
        """Return the single non-cancelled booking for a slot, if any."""
        query = self._active().filter(
            Booking.student_id == student_id,
            Booking.product_id == product_id,
            Booking.local_day_key == local_day_key,
            Booking.location_id == location_id,
        )
        try:
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Error finding booking for slot: %s", exc)
            raise RepositoryException(f"Failed to find booking: {exc}") from exc

    def find_active_for_order_item(self, order_item_id: str) -> Optional[Booking]:
        return self._active().filter(Booking.order_item_id == order_item_id).first()

    def list_for_order(self, order_id: str) -> List[Booking]:
        query = (
            self.db.query(Booking)
            .filter(Booking.order_id == order_id)
            .order_by(Booking.created_at, Booking.id)
        )
        return self._execute_query(query)

    def list_unlinked_active(
        self, *, limit: int = 500, from_day_key: Optional[str] = None
    ) -> List[Booking]:
        """
        Active bookings with no calendar event attached.

        Never-attempted bookings come first, then the least recently attempted,
        so a backlog of unlinkable rows cannot starve the rest. Within each
        group the latest day wins.
        """
        query = self._active().filter(Booking.event_id.is_(None))
        if from_day_key is not None:
            query = query.filter(Booking.local_day_key >= from_day_key)
        query = (
            query.options(joinedload(Booking.location))
            .order_by(
                Booking.event_link_attempted_at.asc().nulls_first(),
                Booking.local_day_key.desc(),
                Booking.id,
            )
            .limit(limit)
        )
        return self._execute_query(query)

    def mark_link_attempted(self, booking: Booking, attempted_at: datetime) -> None:
        booking.event_link_attempted_at = attempted_at
        self.db.flush()

    def search(
        self,
        *,
        status: Optional[str] = None,
        location_id: Optional[str] = None,
        student_id: Optional[str] = None,
        from_day_key: Optional[str] = None,
        to_day_key: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Booking]:
        """Admin listing, latest day first, with student, product and location loaded."""
        query = self._apply_eager_loading(self._build_query())
        if status is not None:
            query = query.filter(Booking.status == status)
        if location_id is not None:
            query = query.filter(Booking.location_id == location_id)
        if student_id is not None:
            query = query.filter(Booking.student_id == student_id)
        if from_day_key is not None:
            query = query.filter(Booking.local_day_key >= from_day_key)
        if to_day_key is not None:
            query = query.filter(Booking.local_day_key <= to_day_key)
        query = (
            query.order_by(Booking.local_day_key.desc(), Booking.id).offset(offset).limit(limit)
        )
        return self._execute_query(query)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(Booking.student),
            joinedload(Booking.product),
            joinedload(Booking.location),
        )

    def count_active_for_event(self, event_id: str) -> int:
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.event_id == event_id,
            Booking.status != BookingStatus.CANCELLED.value,
        )
        return int(self._execute_scalar(query) or 0)

    def count_active_for_events(self, event_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(event_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(Booking.event_id, func.count(Booking.id))
            .filter(
                Booking.event_id.in_(ids),
                Booking.status != BookingStatus.CANCELLED.value,
            )
            .group_by(Booking.event_id)
            .all()
        )
        return {event_id: int(count) for event_id, count in rows}

    def link_event(self, booking: Booking, event_id: str) -> Booking:
        booking.event_id = event_id
        self.db.flush()
        return booking

    def unlink_event(self, booking: Booking) -> Booking:
        booking.event_id = None
        self.db.flush()
        return booking
