# tinkertank/models/booking.py
"""
Booking model.

A booking is the commitment created for one paid order item: one student,
one product, one local day at one location. It may point at the calendar
event backing it, but the event is a weak reference: bookings stay valid
without one, and the link can be backfilled later.

Uniqueness of an active booking per (student, product, local day, location)
is enforced by a partial unique index, so two reconciliation attempts that
race between "check" and "create" cannot both insert.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .event import Event
    from .location import Location
    from .product import Product
    from .student import Student


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Operator status changes. Attendance outcomes can be corrected after the
# day; CANCELLED is terminal because the slot may already be rebooked.
BOOKING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.PENDING.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset(
        {
            BookingStatus.COMPLETED.value,
            BookingStatus.NO_SHOW.value,
            BookingStatus.CANCELLED.value,
        }
    ),
    BookingStatus.COMPLETED.value: frozenset({BookingStatus.NO_SHOW.value}),
    BookingStatus.NO_SHOW.value: frozenset({BookingStatus.COMPLETED.value}),
    BookingStatus.CANCELLED.value: frozenset(),
}


_ACTIVE_BOOKING_PREDICATE = text("status != 'CANCELLED'")


class Booking(Base):
    __tablename__ = "bookings"

    __table_args__ = (
        Index(
            "uq_bookings_active_student_product_day_location",
            "student_id",
            "product_id",
            "local_day_key",
            "location_id",
            unique=True,
            sqlite_where=_ACTIVE_BOOKING_PREDICATE,
            postgresql_where=_ACTIVE_BOOKING_PREDICATE,
        ),
        Index("ix_bookings_event_id", "event_id"),
        Index("ix_bookings_order_id", "order_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    student_id: Mapped[str] = mapped_column(String(26), ForeignKey("students.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(26), ForeignKey("products.id"), nullable=False)
    location_id: Mapped[str] = mapped_column(String(26), ForeignKey("locations.id"), nullable=False)
    event_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    order_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("orders.id"), nullable=True
    )
    order_item_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("order_items.id"), nullable=True
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    local_day_key: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True
    )
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Last event backfill attempt; the sweep visits never-tried bookings first
    event_link_attempted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    student: Mapped["Student"] = relationship("Student")
    product: Mapped["Product"] = relationship("Product")
    location: Mapped["Location"] = relationship("Location")
    event: Mapped[Optional["Event"]] = relationship("Event")

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED.value

    def can_transition_to(self, target: str) -> bool:
        return target in BOOKING_TRANSITIONS.get(self.status, frozenset())

    def cancel(self) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = _now_utc()

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} student={self.student_id} product={self.product_id} "
            f"day={self.local_day_key} status={self.status}>"
        )
