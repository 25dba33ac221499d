"""
Calendar models: recurring templates and the events expanded from them.

Event instants are absolute UTC. ``local_day_key`` is the calendar date of
the event start in its location's timezone, computed once at creation so
lookups by day never re-derive it from the UTC value.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .location import Location
    from .product import Product


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    CAMP = "CAMP"
    BIRTHDAY = "BIRTHDAY"
    SUBSCRIPTION = "SUBSCRIPTION"
    RECURRING_SESSION = "RECURRING_SESSION"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class RecurringTemplate(Base):
    """Recurrence rule: local date window, local time of day, weekday policy."""

    __tablename__ = "recurring_templates"

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_templates_window_ordered"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=EventType.CAMP.value
    )
    product_id: Mapped[str] = mapped_column(String(26), ForeignKey("products.id"), nullable=False)
    location_id: Mapped[str] = mapped_column(String(26), ForeignKey("locations.id"), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    # Python weekday numbers (Monday=0). NULL means every day in the window.
    weekdays: Mapped[Optional[List[int]]] = mapped_column(JSON, nullable=True)
    skip_closure_dates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )

    location: Mapped["Location"] = relationship("Location")
    product: Mapped["Product"] = relationship("Product")
    events: Mapped[List["Event"]] = relationship("Event", back_populates="template")

    def __repr__(self) -> str:
        return f"<RecurringTemplate {self.name} {self.start_date}..{self.end_date}>"


class Event(Base):
    __tablename__ = "events"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "location_id", "local_day_key", name="uq_events_template_location_day"
        ),
        CheckConstraint("start_datetime < end_datetime", name="ck_events_start_before_end"),
        Index("ix_events_product_location_day", "product_id", "location_id", "local_day_key"),
        Index("ix_events_start_datetime", "start_datetime"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=EventType.CAMP.value
    )
    product_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("products.id"), nullable=True
    )
    location_id: Mapped[str] = mapped_column(String(26), ForeignKey("locations.id"), nullable=False)
    template_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("recurring_templates.id"), nullable=True
    )

    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    local_day_key: Mapped[str] = mapped_column(String(10), nullable=False)

    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EventStatus.SCHEDULED.value, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )

    location: Mapped["Location"] = relationship("Location")
    template: Mapped[Optional[RecurringTemplate]] = relationship(
        "RecurringTemplate", back_populates="events"
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED.value

    def __repr__(self) -> str:
        return f"<Event {self.title} {self.local_day_key} @ {self.location_id}>"
