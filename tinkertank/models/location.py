"""
Location model.

A venue where camps, parties and weekly sessions run. Each location carries
its own IANA timezone; every calendar-day decision for events and bookings at
the location is made in that zone.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON
import ulid

from ..core.config import settings
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Location(Base):
    __tablename__ = "locations"

    __table_args__ = (CheckConstraint("capacity >= 0", name="ck_locations_capacity_non_negative"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default=lambda: settings.location_timezone
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Availability restriction. NULL available_dates means every day is allowed.
    available_camp_types: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=lambda: ["day", "allday"]
    )
    available_dates: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    def allows_day(self, day_key: str) -> bool:
        """True when the explicit allowed-date set (if any) contains ``day_key``."""
        if self.available_dates is None:
            return True
        return day_key in set(self.available_dates)

    def allows_camp_type(self, camp_type: str) -> bool:
        return camp_type in (self.available_camp_types or [])

    def __repr__(self) -> str:
        return f"<Location {self.name} tz={self.timezone} active={self.is_active}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "capacity": self.capacity,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "available_camp_types": list(self.available_camp_types or []),
            "available_dates": (
                list(self.available_dates) if self.available_dates is not None else None
            ),
        }
