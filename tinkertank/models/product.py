"""Product catalog model (camps, birthday parties, weekly subscriptions)."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.constants import ALL_DAY_CAMP_MIN_MINUTES, DEFAULT_BOOKING_DURATION_MINUTES
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ProductType(str, Enum):
    CAMP = "CAMP"
    BIRTHDAY = "BIRTHDAY"
    SUBSCRIPTION = "SUBSCRIPTION"


class Product(Base):
    __tablename__ = "products"

    __table_args__ = (CheckConstraint("price >= 0", name="ck_products_price_non_negative"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )

    @property
    def is_camp(self) -> bool:
        return self.type == ProductType.CAMP.value

    @property
    def camp_type(self) -> Optional[str]:
        """``allday`` for camps longer than six hours, ``day`` otherwise."""
        if not self.is_camp:
            return None
        if (self.duration_minutes or 0) > ALL_DAY_CAMP_MIN_MINUTES:
            return "allday"
        return "day"

    @property
    def effective_duration_minutes(self) -> int:
        return self.duration_minutes or DEFAULT_BOOKING_DURATION_MINUTES

    def __repr__(self) -> str:
        return f"<Product {self.name} {self.type} ${self.price}>"
