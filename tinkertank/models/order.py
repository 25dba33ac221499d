"""
Order and order item models.

An order is created PENDING at checkout and only becomes PAID on a verified
payment notification (signed webhook or authenticated gateway lookup).
Once PAID its items are immutable; reconciliation only attaches bookings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .product import Product
    from .student import Student


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


# Allowed payment state transitions. A FAILED intent can still succeed when the
# customer retries the same payment; PAID is terminal.
ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.PAID.value, OrderStatus.FAILED.value}),
    OrderStatus.FAILED.value: frozenset({OrderStatus.PAID.value}),
    OrderStatus.PAID.value: frozenset(),
}


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value, index=True
    )
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reconciled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.PAID.value

    def can_transition_to(self, target: str) -> bool:
        return target in ORDER_TRANSITIONS.get(self.status, frozenset())

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status} {self.total_amount}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    __table_args__ = (UniqueConstraint("order_id", "position", name="uq_order_items_position"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    order_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(26), ForeignKey("products.id"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(26), ForeignKey("students.id"), nullable=False)
    location_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("locations.id"), nullable=True
    )
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # Active booking that satisfies this item; it may belong to another order
    fulfilled_by_booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), nullable=True, index=True
    )

    order: Mapped[Order] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")
    student: Mapped["Student"] = relationship("Student")

    def __repr__(self) -> str:
        return f"<OrderItem {self.id} order={self.order_id} #{self.position}>"
