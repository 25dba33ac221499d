"""Operator-facing flags raised by reconciliation for manual review or backfill."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON
import ulid

from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class FlagKind(str, Enum):
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    AMBIGUOUS_EVENT = "AMBIGUOUS_EVENT"
    EVENT_AT_CAPACITY = "EVENT_AT_CAPACITY"
    EXISTING_BOOKING_REUSED = "EXISTING_BOOKING_REUSED"


class ReconciliationFlag(Base):
    __tablename__ = "reconciliation_flags"

    __table_args__ = (
        UniqueConstraint("booking_id", "kind", name="uq_reconciliation_flags_booking_kind"),
        Index("ix_reconciliation_flags_unresolved", "kind", "resolved_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("orders.id"), nullable=True
    )
    order_item_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("order_items.id"), nullable=True
    )
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    detail: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
