# tinkertank/services/backfill_service.py
"""
Backfill Service for the TinkerTank booking backend.

Remediation sweeps run by Celery beat and the ``reconcile`` CLI:

- link bookings created before their calendar event existed
- settle PENDING orders whose webhook never arrived
- re-run reconciliation for PAID orders with unbooked items

Each unit of work commits on its own so one bad row never blocks the rest.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import DomainException, PaymentGatewayUnavailableException
from ..models.order import OrderStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .order_service import OrderService
from .reconciliation_service import ItemStatus, ReconciliationService

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    scanned: int = 0
    linked: List[str] = field(default_factory=list)
    still_unlinked: List[str] = field(default_factory=list)
    needs_review: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "linked": list(self.linked),
            "still_unlinked": list(self.still_unlinked),
            "needs_review": list(self.needs_review),
        }


@dataclass
class OrderSweepResult:
    checked: int = 0
    paid: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    reconciled: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "paid": list(self.paid),
            "failed": list(self.failed),
            "reconciled": list(self.reconciled),
            "unchanged": list(self.unchanged),
            "errors": dict(self.errors),
        }


class BackfillService(BaseService):
    """Periodic repair of booking links and order payment state."""

    def __init__(self, db: Session, *, order_service: Optional[OrderService] = None):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.reconciliation_service = ReconciliationService(db)
        self.order_service = order_service or OrderService(db)

    @BaseService.measure_operation("backfill_event_links")
    def backfill_event_links(
        self, *, limit: int = 500, from_day_key: Optional[str] = None
    ) -> BackfillResult:
        """
        Attach events to active bookings that have none.

        Every scanned booking is stamped as attempted, so repeated runs with a
        small ``limit`` rotate through the whole backlog.
        """
        result = BackfillResult()
        attempted_at = datetime.now(timezone.utc)
        bookings = self.booking_repository.list_unlinked_active(
            limit=limit, from_day_key=from_day_key
        )
        for booking in bookings:
            result.scanned += 1
            try:
                with self.transaction():
                    self.booking_repository.mark_link_attempted(booking, attempted_at)
                    outcome = self.reconciliation_service.link_booking_to_event(
                        booking, booking.location
                    )
            except DomainException as exc:
                self.logger.error(
                    "Event backfill failed for booking",
                    extra={"booking_id": booking.id, "error": exc.message},
                )
                with self.transaction():
                    self.booking_repository.mark_link_attempted(booking, attempted_at)
                result.still_unlinked.append(booking.id)
                continue

            if outcome.event is None:
                result.still_unlinked.append(booking.id)
            else:
                result.linked.append(booking.id)
            if outcome.status == ItemStatus.NEEDS_REVIEW:
                result.needs_review.append(booking.id)

        self.logger.info(
            "Event backfill finished",
            extra={
                "scanned": result.scanned,
                "linked": len(result.linked),
                "still_unlinked": len(result.still_unlinked),
            },
        )
        return result

    @BaseService.measure_operation("reconcile_pending_orders")
    def reconcile_pending_orders(
        self, *, min_age_minutes: int = 10, limit: int = 100
    ) -> OrderSweepResult:
        """
        Ask the gateway about PENDING orders that are old enough to have settled.

        Transient gateway errors leave the order untouched for the next run.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=min_age_minutes)
        result = OrderSweepResult()
        orders = self.order_repository.list_by_status(
            OrderStatus.PENDING, created_before=cutoff, limit=limit
        )
        for order in orders:
            result.checked += 1
            if not order.stripe_payment_intent_id:
                result.unchanged.append(order.id)
                continue
            try:
                confirmation = self.order_service.confirm_payment(order.stripe_payment_intent_id)
            except PaymentGatewayUnavailableException as exc:
                result.errors[order.id] = exc.code
                continue
            except DomainException as exc:
                # Not confirmed yet, or gone from the gateway
                result.unchanged.append(order.id)
                self.logger.info(
                    "Pending order left unchanged",
                    extra={"order_id": order.id, "reason": exc.code},
                )
                continue

            if confirmation.order.status == OrderStatus.PAID.value:
                result.paid.append(order.id)
            elif confirmation.order.status == OrderStatus.FAILED.value:
                result.failed.append(order.id)
            else:
                result.unchanged.append(order.id)

        self.logger.info("Pending order sweep finished", extra=result.to_dict())
        return result

    @BaseService.measure_operation("reconcile_paid_orders")
    def reconcile_paid_orders(self, *, limit: int = 100) -> OrderSweepResult:
        """Re-run reconciliation for PAID orders that still have unbooked items."""
        result = OrderSweepResult()
        for order in self.order_repository.list_paid_with_unbooked_items(limit=limit):
            result.checked += 1
            try:
                reconciliation = self.reconciliation_service.reconcile(order.id)
            except (DomainException, SQLAlchemyError) as exc:
                self.db.rollback()
                result.errors[order.id] = getattr(exc, "code", type(exc).__name__)
                continue
            if reconciliation.has_failures:
                result.errors[order.id] = "ITEM_FAILURES"
            else:
                result.reconciled.append(order.id)
        self.logger.info("Paid order sweep finished", extra=result.to_dict())
        return result
