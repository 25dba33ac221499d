# tinkertank/services/reconciliation_service.py
"""
Reconciliation Service for the TinkerTank booking backend.

Guarantees that every item of a PAID order maps to exactly one active
booking and, where the calendar allows, one linked event.

Rules:
- The booking slot is (student, product, local day key, location), where the
  local day key is derived from the item's booking instant in the location's
  timezone.
- Each item runs in its own transaction; one failing item never rolls back
  the others.
- The store's partial unique index is the final arbiter of "one booking per
  slot"; a uniqueness violation means another attempt won and its booking is
  fetched and used.
- A missing event leaves the booking valid and unlinked, with an operator flag
  so the link can be backfilled later.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import DEFAULT_BOOKING_DURATION_MINUTES
from ..core.exceptions import (
    DomainException,
    DuplicateBookingConflictException,
    EventNotFoundException,
    LocationUnavailableException,
    NotFoundException,
    OrderNotPaidException,
)
from ..core.order_lock import order_lock
from ..core.timezone_utils import ensure_utc, get_timezone, to_local_day_key
from ..models.booking import Booking, BookingStatus
from ..models.event import Event
from ..models.location import Location
from ..models.order import Order, OrderItem, OrderStatus
from ..models.product import Product
from ..models.reconciliation_flag import FlagKind, ReconciliationFlag
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    LINKED = "linked"
    EVENT_NOT_FOUND = "event_not_found"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"
    UNRECONCILED = "unreconciled"


@dataclass
class ReconciledItem:
    """Outcome for one order item."""

    order_item_id: str
    booking_id: Optional[str]
    event_id: Optional[str]
    status: ItemStatus
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_item_id": self.order_item_id,
            "booking_id": self.booking_id,
            "event_id": self.event_id,
            "status": self.status.value,
            "issues": list(self.issues),
        }


@dataclass
class ReconciliationResult:
    order_id: str
    items: List[ReconciledItem]
    reconciled_at: Optional[datetime] = None

    @property
    def booking_ids(self) -> List[str]:
        return [item.booking_id for item in self.items if item.booking_id]

    @property
    def has_failures(self) -> bool:
        return any(item.status == ItemStatus.FAILED for item in self.items)


@dataclass
class EventLinkOutcome:
    event: Optional[Event]
    status: ItemStatus
    issues: List[Dict[str, Any]] = field(default_factory=list)


_REVIEW_FLAGS = (FlagKind.AMBIGUOUS_EVENT, FlagKind.EVENT_AT_CAPACITY)


class ReconciliationService(BaseService):
    """Turns paid order items into bookings linked to calendar events."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.event_repository = RepositoryFactory.create_event_repository(db)
        self.location_repository = RepositoryFactory.create_location_repository(db)
        self.flag_repository = RepositoryFactory.create_reconciliation_flag_repository(db)
        self.product_repository = RepositoryFactory.create_base_repository(db, Product)

    # Public API

    @BaseService.measure_operation("reconcile_order")
    def reconcile(self, order_id: str) -> ReconciliationResult:
        """
        Ensure each item of a PAID order has exactly one booking.

        Safe to call repeatedly (webhook redelivery, status polling). Calls for
        the same order are serialised by the per-order lock.

        Raises:
            NotFoundException: If the order does not exist
            OrderNotPaidException: If the order is not PAID
            ReconciliationInProgressException: If another caller holds the lock too long
        """
        order = self._get_order(order_id)
        if order.status != OrderStatus.PAID.value:
            raise OrderNotPaidException(order_id, order.status)

        with order_lock(order_id) as locked:
            if not locked:
                self.logger.warning(
                    "Reconciling without order lock; relying on store uniqueness",
                    extra={"order_id": order_id},
                )
            results = [self._reconcile_item_safely(order, item) for item in order.items]

            reconciled_at = datetime.now(timezone.utc)
            with self.transaction():
                order.last_reconciled_at = reconciled_at

        self.logger.info(
            "Order reconciled",
            extra={
                "order_id": order_id,
                "items": len(results),
                "linked": sum(1 for r in results if r.status == ItemStatus.LINKED),
                "failed": sum(1 for r in results if r.status == ItemStatus.FAILED),
            },
        )
        return ReconciliationResult(order_id=order_id, items=results, reconciled_at=reconciled_at)

    @BaseService.measure_operation("get_order_linkage")
    def get_order_linkage(self, order_id: str) -> ReconciliationResult:
        """Read-only view of each item's current booking and event."""
        order = self._get_order(order_id)
        items: List[ReconciledItem] = []
        for item in order.items:
            booking = self.booking_repository.find_active_for_order_item(item.id)
            if booking is None:
                booking = self._find_slot_booking(item)
            if booking is None:
                items.append(
                    ReconciledItem(
                        order_item_id=item.id,
                        booking_id=None,
                        event_id=None,
                        status=ItemStatus.UNRECONCILED,
                    )
                )
                continue
            items.append(
                ReconciledItem(
                    order_item_id=item.id,
                    booking_id=booking.id,
                    event_id=booking.event_id,
                    status=self._status_from_flags(booking),
                )
            )
        return ReconciliationResult(
            order_id=order_id, items=items, reconciled_at=order.last_reconciled_at
        )

    def link_booking_to_event(
        self,
        booking: Booking,
        location: Location,
        *,
        order_id: Optional[str] = None,
        order_item_id: Optional[str] = None,
    ) -> EventLinkOutcome:
        """
        Resolve and attach the event backing ``booking``.

        Runs inside the caller's transaction. Zero candidates, several
        candidates and a full event each raise an operator flag; only the full
        event case leaves the booking unlinked for capacity reasons.

        A booking whose current event is still a candidate keeps it. Its
        ambiguity flag is resolved once no more than one candidate remains.
        A booking whose event was cancelled is unlinked and matched again.
        """
        flag_ctx = {
            "booking_id": booking.id,
            "order_id": order_id or booking.order_id,
            "order_item_id": order_item_id or booking.order_item_id,
        }
        candidates = self.event_repository.find_for_slot(
            product_id=booking.product_id,
            location_id=booking.location_id,
            local_day_key=booking.local_day_key,
        )

        if booking.event_id is not None:
            current = next((event for event in candidates if event.id == booking.event_id), None)
            if current is not None:
                if len(candidates) <= 1:
                    self.flag_repository.resolve(booking.id, FlagKind.AMBIGUOUS_EVENT)
                self.flag_repository.resolve(booking.id, FlagKind.EVENT_NOT_FOUND)
                self.flag_repository.resolve(booking.id, FlagKind.EVENT_AT_CAPACITY)
                return EventLinkOutcome(event=current, status=self._status_from_flags(booking))
            self.logger.warning(
                "Linked event no longer active, matching booking again",
                extra={"booking_id": booking.id, "event_id": booking.event_id},
            )
            self.booking_repository.unlink_event(booking)

        if not candidates:
            missing = EventNotFoundException(
                booking.product_id, booking.location_id, booking.local_day_key
            )
            self.flag_repository.get_or_create(
                kind=FlagKind.EVENT_NOT_FOUND, detail=missing.details, **flag_ctx
            )
            self.flag_repository.resolve(booking.id, FlagKind.AMBIGUOUS_EVENT)
            self.logger.warning(
                "No calendar event for booking",
                extra={"booking_id": booking.id, "day_key": booking.local_day_key},
            )
            return EventLinkOutcome(
                event=None, status=ItemStatus.EVENT_NOT_FOUND, issues=[missing.to_dict()]
            )

        issues: List[Dict[str, Any]] = []
        status = ItemStatus.LINKED
        chosen = candidates[0]
        if len(candidates) > 1:
            detail = {
                "day_key": booking.local_day_key,
                "candidate_event_ids": [event.id for event in candidates],
                "selected_event_id": chosen.id,
            }
            self.flag_repository.get_or_create(
                kind=FlagKind.AMBIGUOUS_EVENT, detail=detail, **flag_ctx
            )
            self.logger.warning(
                "Several events match booking slot, using earliest id",
                extra={"booking_id": booking.id, "event_id": chosen.id},
            )
            issues.append(
                {
                    "code": FlagKind.AMBIGUOUS_EVENT.value,
                    "message": "Several events match",
                    "details": detail,
                }
            )
            status = ItemStatus.NEEDS_REVIEW
        else:
            self.flag_repository.resolve(booking.id, FlagKind.AMBIGUOUS_EVENT)

        capacity = chosen.max_capacity if chosen.max_capacity is not None else location.capacity
        booked = self.booking_repository.count_active_for_event(chosen.id)
        if booked >= capacity:
            detail = {"event_id": chosen.id, "capacity": capacity, "booked": booked}
            self.flag_repository.get_or_create(
                kind=FlagKind.EVENT_AT_CAPACITY, detail=detail, **flag_ctx
            )
            self.logger.warning(
                "Event is full, booking left unlinked",
                extra={"booking_id": booking.id, "event_id": chosen.id},
            )
            issues.append(
                {
                    "code": FlagKind.EVENT_AT_CAPACITY.value,
                    "message": "Event is at capacity",
                    "details": detail,
                }
            )
            return EventLinkOutcome(event=None, status=ItemStatus.NEEDS_REVIEW, issues=issues)
        self.booking_repository.link_event(booking, chosen.id)

        self.flag_repository.resolve(booking.id, FlagKind.EVENT_NOT_FOUND)
        self.flag_repository.resolve(booking.id, FlagKind.EVENT_AT_CAPACITY)
        return EventLinkOutcome(event=chosen, status=status, issues=issues)

    def list_open_flags(
        self, *, kind: Optional[FlagKind] = None, limit: int = 100
    ) -> List[ReconciliationFlag]:
        return self.flag_repository.list_unresolved(kind=kind, limit=limit)

    @BaseService.measure_operation("resolve_flag")
    def resolve_flag(self, flag_id: str) -> ReconciliationFlag:
        """
        Close a flag after manual review. Resolving twice is a no-op.

        Raises:
            NotFoundException: If the flag does not exist
        """
        flag = self.flag_repository.get_by_id(flag_id)
        if flag is None:
            raise NotFoundException(
                "Reconciliation flag not found",
                code="FLAG_NOT_FOUND",
                details={"flag_id": flag_id},
            )
        with self.transaction():
            self.flag_repository.mark_resolved(flag)
        self.log_operation("resolve_flag", flag_id=flag.id, kind=flag.kind)
        return flag

    def resolve_location(self, item: OrderItem) -> Location:
        """
        Item location, then the configured default, then the first active location.

        Raises:
            LocationUnavailableException: If nothing usable is found
        """
        location: Optional[Location] = None
        if item.location_id:
            location = self.location_repository.get_by_id(item.location_id)
            if location is None:
                raise LocationUnavailableException(item.location_id, reason="Location not found")
            return location
        if settings.default_location_id:
            location = self.location_repository.get_by_id(settings.default_location_id)
        if location is None:
            location = self.location_repository.get_first_active()
        if location is None:
            raise LocationUnavailableException(None, reason="No active location configured")
        return location

    # Internals

    def _get_order(self, order_id: str) -> Order:
        order = self.order_repository.get_by_id(order_id)
        if order is None:
            raise NotFoundException(
                "Order not found", code="ORDER_NOT_FOUND", details={"order_id": order_id}
            )
        return order

    def _find_slot_booking(self, item: OrderItem) -> Optional[Booking]:
        try:
            location = self.resolve_location(item)
        except LocationUnavailableException:
            return None
        return self.booking_repository.find_active_for_slot(
            student_id=item.student_id,
            product_id=item.product_id,
            local_day_key=to_local_day_key(item.booking_date, location.timezone),
            location_id=location.id,
        )

    def _status_from_flags(self, booking: Booking) -> ItemStatus:
        for kind in _REVIEW_FLAGS:
            flag = self.flag_repository.get_for_booking(booking.id, kind)
            if flag is not None and flag.resolved_at is None:
                return ItemStatus.NEEDS_REVIEW
        if booking.event_id is None:
            return ItemStatus.EVENT_NOT_FOUND
        return ItemStatus.LINKED

    def _reconcile_item_safely(self, order: Order, item: OrderItem) -> ReconciledItem:
        try:
            result = self._reconcile_item(order, item)
        except (DomainException, SQLAlchemyError) as exc:
            self.db.rollback()
            self.logger.error(
                "Failed to reconcile order item",
                extra={"order_id": order.id, "order_item_id": item.id, "error": str(exc)},
                exc_info=True,
            )
            issue = (
                exc.to_dict()
                if isinstance(exc, DomainException)
                else {"code": "DATABASE_ERROR", "message": str(exc), "details": {}}
            )
            result = ReconciledItem(
                order_item_id=item.id,
                booking_id=None,
                event_id=None,
                status=ItemStatus.FAILED,
                issues=[issue],
            )
        prometheus_metrics.record_reconcile_item(result.status.value)
        return result

    def _reconcile_item(self, order: Order, item: OrderItem) -> ReconciledItem:
        location = self.resolve_location(item)
        get_timezone(location.timezone)
        booking_start = ensure_utc(item.booking_date)
        day_key = to_local_day_key(booking_start, location.timezone)

        with self.transaction():
            booking = self.booking_repository.find_active_for_slot(
                student_id=item.student_id,
                product_id=item.product_id,
                local_day_key=day_key,
                location_id=location.id,
            )
            issues: List[Dict[str, Any]] = []

            if booking is None:
                booking = self._create_booking(order, item, location, booking_start, day_key)

            if booking.order_item_id not in (None, item.id):
                issues.append(self._record_reused_booking(order, item, booking))
            if item.fulfilled_by_booking_id != booking.id:
                self.order_repository.record_fulfilment(item, booking.id)

            outcome = self.link_booking_to_event(
                booking, location, order_id=order.id, order_item_id=item.id
            )

        return ReconciledItem(
            order_item_id=item.id,
            booking_id=booking.id,
            event_id=outcome.event.id if outcome.event is not None else booking.event_id,
            status=outcome.status,
            issues=issues + outcome.issues,
        )

    def _record_reused_booking(
        self, order: Order, item: OrderItem, booking: Booking
    ) -> Dict[str, Any]:
        """
        Flag a slot that another order item already booked.

        One flag per booking lists every reusing item. The flag is raised when
        the item is first matched to the booking, so a later re-run does not
        reopen a flag an operator has resolved.
        """
        detail = {
            "booking_id": booking.id,
            "booking_order_item_id": booking.order_item_id,
        }
        if item.fulfilled_by_booking_id != booking.id:
            flag = self.flag_repository.get_or_create(
                booking_id=booking.id,
                kind=FlagKind.EXISTING_BOOKING_REUSED,
                order_id=order.id,
                order_item_id=item.id,
                detail={**detail, "reusing_order_item_ids": [item.id]},
            )
            reusing = list(flag.detail.get("reusing_order_item_ids", []))
            if item.id not in reusing:
                flag.detail = {**flag.detail, "reusing_order_item_ids": reusing + [item.id]}
                self.flag_repository.flush()
            self.logger.warning(
                "Slot already booked by another order item, reusing booking",
                extra={"order_id": order.id, "order_item_id": item.id, "booking_id": booking.id},
            )
        return {
            "code": FlagKind.EXISTING_BOOKING_REUSED.value,
            "message": "Slot was already booked by another order item",
            "details": detail,
        }

    def _create_booking(
        self,
        order: Order,
        item: OrderItem,
        location: Location,
        booking_start: datetime,
        day_key: str,
    ) -> Booking:
        product = item.product or self.product_repository.get_by_id(item.product_id)
        duration = (
            product.effective_duration_minutes
            if product is not None
            else DEFAULT_BOOKING_DURATION_MINUTES
        )
        try:
            booking = self.booking_repository.create(
                student_id=item.student_id,
                product_id=item.product_id,
                location_id=location.id,
                order_id=order.id,
                order_item_id=item.id,
                start_date=booking_start,
                end_date=booking_start + timedelta(minutes=duration),
                local_day_key=day_key,
                status=BookingStatus.CONFIRMED.value,
                total_price=item.price,
            )
            self.logger.info(
                "Created booking",
                extra={"order_id": order.id, "booking_id": booking.id, "day_key": day_key},
            )
            return booking
        except IntegrityError:
            # A concurrent attempt inserted the slot first; use its booking
            existing = self.booking_repository.find_active_for_slot(
                student_id=item.student_id,
                product_id=item.product_id,
                local_day_key=day_key,
                location_id=location.id,
            )
            if existing is None:
                raise DuplicateBookingConflictException(
                    {"order_item_id": item.id, "day_key": day_key, "location_id": location.id}
                )
            self.logger.info(
                "Booking already created concurrently, using existing",
                extra={"order_id": order.id, "booking_id": existing.id},
            )
            return existing
