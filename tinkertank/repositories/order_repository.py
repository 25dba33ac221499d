# tinkertank/repositories/order_repository.py
"""
Order Repository for the TinkerTank booking backend.

Orders are loaded together with their items, which are always returned in
checkout position order.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Query, Session, selectinload

from ..models.booking import Booking
from ..models.order import Order, OrderItem, OrderStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class OrderRepository(BaseRepository[Order]):
    """Repository for orders and order items."""

    def __init__(self, db: Session):
        super().__init__(db, Order)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Order.items))

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        query = self._apply_eager_loading(self._build_query()).filter(
            Order.stripe_payment_intent_id == payment_intent_id
        )
        return query.first()

    def add_item(self, order: Order, **kwargs) -> OrderItem:
        item = OrderItem(order_id=order.id, **kwargs)
        self.db.add(item)
        self.db.flush()
        return item

    def get_item(self, order_item_id: str) -> Optional[OrderItem]:
        return self.db.get(OrderItem, order_item_id)

    def list_by_status(
        self,
        status: OrderStatus,
        *,
        created_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Order]:
        query = self._build_query().filter(Order.status == status.value)
        if created_before is not None:
            query = query.filter(Order.created_at < created_before)
        query = query.order_by(Order.created_at, Order.id).limit(limit)
        return self._execute_query(query)

    def list_paid_with_unbooked_items(self, *, limit: int = 100) -> List[Order]:
        """
        PAID orders holding at least one item that was never booked.

        An item counts as booked once reconciliation recorded the booking that
        fulfils it, even when that booking belongs to another order's item, or
        once any booking was created for it. A booking later cancelled by an
        operator does not put its item back on the sweep.
        """
        own_booking = exists(select(Booking.id).where(Booking.order_item_id == OrderItem.id))
        unbooked_item = exists(
            select(OrderItem.id).where(
                and_(
                    OrderItem.order_id == Order.id,
                    OrderItem.fulfilled_by_booking_id.is_(None),
                    ~own_booking,
                )
            )
        )
        query = (
            self._build_query()
            .filter(Order.status == OrderStatus.PAID.value, unbooked_item)
            .order_by(Order.paid_at, Order.id)
            .limit(limit)
        )
        return self._execute_query(query)

    def record_fulfilment(self, item: OrderItem, booking_id: str) -> None:
        item.fulfilled_by_booking_id = booking_id
        self.db.flush()
