# tinkertank/services/order_service.py
"""
Order Service for the TinkerTank booking backend.

Owns checkout and the order payment state machine:

    PENDING -> PAID | FAILED
    FAILED  -> PAID   (a later successful attempt on the same intent)
    PAID    terminal

Bookings are never created here. Once an order is PAID the
``ReconciliationService`` turns its items into bookings.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone
import logging
from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy.orm import Session

from ..core.constants import BIRTHDAY_DEFAULT_START, CAMP_DAY_TIMES, SUBSCRIPTION_DEFAULT_START
from ..core.exceptions import (
    InvalidPaymentTransitionException,
    LocationUnavailableException,
    NotFoundException,
    PaymentNotConfirmedException,
    ValidationException,
)
from ..core.timezone_utils import local_time_to_utc
from ..models.order import Order, OrderStatus
from ..models.product import Product, ProductType
from ..models.student import Student
from ..repositories.factory import RepositoryFactory
from ..schemas.cart import CartItem, CartState, CartStudent
from ..schemas.orders import CheckoutRequest
from .base import BaseService
from .cart_service import CartService, InMemoryCartStorage
from .reconciliation_service import ReconciliationResult, ReconciliationService

if TYPE_CHECKING:  # pragma: no cover
    from .stripe_service import StripeService

logger = logging.getLogger(__name__)

_PENDING_GATEWAY_STATUSES = frozenset(
    {
        "requires_payment_method",
        "requires_confirmation",
        "requires_action",
        "requires_capture",
        "processing",
    }
)


@dataclass
class CheckoutResult:
    order: Order
    payment_intent_id: Optional[str]
    client_secret: Optional[str]


@dataclass
class PaymentConfirmation:
    order: Order
    gateway_status: Optional[str]
    reconciliation: Optional[ReconciliationResult]


def session_start_time(product: Product, item_start: Optional[time]) -> time:
    """Local wall-clock start for one booked day of ``product``."""
    if product.type == ProductType.CAMP.value:
        return CAMP_DAY_TIMES[0]
    if product.type == ProductType.BIRTHDAY.value:
        return item_start or BIRTHDAY_DEFAULT_START
    return item_start or SUBSCRIPTION_DEFAULT_START


class OrderService(BaseService):
    """Checkout and order payment state."""

    def __init__(
        self,
        db: Session,
        *,
        stripe_service: Optional["StripeService"] = None,
        cart_service: Optional[CartService] = None,
    ):
        super().__init__(db)
        self.stripe_service = stripe_service
        # validate() and summary() never touch storage
        self.cart_service = cart_service or CartService(db, InMemoryCartStorage())
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.location_repository = RepositoryFactory.create_location_repository(db)
        self.product_repository = RepositoryFactory.create_base_repository(db, Product)
        self.student_repository = RepositoryFactory.create_base_repository(db, Student)

    def _stripe(self) -> "StripeService":
        if self.stripe_service is None:
            from .stripe_service import StripeService

            self.stripe_service = StripeService(self.db)
        return self.stripe_service

    def get_order(self, order_id: str) -> Order:
        order = self.order_repository.get_by_id(order_id)
        if order is None:
            raise NotFoundException(
                "Order not found", code="ORDER_NOT_FOUND", details={"order_id": order_id}
            )
        return order

    def get_by_payment_intent(self, payment_intent_id: str) -> Order:
        order = self.order_repository.get_by_payment_intent(payment_intent_id)
        if order is None:
            raise NotFoundException(
                "No order for payment intent",
                code="ORDER_NOT_FOUND",
                details={"payment_intent_id": payment_intent_id},
            )
        return order

    # Checkout

    @BaseService.measure_operation("checkout")
    def checkout(self, cart: CartState, customer: CheckoutRequest) -> CheckoutResult:
        """
        Turn a validated cart into a PENDING order and create its payment intent.

        One order item is created per student per selected local day. Each
        item's booking instant is the product's session start on that day at
        the item's location, converted to UTC.

        Raises:
            ValidationException: If the cart does not validate
            PaymentGatewayUnavailableException: If the payment intent cannot be created
        """
        validation = self.cart_service.validate(cart)
        if not validation.is_valid:
            raise ValidationException(
                "Cart is not valid",
                code="CART_INVALID",
                details={"errors": [error.model_dump() for error in validation.errors]},
            )
        summary = self.cart_service.summary(cart)

        with self.transaction():
            order = self.order_repository.create(
                customer_email=str(customer.customer_email),
                customer_name=customer.customer_name,
                customer_phone=customer.customer_phone,
                total_amount=summary.total,
                status=OrderStatus.PENDING.value,
            )
            position = 0
            for item in cart.items:
                for student in item.students:
                    student_row = self._find_or_create_student(
                        str(customer.customer_email), student
                    )
                    for booking_date in self._booking_instants(item):
                        self.order_repository.add_item(
                            order,
                            position=position,
                            product_id=item.product_id,
                            student_id=student_row.id,
                            location_id=item.location_id,
                            booking_date=booking_date,
                            price=item.price_per_day,
                        )
                        position += 1
        self.db.refresh(order)

        self.logger.info(
            "Order created",
            extra={"order_id": order.id, "items": position, "total": str(order.total_amount)},
        )

        intent = self._stripe().create_payment_intent(order)
        with self.transaction():
            order.stripe_payment_intent_id = intent.id
        return CheckoutResult(
            order=order,
            payment_intent_id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
        )

    def _find_or_create_student(self, parent_email: str, data: CartStudent) -> Student:
        existing = self.student_repository.find_one_by(parent_email=parent_email, name=data.name)
        if existing is not None:
            return existing
        return self.student_repository.create(
            name=data.name,
            birthdate=data.birthdate,
            allergies=data.allergies,
            medical_notes=data.medical_notes,
            parent_email=parent_email,
        )

    def _booking_instants(self, item: CartItem) -> List[datetime]:
        product = self.product_repository.get_by_id(item.product_id)
        location = self.location_repository.get_by_id(item.location_id)
        if product is None:
            raise NotFoundException(
                "Product not found",
                code="PRODUCT_NOT_FOUND",
                details={"product_id": item.product_id},
            )
        if location is None:
            raise LocationUnavailableException(item.location_id, reason="Location not found")
        start = session_start_time(product, item.start_time)
        return [local_time_to_utc(day_key, start, location.timezone) for day_key in item.day_keys]

    # Payment state machine

    def _transition(self, order: Order, target: OrderStatus) -> None:
        if not order.can_transition_to(target.value):
            raise InvalidPaymentTransitionException(order.id, order.status, target.value)
        self.logger.info(
            "Order status change",
            extra={"order_id": order.id, "from": order.status, "to": target.value},
        )
        order.status = target.value
        order.updated_at = datetime.now(timezone.utc)

    @BaseService.measure_operation("mark_paid")
    def mark_paid(self, order: Order) -> Order:
        """Move an order to PAID. Already PAID is a no-op."""
        if order.status == OrderStatus.PAID.value:
            return order
        with self.transaction():
            self._transition(order, OrderStatus.PAID)
            order.paid_at = datetime.now(timezone.utc)
            order.failure_reason = None
        return order

    @BaseService.measure_operation("mark_failed")
    def mark_failed(self, order: Order, reason: Optional[str] = None) -> Order:
        """
        Move an order to FAILED.

        Raises:
            InvalidPaymentTransitionException: If the order is already PAID
        """
        if order.status == OrderStatus.FAILED.value:
            return order
        with self.transaction():
            self._transition(order, OrderStatus.FAILED)
            order.failure_reason = reason
        return order

    def mark_paid_by_payment_intent(self, payment_intent_id: str) -> Order:
        return self.mark_paid(self.get_by_payment_intent(payment_intent_id))

    def mark_failed_by_payment_intent(self, payment_intent_id: str, reason: Optional[str]) -> Order:
        return self.mark_failed(self.get_by_payment_intent(payment_intent_id), reason)

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(self, payment_intent_id: str) -> PaymentConfirmation:
        """
        Confirm payment with the gateway and reconcile.

        A PAID order is reconciled again without a gateway call. A transient
        gateway failure propagates and leaves the order unchanged.

        Raises:
            PaymentNotConfirmedException: If the intent has not succeeded yet
            PaymentGatewayUnavailableException: If the gateway cannot be reached
        """
        order = self.order_repository.get_by_payment_intent(payment_intent_id)
        if order is not None and order.status == OrderStatus.PAID.value:
            result = ReconciliationService(self.db).reconcile(order.id)
            return PaymentConfirmation(order=order, gateway_status=None, reconciliation=result)

        intent = self._stripe().retrieve_payment_intent(payment_intent_id)
        if order is None:
            order = self._order_from_metadata(intent, payment_intent_id)
        gateway_status = intent.status

        if gateway_status == "succeeded":
            self.mark_paid(order)
            result = ReconciliationService(self.db).reconcile(order.id)
            return PaymentConfirmation(
                order=order, gateway_status=gateway_status, reconciliation=result
            )
        if gateway_status == "canceled":
            self.mark_failed(order, reason="payment_intent.canceled")
            return PaymentConfirmation(
                order=order, gateway_status=gateway_status, reconciliation=None
            )
        if gateway_status in _PENDING_GATEWAY_STATUSES:
            raise PaymentNotConfirmedException(payment_intent_id, gateway_status)

        self.logger.warning(
            "Unexpected payment intent status",
            extra={"order_id": order.id, "gateway_status": gateway_status},
        )
        raise PaymentNotConfirmedException(payment_intent_id, gateway_status)

    def _order_from_metadata(self, intent: Any, payment_intent_id: str) -> Order:
        metadata = getattr(intent, "metadata", None) or {}
        order_id = metadata.get("order_id")
        if not order_id:
            raise NotFoundException(
                "No order for payment intent",
                code="ORDER_NOT_FOUND",
                details={"payment_intent_id": payment_intent_id},
            )
        order = self.get_order(order_id)
        if order.stripe_payment_intent_id is None:
            with self.transaction():
                order.stripe_payment_intent_id = payment_intent_id
        return order
