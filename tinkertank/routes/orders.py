# tinkertank/routes/orders.py
"""
Checkout and order status endpoints.

``GET /payment-status`` is what the browser polls after the payment step. It
confirms the payment with the gateway and reconciles the order, so bookings
exist even when the webhook is late or lost.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from ..api.dependencies import (
    get_cart_service,
    get_cart_session_id,
    get_order_service,
    get_reconciliation_service,
    handle_domain_exception,
)
from ..core.exceptions import DomainException
from ..schemas.orders import (
    CheckoutRequest,
    CheckoutResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentStatusResponse,
)
from ..schemas.reconciliation import ReconciledItemResponse
from ..services.cart_service import CartService
from ..services.order_service import OrderService
from ..services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def checkout(
    payload: CheckoutRequest,
    session_id: str = Depends(get_cart_session_id),
    cart_service: CartService = Depends(get_cart_service),
    order_service: OrderService = Depends(get_order_service),
) -> CheckoutResponse:
    """Create a PENDING order from the session's cart and start payment."""
    try:
        result = order_service.checkout(cart_service.get(session_id), payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    cart_service.clear(session_id)
    return CheckoutResponse(
        order_id=result.order.id,
        status=result.order.status,
        total_amount=result.order.total_amount,
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
    )


@router.get("/payment-status", response_model=PaymentStatusResponse)
def payment_status(
    payment_intent_id: str = Query(..., min_length=1),
    order_service: OrderService = Depends(get_order_service),
) -> PaymentStatusResponse:
    try:
        confirmation = order_service.confirm_payment(payment_intent_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    items = (
        [ReconciledItemResponse(**item.to_dict()) for item in confirmation.reconciliation.items]
        if confirmation.reconciliation is not None
        else []
    )
    return PaymentStatusResponse(
        order_id=confirmation.order.id,
        order_status=confirmation.order.status,
        payment_intent_id=payment_intent_id,
        gateway_status=confirmation.gateway_status,
        items=items,
    )


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    order_service: OrderService = Depends(get_order_service),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> OrderResponse:
    try:
        order = order_service.get_order(order_id)
        linkage = reconciliation_service.get_order_linkage(order_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return OrderResponse(
        id=order.id,
        status=order.status,
        customer_email=order.customer_email,
        customer_name=order.customer_name,
        total_amount=order.total_amount,
        stripe_payment_intent_id=order.stripe_payment_intent_id,
        paid_at=order.paid_at,
        failure_reason=order.failure_reason,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
        linkage=[ReconciledItemResponse(**item.to_dict()) for item in linkage.items],
    )
