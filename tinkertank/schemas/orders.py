"""Checkout, order and payment-status schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import EmailStr, Field

from ._strict_base import StrictModel, StrictRequestModel
from .reconciliation import ReconciledItemResponse


class CheckoutRequest(StrictRequestModel):
    customer_email: EmailStr
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(default=None, max_length=50)


class CheckoutResponse(StrictModel):
    order_id: str
    status: str
    total_amount: Decimal
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None


class OrderItemResponse(StrictModel):
    id: str
    position: int
    product_id: str
    student_id: str
    location_id: Optional[str] = None
    booking_date: datetime
    price: Decimal


class OrderResponse(StrictModel):
    id: str
    status: str
    customer_email: str
    customer_name: str
    total_amount: Decimal
    stripe_payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    items: List[OrderItemResponse]
    linkage: List[ReconciledItemResponse] = []


class PaymentStatusResponse(StrictModel):
    order_id: str
    order_status: str
    payment_intent_id: str
    gateway_status: Optional[str] = None
    items: List[ReconciledItemResponse] = []


class WebhookResponse(StrictModel):
    status: str
    event_type: str
    event_id: Optional[str] = None
    message: Optional[str] = None
