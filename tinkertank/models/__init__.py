"""
SQLAlchemy models for the TinkerTank booking backend.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import BOOKING_TRANSITIONS, Booking, BookingStatus
from .event import Event, EventStatus, EventType, RecurringTemplate
from .location import Location
from .order import ORDER_TRANSITIONS, Order, OrderItem, OrderStatus
from .product import Product, ProductType
from .reconciliation_flag import FlagKind, ReconciliationFlag
from .student import Student
from .webhook_event import WebhookEvent

__all__ = [
    "BOOKING_TRANSITIONS",
    "Booking",
    "BookingStatus",
    "Event",
    "EventStatus",
    "EventType",
    "FlagKind",
    "Location",
    "ORDER_TRANSITIONS",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Product",
    "ProductType",
    "RecurringTemplate",
    "ReconciliationFlag",
    "Student",
    "WebhookEvent",
]
