"""
Service layer for the TinkerTank booking backend.

Services own transactions and business rules; repositories only flush.
"""

from .backfill_service import BackfillResult, BackfillService, OrderSweepResult
from .base import BaseService
from .calendar_service import CalendarService, EventOccupancy
from .cart_service import CartService, CartStorage, InMemoryCartStorage, RedisCartStorage
from .event_expansion_service import EventDraft, EventExpansionService, GenerationResult
from .order_service import CheckoutResult, OrderService, PaymentConfirmation
from .reconciliation_service import (
    ItemStatus,
    ReconciledItem,
    ReconciliationResult,
    ReconciliationService,
)
from .stripe_service import StripeService
from .webhook_ledger_service import WebhookLedgerService

__all__ = [
    "BackfillResult",
    "BackfillService",
    "BaseService",
    "CalendarService",
    "CartService",
    "CartStorage",
    "CheckoutResult",
    "EventDraft",
    "EventExpansionService",
    "EventOccupancy",
    "GenerationResult",
    "InMemoryCartStorage",
    "ItemStatus",
    "OrderService",
    "OrderSweepResult",
    "PaymentConfirmation",
    "ReconciledItem",
    "ReconciliationResult",
    "ReconciliationService",
    "RedisCartStorage",
    "StripeService",
    "WebhookLedgerService",
]
