# tinkertank/api/dependencies.py
"""
Service layer dependencies for dependency injection.

Factory functions that build request-scoped service instances on top of the
request's database session.
"""

from functools import lru_cache
import logging
from typing import NoReturn

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..core.exceptions import DomainException
from ..database import get_db
from ..services.backfill_service import BackfillService
from ..services.booking_admin_service import BookingAdminService
from ..services.calendar_service import CalendarService
from ..services.cart_service import CartService, CartStorage, RedisCartStorage
from ..services.event_expansion_service import EventExpansionService
from ..services.order_service import OrderService
from ..services.reconciliation_service import ReconciliationService
from ..services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@lru_cache(maxsize=1)
def get_cart_storage() -> CartStorage:
    """Shared Redis-backed cart storage."""
    return RedisCartStorage.from_url()


def get_cart_session_id(
    x_cart_session: str = Header(..., alias="X-Cart-Session", min_length=1, max_length=64),
) -> str:
    return x_cart_session


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarService:
    return CalendarService(db)


def get_event_expansion_service(db: Session = Depends(get_db)) -> EventExpansionService:
    return EventExpansionService(db)


def get_reconciliation_service(db: Session = Depends(get_db)) -> ReconciliationService:
    return ReconciliationService(db)


def get_stripe_service(db: Session = Depends(get_db)) -> StripeService:
    return StripeService(db)


def get_cart_service(
    db: Session = Depends(get_db), storage: CartStorage = Depends(get_cart_storage)
) -> CartService:
    return CartService(db, storage)


def get_order_service(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    cart_service: CartService = Depends(get_cart_service),
) -> OrderService:
    return OrderService(db, stripe_service=stripe_service, cart_service=cart_service)


def get_backfill_service(
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service),
) -> BackfillService:
    return BackfillService(db, order_service=order_service)


def get_booking_admin_service(db: Session = Depends(get_db)) -> BookingAdminService:
    return BookingAdminService(db)
