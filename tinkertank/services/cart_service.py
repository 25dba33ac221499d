# tinkertank/services/cart_service.py
"""
Cart Service for the TinkerTank booking backend.

The cart is an explicit ``CartState`` addressed by a cart session id and
stored through a ``CartStorage`` backend (Redis in production, in-memory for
tests and local runs). Nothing about the cart lives in module globals.

Every date check runs on local day keys at the item's location, so a day
picked in the browser is never shifted by a UTC conversion.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import logging
import threading
from typing import Dict, List, Optional, Protocol

from redis import Redis
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import closure_name
from ..core.exceptions import (
    BusinessRuleException,
    LocationUnavailableException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import is_weekend_day, local_today
from ..core.ulid_helper import generate_ulid
from ..models.product import Product
from ..repositories.factory import RepositoryFactory
from ..schemas.cart import (
    CartItem,
    CartItemCreate,
    CartState,
    CartStudent,
    CartStudentCreate,
    CartSummary,
    CartValidation,
    CartValidationError,
    CartValidationWarning,
)
from .base import BaseService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CartStorage(Protocol):
    """Persistence capability for serialised carts."""

    def load(self, session_id: str) -> Optional[str]:
        ...

    def save(self, session_id: str, payload: str, ttl_s: int) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...


class InMemoryCartStorage:
    """Process-local storage; TTL is ignored."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> Optional[str]:
        with self._lock:
            return self._data.get(session_id)

    def save(self, session_id: str, payload: str, ttl_s: int) -> None:
        with self._lock:
            self._data[session_id] = payload

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)


class RedisCartStorage:
    def __init__(self, client: Redis, namespace: Optional[str] = None) -> None:
        self.client = client
        self.namespace = namespace or settings.lock_namespace

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "RedisCartStorage":
        client = Redis.from_url(url or settings.redis_url, encoding="utf-8", decode_responses=True)
        return cls(client)

    def _key(self, session_id: str) -> str:
        return f"{self.namespace}:cart:{session_id}"

    def load(self, session_id: str) -> Optional[str]:
        return self.client.get(self._key(session_id))

    def save(self, session_id: str, payload: str, ttl_s: int) -> None:
        self.client.set(self._key(session_id), payload, ex=ttl_s)

    def delete(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class CartService(BaseService):
    """Cart operations over an explicit, stored ``CartState``."""

    def __init__(self, db: Session, storage: CartStorage):
        super().__init__(db)
        self.storage = storage
        self.location_repository = RepositoryFactory.create_location_repository(db)
        self.product_repository = RepositoryFactory.create_base_repository(db, Product)

    # Persistence

    def get(self, session_id: str) -> CartState:
        if not session_id:
            raise ValidationException("Cart session id is required", code="CART_SESSION_REQUIRED")
        payload = self.storage.load(session_id)
        if payload is None:
            return CartState(session_id=session_id)
        return CartState.model_validate_json(payload)

    def _save(self, cart: CartState) -> CartState:
        cart.updated_at = datetime.now(timezone.utc)
        self.storage.save(cart.session_id, cart.model_dump_json(), settings.cart_ttl_s)
        return cart

    def clear(self, session_id: str) -> CartState:
        self.storage.delete(session_id)
        return CartState(session_id=session_id)

    # Items

    @BaseService.measure_operation("cart_add_item")
    def add_item(self, session_id: str, data: CartItemCreate) -> CartState:
        """Add a product for some local days; same product and location merge their days."""
        product = self.product_repository.get_by_id(data.product_id)
        if product is None:
            raise NotFoundException(
                "Product not found",
                code="PRODUCT_NOT_FOUND",
                details={"product_id": data.product_id},
            )
        if not product.is_active:
            raise BusinessRuleException(
                "Product is not available",
                code="PRODUCT_INACTIVE",
                details={"product_id": product.id},
            )
        location = self.location_repository.get_by_id(data.location_id)
        if location is None or not location.is_active:
            raise LocationUnavailableException(data.location_id)

        cart = self.get(session_id)
        for item in cart.items:
            if item.product_id == product.id and item.location_id == location.id:
                item.dates = sorted(set(item.dates) | set(data.dates))
                if data.start_time is not None:
                    item.start_time = data.start_time
                return self._save(cart)

        cart.items.append(
            CartItem(
                id=generate_ulid(),
                product_id=product.id,
                product_name=product.name,
                product_type=product.type,
                location_id=location.id,
                dates=list(data.dates),
                start_time=data.start_time,
                price_per_day=Decimal(product.price),
                created_at=datetime.now(timezone.utc),
            )
        )
        return self._save(cart)

    def remove_item(self, session_id: str, item_id: str) -> CartState:
        cart = self.get(session_id)
        remaining = [item for item in cart.items if item.id != item_id]
        if len(remaining) == len(cart.items):
            raise NotFoundException(
                "Cart item not found", code="CART_ITEM_NOT_FOUND", details={"item_id": item_id}
            )
        cart.items = remaining
        return self._save(cart)

    def add_student(self, session_id: str, item_id: str, data: CartStudentCreate) -> CartState:
        cart = self.get(session_id)
        item = self._require_item(cart, item_id)
        if any(student.name.lower() == data.name.lower() for student in item.students):
            raise BusinessRuleException(
                "Student is already on this item",
                code="CART_STUDENT_DUPLICATE",
                details={"item_id": item_id, "name": data.name},
            )
        item.students.append(CartStudent(id=generate_ulid(), **data.model_dump()))
        return self._save(cart)

    def remove_student(self, session_id: str, item_id: str, student_id: str) -> CartState:
        cart = self.get(session_id)
        item = self._require_item(cart, item_id)
        remaining = [student for student in item.students if student.id != student_id]
        if len(remaining) == len(item.students):
            raise NotFoundException(
                "Student not found on cart item",
                code="CART_STUDENT_NOT_FOUND",
                details={"item_id": item_id, "student_id": student_id},
            )
        item.students = remaining
        return self._save(cart)

    @staticmethod
    def _require_item(cart: CartState, item_id: str) -> CartItem:
        item = cart.get_item(item_id)
        if item is None:
            raise NotFoundException(
                "Cart item not found", code="CART_ITEM_NOT_FOUND", details={"item_id": item_id}
            )
        return item

    # Computed

    def summary(self, cart: CartState) -> CartSummary:
        """GST is added on top of the subtotal."""
        subtotal = _money(sum((item.total_price for item in cart.items), Decimal("0")))
        gst = _money(subtotal * Decimal(str(settings.gst_rate)))
        students = {student.name.lower() for item in cart.items for student in item.students}
        return CartSummary(
            subtotal=subtotal,
            gst=gst,
            total=subtotal + gst,
            item_count=len(cart.items),
            student_count=len(students),
        )

    @BaseService.measure_operation("cart_validate")
    def validate(self, cart: CartState) -> CartValidation:
        errors: List[CartValidationError] = []
        warnings: List[CartValidationWarning] = []

        if not cart.items:
            errors.append(CartValidationError(item_id="", field="items", message="Cart is empty"))

        for item in cart.items:
            product = self.product_repository.get_by_id(item.product_id)
            if product is None or not product.is_active:
                errors.append(
                    CartValidationError(
                        item_id=item.id,
                        field="product_id",
                        message="Product is no longer available",
                    )
                )
                continue
            if not item.students:
                errors.append(
                    CartValidationError(
                        item_id=item.id, field="students", message="Add at least one student"
                    )
                )
            if not item.dates:
                errors.append(
                    CartValidationError(item_id=item.id, field="dates", message="Select a date")
                )

            location = self.location_repository.get_by_id(item.location_id)
            if location is None or not location.is_active:
                errors.append(
                    CartValidationError(
                        item_id=item.id, field="location_id", message="Location is not available"
                    )
                )
                continue

            camp_type = product.camp_type
            if camp_type is not None and not location.allows_camp_type(camp_type):
                errors.append(
                    CartValidationError(
                        item_id=item.id,
                        field="location_id",
                        message=f"{location.name} does not run {camp_type} camps",
                    )
                )

            today = local_today(location.timezone)
            for day_key in item.day_keys:
                closed = closure_name(day_key)
                if closed:
                    errors.append(
                        CartValidationError(
                            item_id=item.id,
                            field="dates",
                            message=f"{day_key} is closed ({closed})",
                        )
                    )
                elif product.is_camp and is_weekend_day(day_key):
                    errors.append(
                        CartValidationError(
                            item_id=item.id,
                            field="dates",
                            message=f"{day_key} is a weekend; camps run on weekdays",
                        )
                    )
                elif not location.allows_day(day_key):
                    errors.append(
                        CartValidationError(
                            item_id=item.id,
                            field="dates",
                            message=f"{location.name} is not available on {day_key}",
                        )
                    )
                elif day_key < today.isoformat():
                    errors.append(
                        CartValidationError(
                            item_id=item.id, field="dates", message=f"{day_key} is in the past"
                        )
                    )
                elif day_key == today.isoformat():
                    warnings.append(
                        CartValidationWarning(item_id=item.id, message=f"{day_key} is today")
                    )

        return CartValidation(is_valid=not errors, errors=errors, warnings=warnings)
