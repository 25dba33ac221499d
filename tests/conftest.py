"""
Shared fixtures for the TinkerTank test suite.

Every test gets a fresh in-memory SQLite database. Services commit for
real, so isolation comes from the throwaway engine rather than from an
outer rolled-back transaction.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Callable, Iterator, List, Optional

from pydantic import SecretStr
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tinkertank.core import order_lock
from tinkertank.core.config import settings
from tinkertank.core.timezone_utils import local_time_to_utc
from tinkertank.database import Base, configure_sqlite_savepoints
import tinkertank.models  # noqa: F401
from tinkertank.models import (
    Event,
    Location,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductType,
    RecurringTemplate,
    Student,
)

SYDNEY = "Australia/Sydney"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    """Order locks degrade open; uniqueness in the store keeps outcomes single."""
    monkeypatch.setattr(order_lock, "_get_sync_redis", lambda: None)


@pytest.fixture
def location(db) -> Location:
    loc = Location(
        name="Manly",
        address="1 The Corso, Manly NSW",
        capacity=20,
        timezone=SYDNEY,
        available_camp_types=["day", "allday"],
    )
    db.add(loc)
    db.commit()
    return loc


@pytest.fixture
def camp_product(db) -> Product:
    product = Product(
        name="Robotics Day Camp",
        type=ProductType.CAMP.value,
        price=Decimal("80.00"),
        duration_minutes=360,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def party_product(db) -> Product:
    product = Product(
        name="Science Birthday Party",
        type=ProductType.BIRTHDAY.value,
        price=Decimal("450.00"),
        duration_minutes=120,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def student(db) -> Student:
    kid = Student(name="Ada", parent_email="parent@example.com")
    db.add(kid)
    db.commit()
    return kid


@pytest.fixture
def make_template(db, location, camp_product) -> Callable[..., RecurringTemplate]:
    def _make(**overrides) -> RecurringTemplate:
        values = dict(
            name="January Robotics",
            event_type="CAMP",
            product_id=camp_product.id,
            location_id=location.id,
            start_date=date(2026, 1, 5),
            end_date=date(2026, 1, 12),
            start_time=time(9, 0),
            end_time=time(15, 0),
            weekdays=None,
            skip_closure_dates=True,
        )
        values.update(overrides)
        template = RecurringTemplate(**values)
        db.add(template)
        db.commit()
        return template

    return _make


@pytest.fixture
def make_event(db, location, camp_product) -> Callable[..., Event]:
    def _make(day_key: str, **overrides) -> Event:
        tz = overrides.pop("timezone", SYDNEY)
        values = dict(
            title="Robotics Day Camp",
            event_type="CAMP",
            product_id=camp_product.id,
            location_id=location.id,
            local_day_key=day_key,
            start_datetime=local_time_to_utc(day_key, time(9, 0), tz),
            end_datetime=local_time_to_utc(day_key, time(15, 0), tz),
        )
        values.update(overrides)
        event = Event(**values)
        db.add(event)
        db.commit()
        return event

    return _make


@pytest.fixture
def make_paid_order(db, location, camp_product, student) -> Callable[..., Order]:
    """Build a PAID order with one item per local day key (09:00 Sydney)."""

    def _make(
        day_keys: List[str],
        *,
        status: OrderStatus = OrderStatus.PAID,
        student_id: Optional[str] = None,
        location_id: Optional[str] = "__default__",
        payment_intent_id: Optional[str] = None,
    ) -> Order:
        order = Order(
            customer_email="parent@example.com",
            customer_name="Grace Hopper",
            total_amount=Decimal("80.00") * len(day_keys),
            status=status.value,
            stripe_payment_intent_id=payment_intent_id,
            paid_at=datetime.now(timezone.utc) if status == OrderStatus.PAID else None,
        )
        db.add(order)
        db.flush()
        for position, day_key in enumerate(day_keys):
            db.add(
                OrderItem(
                    order_id=order.id,
                    position=position,
                    product_id=camp_product.id,
                    student_id=student_id or student.id,
                    location_id=location.id if location_id == "__default__" else location_id,
                    booking_date=local_time_to_utc(day_key, time(9, 0), SYDNEY),
                    price=Decimal("80.00"),
                )
            )
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def stripe_settings(monkeypatch):
    """Configure test Stripe keys and remove retry backoff."""
    monkeypatch.setattr(settings, "stripe_secret_key", SecretStr("sk_test_tinkertank"))
    monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr("whsec_tinkertank"))
    monkeypatch.setattr(settings, "stripe_retrieve_backoff_s", 0.0)
    return settings
