"""Tests for the remediation sweeps in BackfillService."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from tinkertank.core.exceptions import PaymentGatewayUnavailableException
from tinkertank.models import Booking, BookingStatus, Order, OrderStatus
from tinkertank.services.backfill_service import BackfillService
from tinkertank.services.booking_admin_service import BookingAdminService
from tinkertank.services.order_service import OrderService
from tinkertank.services.reconciliation_service import ReconciliationService


@pytest.fixture
def gateway():
    return MagicMock()


@pytest.fixture
def backfill(db, gateway):
    return BackfillService(db, order_service=OrderService(db, stripe_service=gateway))


def _age(db, order, minutes=30):
    db.query(Order).filter(Order.id == order.id).update(
        {Order.created_at: datetime.now(timezone.utc) - timedelta(minutes=minutes)}
    )
    db.commit()


class TestBackfillEventLinks:
    def test_links_bookings_once_event_exists(self, db, backfill, make_event, make_paid_order):
        order = make_paid_order(["2026-01-05", "2026-01-06"])
        ReconciliationService(db).reconcile(order.id)
        assert db.query(Booking).filter(Booking.event_id.is_(None)).count() == 2

        event = make_event("2026-01-05")
        result = backfill.backfill_event_links()

        assert result.scanned == 2
        assert len(result.linked) == 1
        assert len(result.still_unlinked) == 1
        linked = db.query(Booking).filter(Booking.id == result.linked[0]).one()
        assert linked.event_id == event.id

    def test_nothing_to_do(self, backfill):
        result = backfill.backfill_event_links()
        assert result.to_dict() == {
            "scanned": 0,
            "linked": [],
            "still_unlinked": [],
            "needs_review": [],
        }

    def test_ambiguous_match_reported(self, db, backfill, make_event, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        ReconciliationService(db).reconcile(order.id)
        make_event("2026-01-05")
        make_event("2026-01-05")

        result = backfill.backfill_event_links()

        assert len(result.linked) == 1
        assert result.needs_review == result.linked

    def test_attempts_rotate_through_backlog(self, db, backfill, make_paid_order):
        order = make_paid_order(["2026-01-05", "2026-01-06", "2026-01-07"])
        ReconciliationService(db).reconcile(order.id)

        runs = [backfill.backfill_event_links(limit=1) for _ in range(3)]

        scanned = [run.still_unlinked[0] for run in runs]
        assert sorted(scanned) == sorted(b.id for b in db.query(Booking).all())
        # Never-tried bookings first, latest day first among them
        latest = db.query(Booking).filter(Booking.local_day_key == "2026-01-07").one()
        assert scanned[0] == latest.id
        assert all(b.event_link_attempted_at is not None for b in db.query(Booking).all())

    def test_from_day_key_skips_earlier_days(self, db, backfill, make_paid_order):
        order = make_paid_order(["2026-01-05", "2026-01-06"])
        ReconciliationService(db).reconcile(order.id)

        result = backfill.backfill_event_links(from_day_key="2026-01-06")

        assert result.scanned == 1
        kept = db.query(Booking).filter(Booking.id == result.still_unlinked[0]).one()
        assert kept.local_day_key == "2026-01-06"


class TestReconcilePendingOrders:
    def test_settles_succeeded_orders(self, db, backfill, gateway, make_paid_order):
        order = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )
        _age(db, order)
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_1", status="succeeded", metadata={}
        )

        result = backfill.reconcile_pending_orders()

        assert result.paid == [order.id]
        assert db.query(Booking).count() == 1

    def test_young_orders_are_skipped(self, db, backfill, gateway, make_paid_order):
        make_paid_order(["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1")
        result = backfill.reconcile_pending_orders(min_age_minutes=10)
        assert result.checked == 0
        gateway.retrieve_payment_intent.assert_not_called()

    def test_gateway_outage_recorded_not_failed(self, db, backfill, gateway, make_paid_order):
        order = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )
        _age(db, order)
        gateway.retrieve_payment_intent.side_effect = PaymentGatewayUnavailableException("down")

        result = backfill.reconcile_pending_orders()

        assert result.errors == {order.id: "PAYMENT_GATEWAY_UNAVAILABLE"}
        db.refresh(order)
        assert order.status == OrderStatus.PENDING.value

    def test_unconfirmed_and_intentless_orders_unchanged(
        self, db, backfill, gateway, make_paid_order
    ):
        processing = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )
        no_intent = make_paid_order(["2026-01-06"], status=OrderStatus.PENDING)
        _age(db, processing)
        _age(db, no_intent)
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_1", status="processing", metadata={}
        )

        result = backfill.reconcile_pending_orders()

        assert sorted(result.unchanged) == sorted([processing.id, no_intent.id])
        assert result.paid == []

    def test_canceled_orders_marked_failed(self, db, backfill, gateway, make_paid_order):
        order = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )
        _age(db, order)
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_1", status="canceled", metadata={}
        )

        result = backfill.reconcile_pending_orders()
        assert result.failed == [order.id]


class TestReconcilePaidOrders:
    def test_reconciles_orders_with_unbooked_items(self, db, backfill, make_paid_order):
        unbooked = make_paid_order(["2026-01-05"])
        booked = make_paid_order(["2026-01-06"])
        ReconciliationService(db).reconcile(booked.id)

        result = backfill.reconcile_paid_orders()

        assert result.checked == 1
        assert result.reconciled == [unbooked.id]
        assert db.query(Booking).count() == 2

    def test_item_failures_reported(self, db, backfill, make_paid_order):
        order = make_paid_order(["2026-01-05"], location_id="01NOLOCATION00000000000000")

        result = backfill.reconcile_paid_orders()

        assert result.errors == {order.id: "ITEM_FAILURES"}

    def test_orders_sharing_a_slot_settle_after_one_sweep(
        self, db, backfill, make_event, make_paid_order
    ):
        make_event("2026-01-05")
        first = make_paid_order(["2026-01-05"])
        second = make_paid_order(["2026-01-05"])

        sweeps = [backfill.reconcile_paid_orders() for _ in range(3)]

        assert sorted(sweeps[0].reconciled) == sorted([first.id, second.id])
        assert [sweep.checked for sweep in sweeps[1:]] == [0, 0]
        assert db.query(Booking).count() == 1

    def test_operator_cancellation_is_not_rebooked(self, db, backfill, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        backfill.reconcile_paid_orders()
        BookingAdminService(db).cancel_booking(db.query(Booking).one().id)

        result = backfill.reconcile_paid_orders()

        assert result.checked == 0
        assert db.query(Booking).one().status == BookingStatus.CANCELLED.value
        assert order.items[0].fulfilled_by_booking_id is not None
