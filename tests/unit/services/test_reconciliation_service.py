"""
Tests for ReconciliationService.

Orders are built PAID with one item per Sydney day at 09:00 local time, so
every booking instant falls on the previous UTC date while its slot day key
is the Sydney date.
"""

from unittest.mock import patch

import pytest

from tinkertank.core.exceptions import (
    LocationUnavailableException,
    NotFoundException,
    OrderNotPaidException,
    ReconciliationInProgressException,
)
from tinkertank.core.timezone_utils import ensure_utc
from tinkertank.models import (
    Booking,
    BookingStatus,
    EventStatus,
    FlagKind,
    Location,
    OrderItem,
    OrderStatus,
    ReconciliationFlag,
)
from tinkertank.services.reconciliation_service import ItemStatus, ReconciliationService


def _flags(db, kind):
    return db.query(ReconciliationFlag).filter(ReconciliationFlag.kind == kind.value).all()


class TestReconcile:
    def test_creates_linked_bookings(self, db, make_event, make_paid_order):
        monday = make_event("2026-01-05")
        tuesday = make_event("2026-01-06")
        order = make_paid_order(["2026-01-05", "2026-01-06"])

        result = ReconciliationService(db).reconcile(order.id)

        assert [item.status for item in result.items] == [ItemStatus.LINKED, ItemStatus.LINKED]
        assert [item.event_id for item in result.items] == [monday.id, tuesday.id]
        bookings = db.query(Booking).order_by(Booking.local_day_key).all()
        assert [b.local_day_key for b in bookings] == ["2026-01-05", "2026-01-06"]
        # 09:00 Sydney is the previous UTC date
        assert ensure_utc(bookings[0].start_date).date().isoformat() == "2026-01-04"
        assert all(b.status == BookingStatus.CONFIRMED.value for b in bookings)
        assert all(b.order_id == order.id for b in bookings)
        assert result.reconciled_at is not None
        db.refresh(order)
        assert order.last_reconciled_at is not None

    def test_booking_end_uses_product_duration(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        ReconciliationService(db).reconcile(order.id)
        booking = db.query(Booking).one()
        assert (ensure_utc(booking.end_date) - ensure_utc(booking.start_date)).seconds == 6 * 3600

    def test_reconcile_is_idempotent(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)

        first = service.reconcile(order.id)
        second = service.reconcile(order.id)

        assert first.booking_ids == second.booking_ids
        assert second.items[0].status == ItemStatus.LINKED
        assert db.query(Booking).count() == 1

    def test_missing_event_leaves_booking_unlinked_and_flags(self, db, make_paid_order):
        order = make_paid_order(["2026-01-05"])

        result = ReconciliationService(db).reconcile(order.id)

        item = result.items[0]
        assert item.status == ItemStatus.EVENT_NOT_FOUND
        assert item.booking_id is not None
        assert item.event_id is None
        assert item.issues[0]["code"] == "EVENT_NOT_FOUND"
        booking = db.query(Booking).one()
        assert booking.event_id is None
        flags = _flags(db, FlagKind.EVENT_NOT_FOUND)
        assert len(flags) == 1
        assert flags[0].booking_id == booking.id
        assert flags[0].detail["day_key"] == "2026-01-05"

    def test_rerun_links_event_created_later(self, db, make_event, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(order.id)

        event = make_event("2026-01-05")
        result = service.reconcile(order.id)

        assert result.items[0].status == ItemStatus.LINKED
        assert result.items[0].event_id == event.id
        assert db.query(Booking).count() == 1
        flag = _flags(db, FlagKind.EVENT_NOT_FOUND)[0]
        assert flag.resolved_at is not None

    def test_ambiguous_events_pick_lowest_id(self, db, make_event, make_paid_order):
        first = make_event("2026-01-05")
        second = make_event("2026-01-05", title="Robotics Day Camp (overflow)")
        order = make_paid_order(["2026-01-05"])

        result = ReconciliationService(db).reconcile(order.id)

        item = result.items[0]
        assert item.status == ItemStatus.NEEDS_REVIEW
        assert item.event_id == min(first.id, second.id)
        flag = _flags(db, FlagKind.AMBIGUOUS_EVENT)[0]
        assert set(flag.detail["candidate_event_ids"]) == {first.id, second.id}

    def test_full_event_is_not_linked(self, db, make_event, make_paid_order):
        make_event("2026-01-05", max_capacity=0)
        order = make_paid_order(["2026-01-05"])

        result = ReconciliationService(db).reconcile(order.id)

        item = result.items[0]
        assert item.status == ItemStatus.NEEDS_REVIEW
        assert item.event_id is None
        assert item.booking_id is not None
        assert len(_flags(db, FlagKind.EVENT_AT_CAPACITY)) == 1

    def test_location_capacity_used_when_event_has_none(
        self, db, location, make_event, make_paid_order
    ):
        location.capacity = 0
        db.commit()
        make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])

        result = ReconciliationService(db).reconcile(order.id)
        assert result.items[0].status == ItemStatus.NEEDS_REVIEW

    def test_cancelled_events_are_ignored(self, db, make_event, make_paid_order):
        make_event("2026-01-05", status="CANCELLED")
        order = make_paid_order(["2026-01-05"])

        result = ReconciliationService(db).reconcile(order.id)
        assert result.items[0].status == ItemStatus.EVENT_NOT_FOUND

    def test_item_without_location_uses_first_active(
        self, db, location, make_event, make_paid_order
    ):
        event = make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"], location_id=None)

        result = ReconciliationService(db).reconcile(order.id)

        assert result.items[0].event_id == event.id
        assert db.query(Booking).one().location_id == location.id

    def test_failing_item_does_not_block_others(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        make_event("2026-01-06")
        order = make_paid_order(["2026-01-05", "2026-01-06"])
        broken = order.items[0]
        broken.location_id = "01NOLOCATION00000000000000"
        db.commit()

        result = ReconciliationService(db).reconcile(order.id)

        by_item = {item.order_item_id: item for item in result.items}
        assert by_item[broken.id].status == ItemStatus.FAILED
        assert by_item[broken.id].issues[0]["code"] == "LOCATION_UNAVAILABLE"
        assert by_item[order.items[1].id].status == ItemStatus.LINKED
        assert result.has_failures
        assert db.query(Booking).count() == 1

    def test_invalid_location_timezone_fails_item(self, db, location, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        location.timezone = "Not/AZone"
        db.commit()

        result = ReconciliationService(db).reconcile(order.id)
        assert result.items[0].status == ItemStatus.FAILED
        assert result.items[0].issues[0]["code"] == "INVALID_TIMEZONE"

    def test_concurrent_insert_reuses_existing_booking(
        self, db, location, camp_product, student, make_event, make_paid_order
    ):
        make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        item = order.items[0]
        winner = Booking(
            student_id=student.id,
            product_id=camp_product.id,
            location_id=location.id,
            order_id=order.id,
            order_item_id=item.id,
            start_date=item.booking_date,
            end_date=item.booking_date,
            local_day_key="2026-01-05",
            total_price=item.price,
        )
        db.add(winner)
        db.commit()

        service = ReconciliationService(db)
        real_find = service.booking_repository.find_active_for_slot
        calls = {"n": 0}

        def stale_first_read(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_find(**kwargs)

        with patch.object(
            service.booking_repository, "find_active_for_slot", side_effect=stale_first_read
        ):
            result = service.reconcile(order.id)

        assert result.items[0].booking_id == winner.id
        assert result.items[0].status == ItemStatus.LINKED
        assert db.query(Booking).count() == 1

    def test_existing_slot_booking_from_other_item_is_reused(
        self, db, location, camp_product, student, make_event, make_paid_order
    ):
        make_event("2026-01-05")
        earlier = make_paid_order(["2026-01-05"])
        later = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(earlier.id)
        db.query(Booking).update({Booking.event_id: None})
        db.commit()

        result = service.reconcile(later.id)

        assert db.query(Booking).count() == 1
        assert result.items[0].issues[0]["code"] == "EXISTING_BOOKING_REUSED"

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundException) as exc_info:
            ReconciliationService(db).reconcile("01NOORDER00000000000000000")
        assert exc_info.value.code == "ORDER_NOT_FOUND"

    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.FAILED])
    def test_unpaid_order_rejected(self, db, make_paid_order, status):
        order = make_paid_order(["2026-01-05"], status=status)
        with pytest.raises(OrderNotPaidException):
            ReconciliationService(db).reconcile(order.id)
        assert db.query(Booking).count() == 0

    def test_lock_contention_propagates(self, db, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        with patch(
            "tinkertank.services.reconciliation_service.order_lock",
            side_effect=ReconciliationInProgressException(order.id),
        ):
            with pytest.raises(ReconciliationInProgressException):
                ReconciliationService(db).reconcile(order.id)
        assert db.query(Booking).count() == 0


class TestRelinking:
    def _reconcile_ambiguous(self, db, make_event, make_paid_order):
        first = make_event("2026-01-05")
        second = make_event("2026-01-05", title="Robotics Day Camp (overflow)")
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        assert service.reconcile(order.id).items[0].status == ItemStatus.NEEDS_REVIEW
        chosen, other = sorted([first, second], key=lambda event: event.id)
        return service, order, chosen, other

    def test_cancelling_duplicate_event_clears_review(self, db, make_event, make_paid_order):
        service, order, chosen, other = self._reconcile_ambiguous(db, make_event, make_paid_order)
        other.status = EventStatus.CANCELLED.value
        db.commit()

        result = service.reconcile(order.id)

        assert result.items[0].status == ItemStatus.LINKED
        assert result.items[0].event_id == chosen.id
        assert _flags(db, FlagKind.AMBIGUOUS_EVENT)[0].resolved_at is not None
        assert service.get_order_linkage(order.id).items[0].status == ItemStatus.LINKED

    def test_cancelling_linked_event_moves_booking(self, db, make_event, make_paid_order):
        service, order, chosen, other = self._reconcile_ambiguous(db, make_event, make_paid_order)
        chosen.status = EventStatus.CANCELLED.value
        db.commit()

        result = service.reconcile(order.id)

        assert result.items[0].status == ItemStatus.LINKED
        assert result.items[0].event_id == other.id
        assert db.query(Booking).one().event_id == other.id
        assert _flags(db, FlagKind.AMBIGUOUS_EVENT)[0].resolved_at is not None

    def test_linked_event_cancelled_without_replacement(self, db, make_event, make_paid_order):
        event = make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(order.id)
        event.status = EventStatus.CANCELLED.value
        db.commit()

        result = service.reconcile(order.id)

        assert result.items[0].status == ItemStatus.EVENT_NOT_FOUND
        assert result.items[0].event_id is None
        assert db.query(Booking).one().event_id is None
        assert len(_flags(db, FlagKind.EVENT_NOT_FOUND)) == 1

    def test_manually_resolved_ambiguity_stays_resolved(self, db, make_event, make_paid_order):
        service, order, chosen, _ = self._reconcile_ambiguous(db, make_event, make_paid_order)
        flag = _flags(db, FlagKind.AMBIGUOUS_EVENT)[0]

        resolved = service.resolve_flag(flag.id)
        result = service.reconcile(order.id)

        assert resolved.resolved_at is not None
        assert result.items[0].status == ItemStatus.LINKED
        assert result.items[0].event_id == chosen.id
        db.refresh(flag)
        assert flag.resolved_at is not None


class TestSlotReuse:
    def test_reuse_is_flagged_and_recorded(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        earlier = make_paid_order(["2026-01-05"])
        later = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(earlier.id)

        result = service.reconcile(later.id)

        item = result.items[0]
        assert item.status == ItemStatus.LINKED
        assert item.issues[0]["code"] == "EXISTING_BOOKING_REUSED"
        assert item.booking_id == earlier.items[0].fulfilled_by_booking_id
        assert later.items[0].fulfilled_by_booking_id == item.booking_id
        flags = _flags(db, FlagKind.EXISTING_BOOKING_REUSED)
        assert len(flags) == 1
        assert flags[0].booking_id == item.booking_id
        assert flags[0].order_id == later.id
        assert flags[0].detail["reusing_order_item_ids"] == [later.items[0].id]

    def test_every_reusing_item_is_listed_once(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        orders = [make_paid_order(["2026-01-05"]) for _ in range(3)]
        service = ReconciliationService(db)
        for order in orders + orders:
            service.reconcile(order.id)

        flag = _flags(db, FlagKind.EXISTING_BOOKING_REUSED)[0]
        assert flag.detail["reusing_order_item_ids"] == [
            orders[1].items[0].id,
            orders[2].items[0].id,
        ]
        assert db.query(Booking).count() == 1

    def test_resolved_reuse_flag_is_not_reopened(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        earlier = make_paid_order(["2026-01-05"])
        later = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(earlier.id)
        service.reconcile(later.id)
        flag = _flags(db, FlagKind.EXISTING_BOOKING_REUSED)[0]
        service.resolve_flag(flag.id)

        again = service.reconcile(later.id)

        assert again.items[0].issues[0]["code"] == "EXISTING_BOOKING_REUSED"
        db.refresh(flag)
        assert flag.resolved_at is not None


class TestResolveFlag:
    def test_resolve_is_idempotent(self, db, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(order.id)
        flag = _flags(db, FlagKind.EVENT_NOT_FOUND)[0]

        first = service.resolve_flag(flag.id)
        resolved_at = first.resolved_at
        second = service.resolve_flag(flag.id)

        assert second.resolved_at == resolved_at
        assert service.list_open_flags() == []

    def test_unknown_flag(self, db):
        with pytest.raises(NotFoundException) as exc_info:
            ReconciliationService(db).resolve_flag("01NOFLAG000000000000000000")
        assert exc_info.value.code == "FLAG_NOT_FOUND"


class TestOrderLinkage:
    def test_unreconciled_then_linked(self, db, make_event, make_paid_order):
        event = make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)

        before = service.get_order_linkage(order.id)
        assert before.items[0].status == ItemStatus.UNRECONCILED
        assert before.reconciled_at is None

        service.reconcile(order.id)
        after = service.get_order_linkage(order.id)
        assert after.items[0].status == ItemStatus.LINKED
        assert after.items[0].event_id == event.id

    def test_flagged_booking_reports_needs_review(self, db, make_event, make_paid_order):
        make_event("2026-01-05")
        make_event("2026-01-05")
        order = make_paid_order(["2026-01-05"])
        service = ReconciliationService(db)
        service.reconcile(order.id)

        linkage = service.get_order_linkage(order.id)
        assert linkage.items[0].status == ItemStatus.NEEDS_REVIEW


class TestResolveLocation:
    def test_explicit_location(self, db, location):
        item = OrderItem(location_id=location.id)
        assert ReconciliationService(db).resolve_location(item).id == location.id

    def test_configured_default(self, db, location, monkeypatch):
        other = Location(name="Brookvale", timezone="Australia/Sydney")
        db.add(other)
        db.commit()
        monkeypatch.setattr(
            "tinkertank.services.reconciliation_service.settings.default_location_id", other.id
        )
        item = OrderItem(location_id=None)
        assert ReconciliationService(db).resolve_location(item).id == other.id

    def test_no_active_location(self, db):
        with pytest.raises(LocationUnavailableException):
            ReconciliationService(db).resolve_location(OrderItem(location_id=None))
