"""Tests for WebhookLedgerService delivery logging."""

import pytest

from tinkertank.services.webhook_ledger_service import WebhookLedgerService


@pytest.fixture
def ledger(db):
    return WebhookLedgerService(db)


def _log(ledger, event_id="evt_1", event_type="payment_intent.succeeded"):
    return ledger.log_received(
        source="stripe",
        event_type=event_type,
        event_id=event_id,
        payload={"id": event_id, "type": event_type},
    )


class TestLogReceived:
    def test_first_delivery_creates_entry(self, ledger):
        entry = _log(ledger)
        assert entry.status == "received"
        assert entry.attempts == 1
        assert not WebhookLedgerService.is_processed(entry)

    def test_redelivery_bumps_attempts(self, ledger):
        first = _log(ledger)
        again = _log(ledger)
        assert again.id == first.id
        assert again.attempts == 2

    def test_missing_event_type_recorded_as_unknown(self, ledger):
        entry = _log(ledger, event_type="")
        assert entry.event_type == "unknown"


class TestOutcome:
    def test_mark_processed_clears_error(self, ledger):
        entry = _log(ledger)
        ledger.mark_failed(entry, error="order not found")
        ledger.mark_processed(entry, related_order_id="01ORDER0000000000000000000")

        assert WebhookLedgerService.is_processed(entry)
        assert entry.processing_error is None
        assert entry.processed_at is not None
        assert entry.related_order_id == "01ORDER0000000000000000000"

    def test_list_failed(self, ledger):
        failed = _log(ledger, event_id="evt_bad")
        ledger.mark_failed(failed, error="boom")
        ledger.mark_processed(_log(ledger, event_id="evt_ok"))

        assert [entry.event_id for entry in ledger.list_failed()] == ["evt_bad"]
