"""
Tests for StripeService with the Stripe SDK patched out.

Transient gateway errors must never move an order to FAILED; webhook
redeliveries must be acknowledged without being applied twice.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from pydantic import SecretStr
import pytest
import stripe

from tinkertank.core.config import settings
from tinkertank.core.exceptions import (
    NotFoundException,
    PaymentGatewayUnavailableException,
    ServiceException,
    ValidationException,
)
from tinkertank.models import Booking, OrderStatus, WebhookEvent
from tinkertank.services.stripe_service import StripeService, to_cents


def _intent_event(event_type, intent_id, event_id="evt_1", **intent_fields):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", **intent_fields}},
    }


class TestConfiguration:
    def test_to_cents(self):
        assert to_cents("352.00") == 35200
        assert to_cents(80.1) == 8010

    def test_to_cents_is_exact_for_decimals(self):
        assert to_cents(Decimal("96.80")) == 9680
        assert to_cents(Decimal("12345678.91")) == 1234567891
        assert to_cents("1.005") == 101
        assert to_cents(0.29) == 29

    def test_unconfigured_service_refuses_calls(self, db, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", SecretStr(""))
        service = StripeService(db)
        with pytest.raises(ServiceException) as exc_info:
            service.retrieve_payment_intent("pi_1")
        assert exc_info.value.code == "STRIPE_NOT_CONFIGURED"


class TestCreatePaymentIntent:
    def test_creates_with_idempotency_key(self, db, stripe_settings, make_paid_order):
        order = make_paid_order(["2026-01-05"], status=OrderStatus.PENDING)
        with patch("stripe.PaymentIntent.create") as mock_create:
            mock_create.return_value = SimpleNamespace(id="pi_new", client_secret="secret")
            intent = StripeService(db).create_payment_intent(order)

        assert intent.id == "pi_new"
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount"] == 8000
        assert kwargs["currency"] == "aud"
        assert kwargs["metadata"] == {"order_id": order.id}
        assert kwargs["idempotency_key"] == f"order:{order.id}"

    def test_transient_error_is_gateway_unavailable(self, db, stripe_settings, make_paid_order):
        order = make_paid_order(["2026-01-05"], status=OrderStatus.PENDING)
        with patch(
            "stripe.PaymentIntent.create", side_effect=stripe.APIConnectionError("timeout")
        ):
            with pytest.raises(PaymentGatewayUnavailableException) as exc_info:
                StripeService(db).create_payment_intent(order)
        assert exc_info.value.status_code == 503

    def test_rejected_request_is_service_error(self, db, stripe_settings, make_paid_order):
        order = make_paid_order(["2026-01-05"], status=OrderStatus.PENDING)
        with patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.InvalidRequestError("Amount too small", "amount"),
        ):
            with pytest.raises(ServiceException) as exc_info:
                StripeService(db).create_payment_intent(order)
        assert exc_info.value.code == "PAYMENT_INTENT_FAILED"


class TestRetrievePaymentIntent:
    def test_retries_transient_then_succeeds(self, db, stripe_settings):
        intent = SimpleNamespace(id="pi_1", status="succeeded")
        with patch(
            "stripe.PaymentIntent.retrieve",
            side_effect=[stripe.APIConnectionError("reset"), intent],
        ) as mock_retrieve:
            assert StripeService(db).retrieve_payment_intent("pi_1") is intent
        assert mock_retrieve.call_count == 2

    def test_exhausted_retries_raise_unavailable(self, db, stripe_settings):
        with patch(
            "stripe.PaymentIntent.retrieve", side_effect=stripe.RateLimitError("slow down")
        ) as mock_retrieve:
            with pytest.raises(PaymentGatewayUnavailableException) as exc_info:
                StripeService(db).retrieve_payment_intent("pi_1")
        assert mock_retrieve.call_count == settings.stripe_retrieve_max_attempts
        assert exc_info.value.details["attempts"] == settings.stripe_retrieve_max_attempts

    def test_unknown_intent_is_not_found(self, db, stripe_settings):
        with patch(
            "stripe.PaymentIntent.retrieve",
            side_effect=stripe.InvalidRequestError("No such payment_intent", "id"),
        ) as mock_retrieve:
            with pytest.raises(NotFoundException) as exc_info:
                StripeService(db).retrieve_payment_intent("pi_missing")
        assert exc_info.value.code == "PAYMENT_INTENT_NOT_FOUND"
        assert mock_retrieve.call_count == 1


class TestConstructWebhookEvent:
    def test_missing_secret(self, db, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr(""))
        with pytest.raises(ServiceException) as exc_info:
            StripeService(db).construct_webhook_event(b"{}", "t=1,v1=abc")
        assert exc_info.value.code == "WEBHOOK_NOT_CONFIGURED"

    def test_missing_signature(self, db, stripe_settings):
        with pytest.raises(ValidationException) as exc_info:
            StripeService(db).construct_webhook_event(b"{}", None)
        assert exc_info.value.code == "WEBHOOK_SIGNATURE_MISSING"

    def test_invalid_signature(self, db, stripe_settings):
        with patch(
            "stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("bad sig", "t=1,v1=abc"),
        ):
            with pytest.raises(ValidationException) as exc_info:
                StripeService(db).construct_webhook_event(b"{}", "t=1,v1=abc")
        assert exc_info.value.code == "WEBHOOK_SIGNATURE_INVALID"

    def test_valid_event_returns_dict(self, db, stripe_settings):
        payload = b'{"id": "evt_1", "type": "payment_intent.succeeded"}'
        with patch("stripe.Webhook.construct_event") as mock_construct:
            event = StripeService(db).construct_webhook_event(payload, "t=1,v1=abc")
        mock_construct.assert_called_once_with(payload, "t=1,v1=abc", "whsec_tinkertank")
        assert event == {"id": "evt_1", "type": "payment_intent.succeeded"}


class TestHandleWebhookEvent:
    def test_succeeded_marks_paid_and_reconciles(
        self, db, stripe_settings, make_event, make_paid_order
    ):
        make_event("2026-01-05")
        order = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )

        result = StripeService(db).handle_webhook_event(
            _intent_event("payment_intent.succeeded", "pi_1")
        )

        assert result["status"] == "processed"
        db.refresh(order)
        assert order.status == OrderStatus.PAID.value
        assert db.query(Booking).count() == 1
        entry = db.query(WebhookEvent).one()
        assert entry.status == "processed"
        assert entry.related_order_id == order.id
        assert entry.attempts == 1

    def test_redelivery_is_acknowledged_once(self, db, stripe_settings, make_paid_order):
        make_paid_order(["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1")
        service = StripeService(db)
        event = _intent_event("payment_intent.succeeded", "pi_1")

        service.handle_webhook_event(event)
        with patch(
            "tinkertank.services.order_service.OrderService.mark_paid_by_payment_intent"
        ) as mock_mark_paid:
            result = service.handle_webhook_event(event)

        assert result["status"] == "duplicate"
        mock_mark_paid.assert_not_called()
        assert db.query(Booking).count() == 1
        assert db.query(WebhookEvent).one().attempts == 2

    def test_payment_failed_marks_failed(self, db, stripe_settings, make_paid_order):
        order = make_paid_order(
            ["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1"
        )

        StripeService(db).handle_webhook_event(
            _intent_event(
                "payment_intent.payment_failed",
                "pi_1",
                last_payment_error={"message": "Your card was declined."},
            )
        )

        db.refresh(order)
        assert order.status == OrderStatus.FAILED.value
        assert order.failure_reason == "Your card was declined."

    def test_late_failure_does_not_unpay(self, db, stripe_settings, make_paid_order):
        order = make_paid_order(["2026-01-05"], payment_intent_id="pi_1")

        result = StripeService(db).handle_webhook_event(
            _intent_event("payment_intent.canceled", "pi_1", cancellation_reason="abandoned")
        )

        assert result["status"] == "processed"
        assert result["message"] == "order already paid"
        db.refresh(order)
        assert order.status == OrderStatus.PAID.value

    def test_unknown_intent_records_failure(self, db, stripe_settings):
        with pytest.raises(NotFoundException):
            StripeService(db).handle_webhook_event(
                _intent_event("payment_intent.succeeded", "pi_unknown")
            )
        entry = db.query(WebhookEvent).one()
        assert entry.status == "failed"
        assert entry.processing_error

    def test_failed_delivery_is_retried(self, db, stripe_settings, make_paid_order):
        service = StripeService(db)
        event = _intent_event("payment_intent.succeeded", "pi_1")
        with pytest.raises(NotFoundException):
            service.handle_webhook_event(event)

        make_paid_order(["2026-01-05"], status=OrderStatus.PENDING, payment_intent_id="pi_1")
        result = service.handle_webhook_event(event)

        assert result["status"] == "processed"
        assert db.query(WebhookEvent).one().status == "processed"

    def test_unhandled_event_type_is_ignored(self, db, stripe_settings):
        result = StripeService(db).handle_webhook_event(
            {"id": "evt_9", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
        )
        assert result["status"] == "ignored"
        assert db.query(WebhookEvent).one().status == "processed"
