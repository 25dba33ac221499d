"""
Stripe Service for the TinkerTank booking backend.

Wraps the Stripe SDK for the payment operations the booking flow needs:
creating a payment intent per order, retrieving it to confirm payment, and
verifying and dispatching webhook deliveries.

Error semantics:
- Transient gateway failures (connection errors, rate limits, 5xx) are
  retried with jittered backoff and surface as
  ``PaymentGatewayUnavailableException``. They never count as proof that a
  payment failed, so callers must leave the order untouched.
- Unknown payment intents map to ``NotFoundException``.
"""

from decimal import ROUND_HALF_UP, Decimal
import json
import logging
import random
import time
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.exceptions import (
    InvalidPaymentTransitionException,
    NotFoundException,
    PaymentGatewayUnavailableException,
    ReconciliationInProgressException,
    ServiceException,
    ValidationException,
)
from ..models.order import Order
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .webhook_ledger_service import WebhookLedgerService

logger: logging.Logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "stripe"

_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def to_cents(amount: Any) -> int:
    """Minor units for an amount given as Decimal, str, int or float; half-cents round up."""
    cents = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


class StripeService(BaseService):
    """Gateway adapter for payment intents and webhook events."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.stripe_configured = settings.stripe_configured
        if self.stripe_configured:
            stripe.api_key = settings.stripe_secret_key.get_secret_value()
            stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout_s)
            stripe.max_network_retries = 1
        else:
            self.logger.warning("Stripe secret key not configured")

    def _require_configured(self) -> None:
        if not self.stripe_configured:
            raise ServiceException("Stripe is not configured", code="STRIPE_NOT_CONFIGURED")

    # Payment intents

    @BaseService.measure_operation("stripe_create_payment_intent")
    def create_payment_intent(self, order: Order) -> Any:
        """
        Create the payment intent for an order.

        The idempotency key is derived from the order id so a retried checkout
        never creates a second charge.
        """
        self._require_configured()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(order.total_amount),
                currency=settings.stripe_currency,
                metadata={"order_id": order.id},
                receipt_email=order.customer_email,
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"order:{order.id}",
            )
        except _TRANSIENT_ERRORS as exc:
            self.logger.error(
                "Stripe unavailable creating payment intent",
                extra={"order_id": order.id, "error": str(exc)},
            )
            raise PaymentGatewayUnavailableException(
                "Payment gateway unavailable", details={"order_id": order.id}
            ) from exc
        except stripe.StripeError as exc:
            self.logger.error(
                "Stripe rejected payment intent", extra={"order_id": order.id, "error": str(exc)}
            )
            raise ServiceException(
                f"Failed to create payment intent: {exc}", code="PAYMENT_INTENT_FAILED"
            ) from exc

        self.logger.info(
            "Created payment intent", extra={"order_id": order.id, "payment_intent_id": intent.id}
        )
        return intent

    @BaseService.measure_operation("stripe_retrieve_payment_intent")
    def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        """
        Fetch a payment intent, retrying transient failures.

        Raises:
            NotFoundException: If Stripe does not know the intent
            PaymentGatewayUnavailableException: If every attempt failed transiently
        """
        self._require_configured()
        attempts = settings.stripe_retrieve_max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                return stripe.PaymentIntent.retrieve(payment_intent_id)
            except stripe.InvalidRequestError as exc:
                raise NotFoundException(
                    "Payment intent not found",
                    code="PAYMENT_INTENT_NOT_FOUND",
                    details={"payment_intent_id": payment_intent_id},
                ) from exc
            except _TRANSIENT_ERRORS as exc:
                last_error = exc
                self.logger.warning(
                    "Transient Stripe error retrieving payment intent",
                    extra={
                        "payment_intent_id": payment_intent_id,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
                if attempt < attempts:
                    time.sleep(self._backoff(attempt))

        self.logger.error(
            "Stripe unavailable after retries",
            extra={"payment_intent_id": payment_intent_id, "attempts": attempts},
        )
        raise PaymentGatewayUnavailableException(
            "Payment gateway unavailable, try again shortly",
            details={"payment_intent_id": payment_intent_id, "attempts": attempts},
        ) from last_error

    @staticmethod
    def _backoff(attempt: int) -> float:
        base = settings.stripe_retrieve_backoff_s * (2 ** (attempt - 1))
        return base + random.uniform(0, base / 2)

    # Webhooks

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook delivery and return the event as a plain dict.

        Raises:
            ValidationException: If the signature header is missing or invalid
            ServiceException: If no webhook secret is configured
        """
        secret = settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise ServiceException("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise ValidationException(
                "Missing stripe-signature header", code="WEBHOOK_SIGNATURE_MISSING"
            )
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as exc:
            self.logger.warning("Invalid webhook signature")
            raise ValidationException(
                "Invalid webhook signature", code="WEBHOOK_SIGNATURE_INVALID"
            ) from exc
        except ValueError as exc:
            raise ValidationException(
                "Malformed webhook payload", code="WEBHOOK_PAYLOAD_INVALID"
            ) from exc
        return json.loads(payload)

    @BaseService.measure_operation("stripe_handle_webhook")
    def handle_webhook_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process an already-verified webhook event.

        Every delivery is recorded in the webhook ledger first. A redelivery
        of an event that was already processed is acknowledged and skipped.
        """
        from .order_service import OrderService
        from .reconciliation_service import ReconciliationService

        event_type = event.get("type", "")
        event_id = event.get("id") or ""
        intent = (event.get("data") or {}).get("object") or {}
        intent_id = intent.get("id")

        ledger = WebhookLedgerService(self.db)
        with self.transaction():
            entry = ledger.log_received(
                source=WEBHOOK_SOURCE, event_type=event_type, event_id=event_id, payload=event
            )
        if ledger.is_processed(entry):
            self.logger.info(
                "Duplicate webhook delivery acknowledged",
                extra={"event_id": event_id, "event_type": event_type},
            )
            prometheus_metrics.record_webhook_event(event_type, "duplicate")
            return {"status": "duplicate", "event_type": event_type, "event_id": event_id}

        order_service = OrderService(self.db, stripe_service=self)
        order_id: Optional[str] = None
        outcome = "ignored"
        message: Optional[str] = None
        try:
            if event_type == "payment_intent.succeeded" and intent_id:
                order = order_service.mark_paid_by_payment_intent(intent_id)
                order_id = order.id
                try:
                    ReconciliationService(self.db).reconcile(order.id)
                except ReconciliationInProgressException:
                    # The holder of the lock reconciles the same order
                    message = "reconciliation already running"
                outcome = "processed"
            elif event_type in (
                "payment_intent.payment_failed",
                "payment_intent.canceled",
            ) and intent_id:
                error = (intent.get("last_payment_error") or {}).get("message")
                reason = error or intent.get("cancellation_reason") or event_type
                try:
                    order = order_service.mark_failed_by_payment_intent(intent_id, reason)
                    order_id = order.id
                except InvalidPaymentTransitionException:
                    message = "order already paid"
                outcome = "processed"
            else:
                self.logger.info("Unhandled webhook event type", extra={"event_type": event_type})
        except (NotFoundException, ServiceException) as exc:
            self.db.rollback()
            with self.transaction():
                ledger.mark_failed(entry, error=str(exc), related_order_id=order_id)
            prometheus_metrics.record_webhook_event(event_type, "failed")
            raise

        with self.transaction():
            ledger.mark_processed(entry, related_order_id=order_id)
        prometheus_metrics.record_webhook_event(event_type, outcome)
        return {
            "status": outcome,
            "event_type": event_type,
            "event_id": event_id,
            "message": message,
        }
