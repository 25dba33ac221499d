"""
Stripe Webhook Endpoints

Receives payment intent events, verifies their signature, and hands them to
``StripeService.handle_webhook_event``. Every delivery is recorded in the
webhook ledger; redeliveries of processed events are acknowledged without
being applied twice.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..api.dependencies import get_stripe_service, handle_domain_exception
from ..core.exceptions import DomainException
from ..schemas.orders import WebhookResponse
from ..services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["stripe-webhooks"])


@router.post("/payment-events", response_model=WebhookResponse)
async def handle_payment_events(
    request: Request, stripe_service: StripeService = Depends(get_stripe_service)
) -> WebhookResponse:
    """
    Handle Stripe payment intent events.

    Processes:
    - payment_intent.succeeded
    - payment_intent.payment_failed
    - payment_intent.canceled
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = stripe_service.construct_webhook_event(payload, signature)
        result = stripe_service.handle_webhook_event(event)
    except DomainException as exc:
        logger.warning(
            "Stripe webhook rejected", extra={"code": exc.code, "error": exc.message}
        )
        handle_domain_exception(exc)
    return WebhookResponse(
        status=result["status"],
        event_type=result["event_type"],
        event_id=result.get("event_id"),
        message=result.get("message"),
    )
