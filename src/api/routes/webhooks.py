"""Webhook API routes for external service integrations."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.services.checkout_service import CheckoutService
from src.services.payment_reconciliation_service import PaymentReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PAYMENT_SESSION_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives and processes Stripe webhook events. Requires valid signature.",
)
async def stripe_webhook(request: Request) -> dict[str, str]:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.completed / async_payment_succeeded: persist the
      receipt and reconcile the payment
    - payment_intent.succeeded: find the session and reconcile
    - checkout.session.expired: drop the stale checkout link

    Processing failures are logged and acknowledged; Stripe retries would
    only repeat the same work and the redirect path reconciles as well.

    Raises:
        HTTPException: 400 if the signature is missing or invalid.
    """
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    checkout = CheckoutService()
    try:
        event = checkout.verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.error("Invalid webhook signature: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e

    event_type = event.get("type", "")
    logger.info("Processing Stripe webhook event: %s (%s)", event_type, event.get("id"))

    try:
        if event_type in PAYMENT_SESSION_EVENTS:
            result = await PaymentReconciliationService().handle_checkout_completed(event)
            if result:
                logger.info("Processed %s: %s", event_type, result.outcome.value)

        elif event_type == "payment_intent.succeeded":
            result = await PaymentReconciliationService().handle_payment_intent_succeeded(event)
            if result:
                logger.info("Processed %s: %s", event_type, result.outcome.value)

        elif event_type == "checkout.session.expired":
            await checkout.handle_checkout_expired(event)

        else:
            logger.debug("Unhandled webhook event type: %s", event_type)

    except Exception as e:
        logger.error("Webhook %s (%s) failed: %s", event_type, event.get("id"), str(e))

    return {"status": "received"}
