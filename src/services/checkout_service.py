"""Stripe checkout for offer payments.

This is the payment-provider gateway: it creates hosted Checkout Sessions
for accepted offers, looks sessions up again when a webhook or browser
redirect reports a payment, and verifies webhook signatures. Lookups
return None instead of raising so that callers can treat an unresolvable
session as an unverified payment.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import stripe

from src.core.config import get_settings
from src.core.stripe import as_dict, get_stripe
from src.core.supabase import get_supabase_client
from src.services.fees import FeeBreakdown

logger = logging.getLogger(__name__)

OFFER_PAYMENT_TYPE = "offer_payment"


def is_session_paid(session: dict[str, Any]) -> bool:
    """Whether a Checkout Session represents a settled payment."""
    return session.get("payment_status") in ("paid", "no_payment_required")


def payment_intent_id_of(session: dict[str, Any]) -> str | None:
    """Payment intent id of a session, whether expanded or not."""
    intent = session.get("payment_intent")
    if isinstance(intent, dict):
        return intent.get("id")
    if intent is None:
        return None
    return getattr(intent, "id", None) or str(intent)


class CheckoutService:
    """Service for Stripe checkout sessions tied to offers."""

    def __init__(self) -> None:
        """Initialize checkout service with clients."""
        self.client = get_supabase_client()
        self.stripe = get_stripe()
        self.settings = get_settings()

    def success_url(self, conversation_id: str, request_id: str | None) -> str:
        """Browser redirect target after payment.

        ``{CHECKOUT_SESSION_ID}`` is substituted by Stripe.
        """
        params = {"cid": conversation_id}
        if request_id:
            params["rid"] = request_id
        base = self.settings.api_base_url.rstrip("/")
        return f"{base}/api/v1/payment/success?session_id={{CHECKOUT_SESSION_ID}}&{urlencode(params)}"

    async def create_offer_checkout(
        self,
        offer: dict[str, Any],
        fees: FeeBreakdown,
        request_id: str | None = None,
        scheduled_date: str | None = None,
        scheduled_time: str | None = None,
        customer_email: str | None = None,
    ) -> dict[str, Any]:
        """Create a Stripe Checkout Session for an accepted offer.

        Args:
            offer: Offer row.
            fees: Client charge breakdown; ``total_cents`` is what Stripe collects.
            request_id: Request the offer's conversation is about.
            scheduled_date: Service date to carry through to reconciliation.
            scheduled_time: Service time to carry through to reconciliation.
            customer_email: Optional pre-fill email.

        Returns:
            dict: Contains checkout_url and session_id.

        Raises:
            ValueError: If Stripe is not configured.
            stripe.StripeError: If the Stripe API call fails.
        """
        if not self.settings.stripe_secret_key:
            raise ValueError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        offer_id = str(offer["id"])
        conversation_id = str(offer["conversation_id"])
        currency = str(offer.get("currency") or self.settings.default_currency).lower()

        metadata: dict[str, str] = {
            "type": OFFER_PAYMENT_TYPE,
            "offer_id": offer_id,
            "conversation_id": conversation_id,
            "request_id": request_id or "",
            "proId": str(offer.get("professional_id") or ""),
            "client_id": str(offer.get("client_id") or ""),
            "scheduled_date": scheduled_date or "",
            "scheduled_time": scheduled_time or "",
            **fees.as_metadata(),
        }

        checkout_params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": fees.total_cents,
                        "product_data": {"name": offer.get("title") or "Servicio"},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": self.success_url(conversation_id, request_id),
            "cancel_url": f"{self.settings.frontend_url.rstrip('/')}/mensajes/{conversation_id}",
            "client_reference_id": offer_id,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            checkout_params["customer_email"] = customer_email

        try:
            session = self.stripe.checkout.Session.create(**checkout_params)
        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout for offer %s: %s", offer_id, str(e))
            raise

        logger.info("Created checkout session %s for offer %s", session.id, offer_id)
        return {"checkout_url": session.url, "session_id": session.id}

    async def retrieve_session(self, session_id: str | None) -> dict[str, Any] | None:
        """Look up a Checkout Session.

        Returns:
            dict | None: The session, or None when the id is empty, unknown,
            or Stripe is unreachable.
        """
        if not session_id:
            return None
        try:
            session = self.stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.warning("Could not retrieve checkout session %s: %s", session_id, str(e))
            return None
        return as_dict(session) or None

    async def find_session_for_payment_intent(self, payment_intent_id: str | None) -> dict[str, Any] | None:
        """Find the Checkout Session that created a payment intent."""
        if not payment_intent_id:
            return None
        try:
            sessions = self.stripe.checkout.Session.list(payment_intent=payment_intent_id, limit=1)
        except stripe.StripeError as e:
            logger.warning("Could not list sessions for payment intent %s: %s", payment_intent_id, str(e))
            return None
        data = as_dict(sessions).get("data") or []
        return as_dict(data[0]) if data else None

    async def reusable_checkout_url(self, offer: dict[str, Any]) -> str | None:
        """Checkout URL of the offer's last session if it can still be paid."""
        checkout_url = offer.get("checkout_url")
        session_id = offer.get("checkout_session_id")
        if not checkout_url or not session_id:
            return None
        session = await self.retrieve_session(session_id)
        if not session or session.get("status") != "open":
            return None
        return session.get("url") or checkout_url

    async def expire_session(self, session_id: str | None) -> bool:
        """Expire an open session so a canceled offer can no longer be paid.

        Returns:
            bool: True if Stripe accepted the expiry.
        """
        if not session_id:
            return False
        try:
            self.stripe.checkout.Session.expire(session_id)
        except stripe.StripeError as e:
            logger.warning("Could not expire checkout session %s: %s", session_id, str(e))
            return False
        logger.info("Expired checkout session %s", session_id)
        return True

    async def handle_checkout_expired(self, event: dict[str, Any]) -> None:
        """Process checkout.session.expired: forget the dead checkout URL.

        Only an offer still waiting for payment is touched.
        """
        session = as_dict(event["data"]["object"])
        offer_id = (session.get("metadata") or {}).get("offer_id")

        if not offer_id:
            logger.warning("Webhook missing offer_id in metadata: %s", session.get("id"))
            return

        self.client.table("offers").update({"checkout_url": None, "checkout_session_id": None}).eq("id", offer_id).eq(
            "status", "accepted"
        ).execute()

        logger.info("Cleared checkout URL for offer %s (session expired)", offer_id)

    def verify_webhook_signature(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify Stripe webhook signature and return event.

        Args:
            payload: Raw webhook payload bytes.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event.

        Raises:
            ValueError: If signature is invalid or Stripe not configured.
        """
        if not self.settings.stripe_webhook_secret:
            raise ValueError("Stripe webhook secret is not configured. Please set STRIPE_WEBHOOK_SECRET environment variable.")

        try:
            event = self.stripe.Webhook.construct_event(payload, sig_header, self.settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise ValueError("Invalid webhook signature") from e
        return as_dict(event)
