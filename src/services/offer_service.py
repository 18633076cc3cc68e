"""Offer state machine.

Allowed transitions::

    pending  -> accepted   professional
    pending  -> rejected   professional, reason required
    pending  -> canceled   client
    pending  -> expired    system
    accepted -> paid       payment reconciliation only
    accepted -> canceled   either participant, before payment

Every transition is a compare-and-set on the current status, so a caller
that lost a race gets INVALID_TRANSITION with the status it lost to. The
offer row is written first and the chat message last.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.supabase import get_supabase_client
from src.models.message import MessageType
from src.models.offer import OfferStatus
from src.schemas.message import OfferPayload, dump_payload
from src.schemas.offer import OfferCreate
from src.services.agreement_service import AgreementService
from src.services.checkout_service import CheckoutService
from src.services.conversation_service import ConversationService, stable_message_id
from src.services.email_service import EmailService
from src.services.fees import compute_client_totals_cents
from src.services.view_cache import conversation_tag, get_view_cache

logger = logging.getLogger(__name__)


class OfferActor(str, Enum):
    """Who may trigger a transition."""

    CLIENT = "client"
    PROFESSIONAL = "professional"
    EITHER = "either"
    SYSTEM = "system"


OFFER_TRANSITIONS: dict[OfferStatus, dict[OfferStatus, OfferActor]] = {
    OfferStatus.PENDING: {
        OfferStatus.ACCEPTED: OfferActor.PROFESSIONAL,
        OfferStatus.REJECTED: OfferActor.PROFESSIONAL,
        OfferStatus.CANCELED: OfferActor.CLIENT,
        OfferStatus.EXPIRED: OfferActor.SYSTEM,
    },
    OfferStatus.ACCEPTED: {
        OfferStatus.PAID: OfferActor.SYSTEM,
        OfferStatus.CANCELED: OfferActor.EITHER,
    },
}

STATUS_MESSAGES: dict[OfferStatus, str] = {
    OfferStatus.ACCEPTED: "Oferta aceptada.",
    OfferStatus.REJECTED: "Oferta rechazada.",
    OfferStatus.CANCELED: "Oferta cancelada.",
    OfferStatus.EXPIRED: "Oferta expirada.",
}


def allowed_actor(current: OfferStatus, requested: OfferStatus) -> OfferActor:
    """Actor allowed to move an offer from ``current`` to ``requested``.

    Raises:
        InvalidTransitionError: If the transition does not exist.
    """
    actor = OFFER_TRANSITIONS.get(current, {}).get(requested)
    if actor is None:
        raise InvalidTransitionError("offer", current.value, requested.value)
    return actor


def split_service_date(raw: str | None) -> tuple[str | None, str | None]:
    """Split an ISO date/datetime into (YYYY-MM-DD, HH:MM).

    Unparseable input yields (None, None); a bare date yields no time.
    """
    if not raw:
        return None, None
    text = str(raw).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None, None
    if len(text) <= 10:
        return parsed.date().isoformat(), None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat(), parsed.strftime("%H:%M")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OfferService:
    """Service implementing offer creation and transitions."""

    def __init__(self) -> None:
        """Initialize offer service with its collaborators."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.conversations = ConversationService()
        self.agreements = AgreementService()
        self.checkout = CheckoutService()
        self.email = EmailService()
        self.cache = get_view_cache()

    async def get_offer(self, offer_id: UUID | str) -> dict[str, Any] | None:
        """Get an offer by ID."""
        response = (
            self.client.table("offers")
            .select("*")
            .eq("id", str(offer_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def require_offer(self, offer_id: UUID | str) -> dict[str, Any]:
        offer = await self.get_offer(offer_id)
        if not offer:
            raise NotFoundError("Offer not found")
        return offer

    async def get_offer_for_participant(self, offer_id: UUID | str, user_id: UUID | str) -> dict[str, Any]:
        """Load an offer visible to ``user_id``.

        Raises:
            NotFoundError: If the offer does not exist.
            PermissionDeniedError: If the user is neither client nor professional.
        """
        offer = await self.require_offer(offer_id)
        if str(user_id) not in (str(offer["client_id"]), str(offer["professional_id"])):
            raise PermissionDeniedError("You are not a participant in this offer")
        return offer

    async def create_offer(
        self,
        conversation_id: UUID | str,
        client_id: UUID | str,
        data: OfferCreate,
    ) -> dict[str, Any]:
        """Create a pending offer and post it to the conversation.

        The amount is the service price; fees are computed at checkout.

        Raises:
            ValidationError: If the currency is not supported.
            NotFoundError: If the conversation does not exist.
            PermissionDeniedError: If the caller is not the conversation's client.
        """
        if data.currency not in self.settings.supported_currencies_list:
            raise ValidationError(
                f"Unsupported currency '{data.currency}'",
                details=[{"loc": ["body", "currency"], "msg": "unsupported currency", "type": "value_error"}],
            )

        conversation = await self.conversations.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError("Conversation not found")
        if str(conversation["customer_id"]) != str(client_id):
            raise PermissionDeniedError("Only the client of the conversation can make offers")

        offer_data = {
            "conversation_id": str(conversation_id),
            "client_id": str(client_id),
            "professional_id": str(conversation["pro_id"]),
            "title": data.title,
            "description": data.description,
            "amount": float(data.amount),
            "currency": data.currency,
            "service_date": data.service_date,
            "status": OfferStatus.PENDING.value,
        }
        response = self.client.table("offers").insert(offer_data).execute()
        offer = response.data[0]
        logger.info("Offer %s created in conversation %s", offer["id"], conversation_id)

        payload = OfferPayload(
            offer_id=str(offer["id"]),
            title=data.title,
            description=data.description,
            amount=data.amount,
            currency=data.currency,
            service_date=data.service_date,
            status=OfferStatus.PENDING.value,
        )
        await self.conversations.append_message(
            conversation_id,
            client_id,
            MessageType.OFFER,
            f"Oferta: {data.title}",
            dump_payload(payload),
        )
        return offer

    def _check_actor(self, offer: dict[str, Any], actor_id: str | None, actor: OfferActor) -> None:
        if actor == OfferActor.SYSTEM:
            if actor_id is not None:
                raise PermissionDeniedError("This transition is performed by the system")
            return
        is_client = actor_id == str(offer["client_id"])
        is_pro = actor_id == str(offer["professional_id"])
        if actor == OfferActor.CLIENT and is_client:
            return
        if actor == OfferActor.PROFESSIONAL and is_pro:
            return
        if actor == OfferActor.EITHER and (is_client or is_pro):
            return
        raise PermissionDeniedError(f"Only the {actor.value} can do this")

    async def _transition(
        self,
        offer_id: UUID | str,
        requested: OfferStatus,
        actor_id: UUID | str | None,
        patch: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any], OfferStatus]:
        """Validate and apply a transition with compare-and-set.

        Returns:
            tuple: (updated offer, previous status).
        """
        offer = await self.require_offer(offer_id)
        actor = str(actor_id) if actor_id is not None else None
        if actor is not None and actor not in (str(offer["client_id"]), str(offer["professional_id"])):
            raise PermissionDeniedError("You are not a participant in this offer")

        current = OfferStatus(offer["status"])
        allowed = allowed_actor(current, requested)
        self._check_actor(offer, actor, allowed)

        response = (
            self.client.table("offers")
            .update({**(patch or {}), "status": requested.value, "updated_at": _now_iso()})
            .eq("id", str(offer["id"]))
            .eq("status", current.value)
            .execute()
        )
        if not response.data:
            latest = await self.require_offer(offer_id)
            raise InvalidTransitionError("offer", str(latest["status"]), requested.value)

        logger.info("Offer %s moved %s -> %s", offer["id"], current.value, requested.value)
        return response.data[0], current

    async def _post_status(
        self,
        offer: dict[str, Any],
        sender_id: str,
        status: OfferStatus,
        reason: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"offer_id": str(offer["id"]), "status": status.value}
        body = STATUS_MESSAGES[status]
        if reason:
            payload["reason"] = reason
            body = f"{body} Motivo: {reason}"
        message = await self.conversations.append_message(
            offer["conversation_id"], sender_id, MessageType.SYSTEM, body, payload
        )
        self.cache.invalidate(conversation_tag(str(offer["conversation_id"])))
        return message

    async def _request_id_for(self, offer: dict[str, Any]) -> str | None:
        conversation = await self.conversations.get_conversation(offer["conversation_id"])
        if conversation and conversation.get("request_id"):
            return str(conversation["request_id"])
        return None

    async def accept_offer(self, offer_id: UUID | str, actor_id: UUID | str) -> dict[str, Any]:
        """Professional accepts a pending offer.

        Does not create a payment session; the client asks for one when
        ready to pay.
        """
        offer, _ = await self._transition(offer_id, OfferStatus.ACCEPTED, actor_id)

        request_id = await self._request_id_for(offer)
        if request_id:
            try:
                await self.agreements.mirror_offer_accepted(request_id, str(offer["professional_id"]), offer["amount"])
            except Exception as e:
                logger.warning("Agreement mirror failed for accepted offer %s: %s", offer["id"], str(e))

        await self._post_status(offer, str(actor_id), OfferStatus.ACCEPTED)
        await self._notify_accepted(offer)
        return offer

    async def reject_offer(self, offer_id: UUID | str, actor_id: UUID | str, reason: str) -> dict[str, Any]:
        """Professional rejects a pending offer with a reason."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject an offer")
        reason = reason.strip()

        offer, _ = await self._transition(offer_id, OfferStatus.REJECTED, actor_id, {"reason": reason})
        await self._close_agreement(offer)
        await self._post_status(offer, str(actor_id), OfferStatus.REJECTED, reason)
        return offer

    async def cancel_offer(self, offer_id: UUID | str, actor_id: UUID | str, reason: str | None = None) -> dict[str, Any]:
        """Cancel a pending (client) or accepted, unpaid (either party) offer."""
        patch: dict[str, Any] = {"checkout_url": None, "checkout_session_id": None}
        if reason:
            patch["reason"] = reason.strip()

        before = await self.require_offer(offer_id)
        offer, previous = await self._transition(offer_id, OfferStatus.CANCELED, actor_id, patch)

        if previous == OfferStatus.ACCEPTED and before.get("checkout_session_id"):
            await self.checkout.expire_session(before["checkout_session_id"])

        await self._close_agreement(offer)
        await self._post_status(offer, str(actor_id), OfferStatus.CANCELED, patch.get("reason"))
        return offer

    async def expire_offer(self, offer_id: UUID | str) -> dict[str, Any]:
        """System transition for pending offers that ran out of time."""
        offer, _ = await self._transition(offer_id, OfferStatus.EXPIRED, None)
        await self._post_status(offer, str(offer["client_id"]), OfferStatus.EXPIRED)
        return offer

    async def mark_paid(self, offer: dict[str, Any], payment_intent_id: str | None) -> bool:
        """Apply accepted -> paid from payment reconciliation.

        Returns:
            bool: True if this call moved the offer to paid; False if it was
            already paid.

        Raises:
            InvalidTransitionError: If the offer is in any other status.
        """
        current = OfferStatus(offer["status"])
        if current == OfferStatus.PAID:
            if payment_intent_id and not offer.get("payment_intent_id"):
                self.client.table("offers").update({"payment_intent_id": payment_intent_id}).eq(
                    "id", str(offer["id"])
                ).execute()
            return False
        allowed_actor(current, OfferStatus.PAID)

        response = (
            self.client.table("offers")
            .update(
                {
                    "status": OfferStatus.PAID.value,
                    "payment_intent_id": payment_intent_id or offer.get("payment_intent_id"),
                    "checkout_url": None,
                    "updated_at": _now_iso(),
                }
            )
            .eq("id", str(offer["id"]))
            .eq("status", current.value)
            .execute()
        )
        if response.data:
            logger.info("Offer %s marked paid", offer["id"])
            return True

        latest = await self.require_offer(offer["id"])
        if latest["status"] == OfferStatus.PAID.value:
            return False
        raise InvalidTransitionError("offer", str(latest["status"]), OfferStatus.PAID.value)

    async def create_checkout(self, offer_id: UUID | str, actor_id: UUID | str) -> dict[str, Any]:
        """Create (or reuse) the hosted checkout for an accepted offer.

        Only the client pays. An offer that already has an open session gets
        the same URL back.

        Returns:
            dict: checkout_url, session_id, fee breakdown, currency and ``reused``.
        """
        offer = await self.get_offer_for_participant(offer_id, actor_id)
        if str(actor_id) != str(offer["client_id"]):
            raise PermissionDeniedError("Only the client can pay this offer")

        current = OfferStatus(offer["status"])
        if current != OfferStatus.ACCEPTED:
            raise InvalidTransitionError("offer", current.value, OfferStatus.PAID.value)

        fees = compute_client_totals_cents(offer["amount"])
        currency = offer.get("currency") or self.settings.default_currency
        result: dict[str, Any] = {
            "base_cents": fees.base_cents,
            "commission_cents": fees.commission_cents,
            "iva_cents": fees.iva_cents,
            "total_cents": fees.total_cents,
            "currency": currency,
        }

        reusable = await self.checkout.reusable_checkout_url(offer)
        if reusable:
            return {**result, "checkout_url": reusable, "session_id": offer.get("checkout_session_id"), "reused": True}

        request_id = await self._request_id_for(offer)
        scheduled_date, scheduled_time = split_service_date(offer.get("service_date"))
        session = await self.checkout.create_offer_checkout(
            offer,
            fees,
            request_id=request_id,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
        )

        self.client.table("offers").update(
            {"checkout_url": session["checkout_url"], "checkout_session_id": session["session_id"], "updated_at": _now_iso()}
        ).eq("id", str(offer["id"])).eq("status", OfferStatus.ACCEPTED.value).execute()

        await self.conversations.append_message_once(
            stable_message_id(f"checkout:{offer['id']}:{session['session_id']}"),
            offer["conversation_id"],
            actor_id,
            MessageType.SYSTEM,
            "Pago pendiente.",
            {"offer_id": str(offer["id"]), "status": OfferStatus.ACCEPTED.value, "checkout_url": session["checkout_url"]},
        )
        return {**result, "checkout_url": session["checkout_url"], "session_id": session["session_id"], "reused": False}

    async def _close_agreement(self, offer: dict[str, Any]) -> None:
        request_id = await self._request_id_for(offer)
        if not request_id:
            return
        try:
            await self.agreements.mirror_offer_closed(request_id, str(offer["professional_id"]))
        except Exception as e:
            logger.warning("Agreement mirror failed for closed offer %s: %s", offer["id"], str(e))

    async def _notify_accepted(self, offer: dict[str, Any]) -> None:
        try:
            response = (
                self.client.table("profiles")
                .select("email, full_name")
                .eq("id", str(offer["client_id"]))
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.warning("Could not load client profile for offer %s: %s", offer["id"], str(e))
            return
        profile = response.data if response and response.data else None
        if not profile or not profile.get("email"):
            return
        await self.email.send_offer_accepted_email(
            profile["email"],
            profile.get("full_name"),
            offer.get("title"),
            str(offer["conversation_id"]),
        )
