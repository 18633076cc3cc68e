"""Payment reconciliation.

Maps a paid Stripe Checkout Session onto offer, agreement, request,
calendar, receipt and chat state. It runs from the webhook and from the
browser redirect, possibly at the same time and possibly more than once,
so every write is either a compare-and-set, an upsert keyed by a natural
identifier, or guarded by a read-before-write probe.

Steps, in priority order:

1. Resolve the session, offer, conversation and request. An unresolvable
   or unpaid session is reported as UNVERIFIED_PAYMENT and nothing is
   written.
   A paid session that names no offer is mirrored onto the request found
   through the conversation or request hint (steps 3-6 and 10 only).
2. Offer ``accepted -> paid``.
3. Agreement gate: an agreement already paid or beyond skips steps 4-5.
4. Agreement -> ``paid``; other unpaid agreements for the request are
   cancelled.
5. Request -> ``in_process`` with professional and schedule.
6. Calendar entry upsert (one per request).
7. Receipt lookup with a bounded retry, falling back to a placeholder id.
8. Chat messages (paid, address, receipt), each appended at most once.
9. Receipt PDF attachment.
10. Professional notification (at most once) and cache invalidation.

Failures in steps 7-10 are recorded as degraded steps and never undo or
block steps 2-6.
"""

import logging
from datetime import date
from typing import Any

from src.api.middleware.error_handler import InvalidTransitionError, NotFoundError
from src.core.config import get_settings
from src.core.storage import get_object_storage
from src.core.stripe import as_dict
from src.core.supabase import get_supabase_client
from src.models.agreement import NEGOTIABLE, AgreementStatus
from src.models.message import MessageType
from src.models.request import RequestStatus
from src.schemas.payment import AgreementGate, ReconciliationOutcome, ReconciliationResult
from src.services.agreement_service import AgreementService, is_paid_or_beyond
from src.services.calendar_service import CalendarService
from src.services.checkout_service import CheckoutService, is_session_paid, payment_intent_id_of
from src.services.conversation_service import ConversationService, stable_message_id
from src.services.email_service import EmailService
from src.services.fees import FeeBreakdown
from src.services.offer_service import OfferService, split_service_date
from src.services.receipt_renderer import ReceiptRenderer
from src.services.receipt_service import ReceiptService, is_placeholder_id, placeholder_receipt_id
from src.services.request_service import RequestService, assigned_professional
from src.services.view_cache import (
    conversation_tag,
    get_view_cache,
    pro_calendar_tag,
    pro_dashboard_tag,
    request_tag,
)

logger = logging.getLogger(__name__)

PAID_MESSAGE = "Pago realizado. Servicio agendado."
RECEIPT_MESSAGE = "Comprobante de pago"
DEFAULT_SERVICE_TIME = "09:00"
PAID_NOTIFICATION_TYPE = "contract_offer_paid"


def _first(*values: Any) -> str | None:
    for value in values:
        if value:
            return str(value)
    return None


def resolve_schedule(
    metadata: dict[str, Any],
    offer: dict[str, Any],
    request: dict[str, Any] | None,
    today: date | None = None,
) -> tuple[str, str]:
    """Scheduled (date, time) for a paid offer.

    Date: session metadata, the offer's service date, the request's
    scheduled date, its ``required_at`` date, then today. Time: metadata,
    the offer's service time, the request's scheduled time, then 09:00.
    """
    request = request or {}
    offer_date, offer_time = split_service_date(offer.get("service_date"))
    required_at = str(request.get("required_at") or "")[:10] or None
    scheduled_date = _first(
        metadata.get("scheduled_date"),
        offer_date,
        request.get("scheduled_date"),
        required_at,
    ) or (today or date.today()).isoformat()
    scheduled_time = _first(
        metadata.get("scheduled_time"),
        offer_time,
        request.get("scheduled_time"),
    ) or DEFAULT_SERVICE_TIME
    return scheduled_date, scheduled_time[:5]


def resolve_professional(
    metadata: dict[str, Any],
    offer: dict[str, Any],
    conversation: dict[str, Any],
) -> str | None:
    """Professional for a payment: session metadata, then offer, then conversation."""
    candidates = [
        _first(metadata.get("proId"), metadata.get("professional_id")),
        _first(offer.get("professional_id")),
        _first(conversation.get("pro_id")),
    ]
    chosen = next((c for c in candidates if c), None)
    distinct = {c for c in candidates if c}
    if len(distinct) > 1:
        logger.warning(
            "Professional mismatch for offer %s: metadata=%s offer=%s conversation=%s; using %s",
            offer.get("id"),
            *candidates,
            chosen,
        )
    return chosen


class PaymentReconciliationService:
    """Service applying payment events to marketplace state."""

    def __init__(self) -> None:
        """Initialize reconciliation service with its collaborators."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.checkout = CheckoutService()
        self.offers = OfferService()
        self.agreements = AgreementService()
        self.requests = RequestService()
        self.calendar = CalendarService()
        self.conversations = ConversationService()
        self.receipts = ReceiptService()
        self.renderer = ReceiptRenderer()
        self.email = EmailService()
        self.cache = get_view_cache()

    async def reconcile_payment(
        self,
        checkout_session_id: str,
        offer_id_hint: str | None = None,
        session: dict[str, Any] | None = None,
        conversation_id_hint: str | None = None,
        request_id_hint: str | None = None,
    ) -> ReconciliationResult:
        """Apply a paid checkout session. Safe to call any number of times.

        Args:
            checkout_session_id: Stripe Checkout Session id.
            offer_id_hint: Offer id from the caller, used when the session
                metadata carries none.
            session: Session object already in hand (webhook payload), to
                skip the provider lookup.
            conversation_id_hint: Conversation id from the redirect, used
                when the session names no offer.
            request_id_hint: Request id from the redirect, used when the
                session names no offer.

        Returns:
            ReconciliationResult describing what happened.

        Raises:
            NotFoundError: If the session names an offer, conversation or
                request that does not exist.
        """
        result = ReconciliationResult(
            outcome=ReconciliationOutcome.UNVERIFIED_PAYMENT,
            checkout_session_id=checkout_session_id,
        )

        if session is None or not session.get("payment_status"):
            session = await self.checkout.retrieve_session(checkout_session_id)
        if not session:
            logger.warning("Unverified payment: checkout session %s could not be resolved", checkout_session_id)
            return result
        if not is_session_paid(session):
            logger.warning(
                "Unverified payment: session %s has payment_status=%s",
                checkout_session_id,
                session.get("payment_status"),
            )
            return result

        metadata = session.get("metadata") or {}
        offer_id = _first(metadata.get("offer_id"), session.get("client_reference_id"), offer_id_hint)
        if offer_id_hint and offer_id != offer_id_hint:
            logger.warning("Offer hint %s disagrees with session %s offer %s", offer_id_hint, checkout_session_id, offer_id)
        if not offer_id:
            return await self._reconcile_without_offer(result, session, conversation_id_hint, request_id_hint)

        # 1. Identity
        offer = await self.offers.get_offer(offer_id)
        if not offer:
            raise NotFoundError(f"Offer {offer_id} not found")
        conversation_id = _first(offer.get("conversation_id"), metadata.get("conversation_id"))
        conversation = await self.conversations.get_conversation(conversation_id) if conversation_id else None
        if not conversation:
            raise NotFoundError("Conversation not found")

        request_id = _first(metadata.get("request_id"), conversation.get("request_id"))
        request = await self.requests.get_request(request_id) if request_id else None
        if request_id and not request:
            raise NotFoundError(f"Request {request_id} not found")

        payment_intent_id = payment_intent_id_of(session)
        pro_id = resolve_professional(metadata, offer, conversation)
        result.payment_intent_id = payment_intent_id
        result.offer_id = str(offer["id"])
        result.conversation_id = str(conversation["id"])
        result.request_id = request_id
        result.professional_id = pro_id

        # 2. Offer
        try:
            await self.offers.mark_paid(offer, payment_intent_id)
        except InvalidTransitionError as e:
            logger.warning("Offer %s not moved to paid: %s", offer["id"], e.message)
            result.degrade("offer_transition", e.message)

        # 3-6. Agreement, request, calendar
        if request and pro_id:
            await self._settle_request(result, request, pro_id, offer, metadata)
        else:
            result.agreement_gate = AgreementGate.NO_AGREEMENT

        # 7. Receipt id
        receipt = await self._lookup_receipt(result, checkout_session_id)
        if receipt:
            result.receipt_id = str(receipt["id"])
        else:
            result.receipt_id = placeholder_receipt_id(checkout_session_id, payment_intent_id)
            result.receipt_is_placeholder = True

        # 8. Messages
        try:
            result.paid_message_created = await self._post_paid_message(offer, conversation)
        except Exception as e:
            logger.warning("Paid message failed for offer %s: %s", offer["id"], str(e))
            result.degrade("paid_message", e)

        if request:
            try:
                await self._post_address_message(offer, conversation, request)
            except Exception as e:
                logger.warning("Address message failed for offer %s: %s", offer["id"], str(e))
                result.degrade("address_message", e)

        receipt_message = None
        try:
            receipt_message = await self._post_receipt_message(offer, conversation, result.receipt_id)
        except Exception as e:
            logger.warning("Receipt message failed for offer %s: %s", offer["id"], str(e))
            result.degrade("receipt_message", e)

        # 9. Attachment
        if receipt_message:
            try:
                await self._attach_receipt(receipt_message, receipt, session, offer)
            except Exception as e:
                logger.warning("Receipt attachment failed for offer %s: %s", offer["id"], str(e))
                result.degrade("receipt_attachment", e)

        if result.receipt_is_placeholder:
            receipt = await self._lookup_receipt(result, checkout_session_id, attempts=1)
            if receipt:
                result.receipt_id = str(receipt["id"])
                result.receipt_is_placeholder = False
                if receipt_message:
                    try:
                        await self._upgrade_receipt_reference(receipt_message, result.receipt_id)
                    except Exception as e:
                        logger.warning("Receipt message upgrade failed for offer %s: %s", offer["id"], str(e))
                        result.degrade("receipt_message_upgrade", e)

        # 10. Notification and caches
        if pro_id:
            try:
                result.notified_professional = await self._notify_professional(pro_id, offer, conversation, request)
            except Exception as e:
                logger.warning("Paid notification failed for offer %s: %s", offer["id"], str(e))
                result.degrade("notification", e)

        self._invalidate(request_id, str(conversation["id"]), pro_id)

        result.outcome = ReconciliationOutcome.RECONCILED
        logger.info(
            "Reconciled session %s: offer=%s gate=%s receipt=%s degraded=%d",
            checkout_session_id,
            offer["id"],
            result.agreement_gate.value if result.agreement_gate else None,
            result.receipt_id,
            len(result.degraded),
        )
        return result

    async def _reconcile_without_offer(
        self,
        result: ReconciliationResult,
        session: dict[str, Any],
        conversation_id_hint: str | None,
        request_id_hint: str | None,
    ) -> ReconciliationResult:
        """Mirror a paid session that names no offer onto its request.

        The conversation and request come from session metadata, then the
        redirect hints. Only the agreement, request, calendar, notification
        and caches are touched: chat messages are keyed by offer id.
        """
        checkout_session_id = result.checkout_session_id
        metadata = session.get("metadata") or {}

        conversation_id = _first(metadata.get("conversation_id"), conversation_id_hint)
        conversation = await self.conversations.get_conversation(conversation_id) if conversation_id else None
        request_id = _first(metadata.get("request_id"), request_id_hint, (conversation or {}).get("request_id"))
        request = await self.requests.get_request(request_id) if request_id else None
        if not request:
            logger.warning("Unverified payment: session %s carries no offer id and no known request", checkout_session_id)
            return result

        linked_request = (conversation or {}).get("request_id")
        if linked_request and str(linked_request) != str(request["id"]):
            logger.warning(
                "Unverified payment: session %s names request %s but conversation %s belongs to %s",
                checkout_session_id,
                request["id"],
                conversation["id"],
                linked_request,
            )
            return result

        pro_id = _first(
            metadata.get("proId"),
            metadata.get("professional_id"),
            (conversation or {}).get("pro_id"),
            assigned_professional(request),
        )
        if not pro_id:
            logger.warning("Unverified payment: no professional for session %s on request %s", checkout_session_id, request_id)
            return result

        fees = FeeBreakdown.from_metadata(metadata)
        terms: dict[str, Any] = {
            "id": None,
            "title": metadata.get("title"),
            "amount": fees.base_cents / 100 if fees else None,
        }
        result.payment_intent_id = payment_intent_id_of(session)
        result.conversation_id = str(conversation["id"]) if conversation else None
        result.request_id = str(request["id"])
        result.professional_id = pro_id

        await self._settle_request(result, request, pro_id, terms, metadata)

        if conversation:
            try:
                result.notified_professional = await self._notify_professional(pro_id, terms, conversation, request)
            except Exception as e:
                logger.warning("Paid notification failed for session %s: %s", checkout_session_id, str(e))
                result.degrade("notification", e)

        self._invalidate(result.request_id, result.conversation_id, pro_id)

        result.outcome = ReconciliationOutcome.RECONCILED
        logger.info(
            "Reconciled session %s without offer: request=%s gate=%s",
            checkout_session_id,
            result.request_id,
            result.agreement_gate.value if result.agreement_gate else None,
        )
        return result

    async def _lookup_receipt(
        self, result: ReconciliationResult, checkout_session_id: str, attempts: int | None = None
    ) -> dict[str, Any] | None:
        try:
            return await self.receipts.lookup_canonical(checkout_session_id, attempts=attempts)
        except Exception as e:
            logger.warning("Receipt lookup failed for session %s: %s", checkout_session_id, str(e))
            result.degrade("receipt_lookup", e)
            return None

    async def _settle_request(
        self,
        result: ReconciliationResult,
        request: dict[str, Any],
        pro_id: str,
        offer: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        request_id = str(request["id"])
        title = request.get("title") or offer.get("title") or "Servicio"
        scheduled_date, scheduled_time = resolve_schedule(metadata, offer, request)

        agreement = await self.agreements.find_for(request_id, pro_id)
        if is_paid_or_beyond(agreement):
            result.agreement_gate = AgreementGate.ALREADY_PAID
            result.agreement_id = str(agreement["id"])
            await self.calendar.upsert_entry(
                pro_id, request_id, title, scheduled_date, scheduled_time, only_if_missing=True
            )
            return

        agreement, applied = await self._mark_agreement_paid(request_id, pro_id, offer, agreement)
        result.agreement_id = str(agreement["id"]) if agreement else None
        if not applied:
            result.agreement_gate = AgreementGate.ALREADY_PAID
            await self.calendar.upsert_entry(
                pro_id, request_id, title, scheduled_date, scheduled_time, only_if_missing=True
            )
            return

        result.agreement_gate = AgreementGate.APPLIED
        self.client.table("agreements").update({"status": AgreementStatus.CANCELLED.value}).eq(
            "request_id", request_id
        ).neq("professional_id", pro_id).in_("status", [s.value for s in NEGOTIABLE]).execute()

        patch: dict[str, Any] = {
            "status": RequestStatus.IN_PROCESS.value,
            "professional_id": pro_id,
            "accepted_professional_id": pro_id,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
        }
        if agreement:
            patch["agreement_id"] = str(agreement["id"])
        await self.requests.apply_patch(request_id, patch)

        await self.calendar.upsert_entry(pro_id, request_id, title, scheduled_date, scheduled_time)

    async def _mark_agreement_paid(
        self,
        request_id: str,
        pro_id: str,
        offer: dict[str, Any],
        agreement: dict[str, Any] | None,
    ) -> tuple[dict[str, Any] | None, bool]:
        """Move (or create) the agreement as paid.

        Returns:
            tuple: (agreement, True if this call wrote ``paid``).
        """
        if agreement is None:
            row = {
                "request_id": request_id,
                "professional_id": pro_id,
                "amount": float(offer.get("amount") or 0),
                "status": AgreementStatus.PAID.value,
                "completed_by_pro": False,
                "completed_by_client": False,
            }
            response = (
                self.client.table("agreements")
                .upsert(row, on_conflict="request_id,professional_id", ignore_duplicates=True)
                .execute()
            )
            if response.data:
                return response.data[0], True
            agreement = await self.agreements.find_for(request_id, pro_id)
            if agreement is None or is_paid_or_beyond(agreement):
                return agreement, False

        response = (
            self.client.table("agreements")
            .update({"status": AgreementStatus.PAID.value, "amount": float(offer.get("amount") or agreement.get("amount") or 0)})
            .eq("id", str(agreement["id"]))
            .eq("status", str(agreement["status"]))
            .execute()
        )
        if response.data:
            return response.data[0], True

        latest = await self.agreements.find_for(request_id, pro_id)
        if not is_paid_or_beyond(latest):
            logger.warning(
                "Agreement %s changed to %s during reconciliation",
                agreement["id"],
                (latest or {}).get("status"),
            )
        return latest, False

    async def _post_paid_message(self, offer: dict[str, Any], conversation: dict[str, Any]) -> bool:
        conversation_id = str(conversation["id"])
        offer_id = str(offer["id"])
        message_id = stable_message_id(f"paid:{conversation_id}:{offer_id}")

        existing = await self.conversations.find_system_message(
            conversation_id, {"offer_id": offer_id, "status": "paid"}, message_id=message_id
        )
        if existing and (existing.get("payload") or {}).get("type") != "payment_receipt":
            return False

        message = await self.conversations.append_message_once(
            message_id,
            conversation_id,
            offer["client_id"],
            MessageType.SYSTEM,
            PAID_MESSAGE,
            {"offer_id": offer_id, "status": "paid"},
        )
        return message is not None

    async def _post_address_message(
        self, offer: dict[str, Any], conversation: dict[str, Any], request: dict[str, Any]
    ) -> None:
        line = ", ".join(p for p in (request.get("address_line"), request.get("city")) if p)
        if not line:
            return
        conversation_id = str(conversation["id"])
        await self.conversations.append_message_once(
            stable_message_id(f"paid_address:{conversation_id}:{offer['id']}"),
            conversation_id,
            offer["client_id"],
            MessageType.SYSTEM,
            f"Servicio agendado en {line}.",
            {"offer_id": str(offer["id"]), "type": "service_scheduled_address"},
        )

    def _download_url(self, receipt_id: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}/api/v1/receipts/{receipt_id}/pdf"

    async def _post_receipt_message(
        self, offer: dict[str, Any], conversation: dict[str, Any], receipt_id: str | None
    ) -> dict[str, Any] | None:
        """Append the receipt message once, or upgrade an existing one."""
        if not receipt_id:
            return None
        conversation_id = str(conversation["id"])
        offer_id = str(offer["id"])
        message_id = stable_message_id(f"paid_receipt:{conversation_id}:{offer_id}")

        existing = await self.conversations.find_system_message(
            conversation_id, {"offer_id": offer_id, "type": "payment_receipt"}, message_id=message_id
        )
        if existing is None:
            existing = await self.conversations.find_system_message(conversation_id, {"receipt_id": receipt_id})
        if existing:
            if not is_placeholder_id(receipt_id):
                existing = await self._upgrade_receipt_reference(existing, receipt_id)
            return existing

        payload = {
            "offer_id": offer_id,
            "type": "payment_receipt",
            "receipt_id": receipt_id,
            "download_url": self._download_url(receipt_id),
        }
        message = await self.conversations.append_message_once(
            message_id,
            conversation_id,
            offer["client_id"],
            MessageType.SYSTEM,
            RECEIPT_MESSAGE,
            payload,
        )
        return message or await self.conversations.get_message(message_id)

    async def _upgrade_receipt_reference(self, message: dict[str, Any], receipt_id: str) -> dict[str, Any]:
        current = (message.get("payload") or {}).get("receipt_id")
        if current == receipt_id or not is_placeholder_id(current):
            return message
        logger.info("Upgrading receipt reference %s -> %s on message %s", current, receipt_id, message["id"])
        return await self.conversations.update_message_payload(
            message, {"receipt_id": receipt_id, "download_url": self._download_url(receipt_id)}
        )

    async def _attach_receipt(
        self,
        message: dict[str, Any],
        receipt: dict[str, Any] | None,
        session: dict[str, Any],
        offer: dict[str, Any],
    ) -> bool:
        """Render the receipt PDF and attach it to the receipt message once."""
        existing = (
            self.client.table("message_attachments")
            .select("id")
            .eq("message_id", str(message["id"]))
            .limit(1)
            .execute()
        )
        if existing.data:
            return False

        if receipt:
            document = await self.receipts.build_document(receipt, service_title=offer.get("title"))
        else:
            placeholder = (message.get("payload") or {}).get("receipt_id") or placeholder_receipt_id(session.get("id"))
            document = self.receipts.document_from_session(placeholder, session, offer)

        pdf = self.renderer.render(document)
        file_name = f"{document.folio}.pdf"
        path = f"receipts/{message['conversation_id']}/{file_name}"
        get_object_storage().upload(path, pdf, "application/pdf")

        self.client.table("message_attachments").insert(
            {
                "message_id": str(message["id"]),
                "conversation_id": str(message["conversation_id"]),
                "storage_path": path,
                "file_name": file_name,
                "mime_type": "application/pdf",
                "size_bytes": len(pdf),
                "uploaded_by": str(offer["client_id"]),
            }
        ).execute()
        return True

    async def _notify_professional(
        self,
        pro_id: str,
        offer: dict[str, Any],
        conversation: dict[str, Any],
        request: dict[str, Any] | None,
    ) -> bool:
        """Insert the paid notification at most once; email only on insert."""
        link = f"{self.settings.frontend_url.rstrip('/')}/mensajes/{conversation['id']}"
        title = (request or {}).get("title") or offer.get("title") or "Servicio"
        response = (
            self.client.table("user_notifications")
            .upsert(
                {
                    "user_id": pro_id,
                    "type": PAID_NOTIFICATION_TYPE,
                    "title": "Oferta pagada",
                    "body": f"El cliente pagó la oferta \"{title}\".",
                    "link": link,
                },
                on_conflict="user_id,type,link",
                ignore_duplicates=True,
            )
            .execute()
        )
        if not response.data:
            return False

        profile = (
            self.client.table("profiles")
            .select("email, full_name")
            .eq("id", pro_id)
            .maybe_single()
            .execute()
        )
        data = profile.data if profile and profile.data else None
        if data and data.get("email"):
            address = ", ".join(p for p in ((request or {}).get("address_line"), (request or {}).get("city")) if p)
            await self.email.send_offer_paid_email(
                data["email"],
                data.get("full_name"),
                title,
                conversation_id=str(conversation["id"]),
                address=address or None,
            )
        return True

    def _invalidate(self, request_id: str | None, conversation_id: str | None, pro_id: str | None) -> None:
        tags = [conversation_tag(conversation_id)] if conversation_id else []
        if request_id:
            tags.append(request_tag(request_id))
        if pro_id:
            tags += [pro_calendar_tag(pro_id), pro_dashboard_tag(pro_id)]
        self.cache.invalidate(*tags)

    # Webhook entry points

    async def handle_checkout_completed(self, event: dict[str, Any]) -> ReconciliationResult | None:
        """Process checkout.session.completed / async_payment_succeeded.

        Persists the canonical receipt, then reconciles. Sessions that are
        not offer payments are ignored.
        """
        session = as_dict(event["data"]["object"])
        metadata = session.get("metadata") or {}
        offer_id = metadata.get("offer_id") or session.get("client_reference_id")
        if not offer_id:
            logger.info("Ignoring checkout session %s without offer_id", session.get("id"))
            return None

        if is_session_paid(session):
            offer = await self.offers.get_offer(offer_id)
            try:
                await self.receipts.ensure_receipt(session, offer)
            except Exception as e:
                logger.warning("Could not persist receipt for session %s: %s", session.get("id"), str(e))

        return await self.reconcile_payment(session["id"], offer_id, session=session)

    async def handle_payment_intent_succeeded(self, event: dict[str, Any]) -> ReconciliationResult | None:
        """Process payment_intent.succeeded by finding its checkout session."""
        intent = as_dict(event["data"]["object"])
        offer_id = (intent.get("metadata") or {}).get("offer_id")
        if not offer_id:
            logger.info("Ignoring payment intent %s without offer_id", intent.get("id"))
            return None

        session = await self.checkout.find_session_for_payment_intent(intent.get("id"))
        if not session:
            logger.warning("No checkout session found for payment intent %s", intent.get("id"))
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UNVERIFIED_PAYMENT,
                payment_intent_id=intent.get("id"),
                offer_id=offer_id,
            )

        if is_session_paid(session):
            offer = await self.offers.get_offer(offer_id)
            try:
                await self.receipts.ensure_receipt(session, offer)
            except Exception as e:
                logger.warning("Could not persist receipt for session %s: %s", session.get("id"), str(e))

        return await self.reconcile_payment(session["id"], offer_id, session=session)
