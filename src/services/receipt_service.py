"""Payment receipts.

Canonical receipt rows are written by the webhook path and keyed by
``checkout_session_id``. The redirect path may run first, in which case it
uses a placeholder id (``RCPT-<session_or_intent_id>``) that is upgraded
once the canonical row shows up.
"""

import asyncio
import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import NotFoundError, PermissionDeniedError
from src.core.config import get_settings
from src.core.supabase import get_supabase_client
from src.services.checkout_service import payment_intent_id_of
from src.services.fees import FeeBreakdown, compute_client_totals_cents
from src.services.receipt_renderer import ReceiptDocument, ReceiptRenderer

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "RCPT-"
FOLIO_PATTERN = re.compile(r"^RCPT-\d{4}-\d{5}$")


def placeholder_receipt_id(session_id: str | None, payment_intent_id: str | None = None) -> str | None:
    """Temporary receipt id used until the canonical row exists."""
    token = session_id or payment_intent_id
    return f"{PLACEHOLDER_PREFIX}{token}" if token else None


def is_placeholder_id(receipt_id: str | None) -> bool:
    if not receipt_id or not receipt_id.startswith(PLACEHOLDER_PREFIX):
        return False
    return not FOLIO_PATTERN.match(receipt_id)


def folio_for(receipt_id: str, year: int) -> str:
    """Deterministic human-readable folio for a receipt id."""
    number = int(hashlib.sha256(str(receipt_id).encode()).hexdigest(), 16) % 100000
    return f"RCPT-{year}-{number:05d}"


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


class ReceiptService:
    """Service for receipt rows, folios and PDF documents."""

    def __init__(self) -> None:
        """Initialize receipt service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.renderer = ReceiptRenderer()

    def _find_one(self, column: str, value: str | None) -> dict[str, Any] | None:
        if not value:
            return None
        response = self.client.table("receipts").select("*").eq(column, value).limit(1).execute()
        return response.data[0] if response.data else None

    async def get_receipt(self, receipt_id: str) -> dict[str, Any] | None:
        return self._find_one("id", receipt_id)

    async def find_by_session(self, checkout_session_id: str | None) -> dict[str, Any] | None:
        """Canonical receipt for a checkout session."""
        return self._find_one("checkout_session_id", checkout_session_id)

    async def find_by_payment_intent(self, payment_intent_id: str | None) -> dict[str, Any] | None:
        return self._find_one("payment_intent_id", payment_intent_id)

    async def ensure_receipt(
        self,
        session: dict[str, Any],
        offer: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Create the canonical receipt for a paid session if it is missing.

        Amounts come from the session metadata written at checkout, falling
        back to the fee schedule over the offer amount. A retried webhook
        finds the existing row.

        Returns:
            dict | None: The receipt row, or None without a session id.
        """
        session_id = session.get("id")
        if not session_id:
            return None

        existing = await self.find_by_session(session_id)
        if existing:
            return existing

        metadata = session.get("metadata") or {}
        fees = FeeBreakdown.from_metadata(metadata)
        if fees is None:
            fees = compute_client_totals_cents((offer or {}).get("amount") or 0)

        offer = offer or {}
        currency = str(offer.get("currency") or session.get("currency") or self.settings.default_currency).upper()
        row = {
            "checkout_session_id": session_id,
            "payment_intent_id": payment_intent_id_of(session),
            "offer_id": metadata.get("offer_id") or offer.get("id"),
            "request_id": metadata.get("request_id") or None,
            "conversation_id": metadata.get("conversation_id") or offer.get("conversation_id"),
            "client_id": metadata.get("client_id") or offer.get("client_id"),
            "professional_id": metadata.get("proId") or offer.get("professional_id"),
            "service_amount": fees.base_cents,
            "commission_amount": fees.commission_cents,
            "iva_amount": fees.iva_cents,
            "total_amount": fees.total_cents,
            "currency": currency,
        }
        self.client.table("receipts").upsert(
            row, on_conflict="checkout_session_id", ignore_duplicates=True
        ).execute()

        receipt = await self.find_by_session(session_id)
        if receipt:
            logger.info("Receipt %s ready for session %s", receipt["id"], session_id)
        return receipt

    async def lookup_canonical(
        self,
        checkout_session_id: str | None,
        attempts: int | None = None,
        delay_seconds: float | None = None,
    ) -> dict[str, Any] | None:
        """Look for the canonical receipt a bounded number of times.

        The delay grows linearly with each attempt.
        """
        attempts = attempts if attempts is not None else self.settings.receipt_lookup_attempts
        delay = delay_seconds if delay_seconds is not None else self.settings.receipt_lookup_delay_seconds

        for attempt in range(1, max(1, attempts) + 1):
            receipt = await self.find_by_session(checkout_session_id)
            if receipt:
                return receipt
            if attempt < attempts and delay > 0:
                await asyncio.sleep(delay * attempt)
        logger.debug("No canonical receipt for session %s after %d attempts", checkout_session_id, attempts)
        return None

    async def ensure_folio(self, receipt: dict[str, Any]) -> str:
        """Return the receipt's folio, generating and persisting it once."""
        if receipt.get("folio"):
            return receipt["folio"]

        year = _parse_datetime(receipt.get("created_at")).year
        folio = folio_for(str(receipt["id"]), year)
        response = (
            self.client.table("receipts")
            .update({"folio": folio})
            .eq("id", str(receipt["id"]))
            .is_("folio", "null")
            .execute()
        )
        if response.data:
            return folio

        latest = await self.get_receipt(str(receipt["id"]))
        return (latest or {}).get("folio") or folio

    async def resolve(self, token: str) -> dict[str, Any] | None:
        """Find a receipt by id, folio or placeholder token."""
        if _is_uuid(token):
            return await self.get_receipt(token)
        if FOLIO_PATTERN.match(token):
            return self._find_one("folio", token)
        if token.startswith(f"{PLACEHOLDER_PREFIX}cs_"):
            return await self.find_by_session(token[len(PLACEHOLDER_PREFIX):])
        if token.startswith(f"{PLACEHOLDER_PREFIX}pi_"):
            return await self.find_by_payment_intent(token[len(PLACEHOLDER_PREFIX):])
        return None

    def _names(self, user_ids: list[str]) -> dict[str, str]:
        ids = [i for i in user_ids if i]
        if not ids:
            return {}
        response = self.client.table("profiles").select("id, full_name").in_("id", ids).execute()
        return {str(row["id"]): row.get("full_name") for row in response.data or [] if row.get("full_name")}

    def _offer_title(self, offer_id: str | None) -> str | None:
        if not offer_id:
            return None
        response = self.client.table("offers").select("title").eq("id", str(offer_id)).limit(1).execute()
        return response.data[0].get("title") if response.data else None

    async def build_document(self, receipt: dict[str, Any], service_title: str | None = None) -> ReceiptDocument:
        """Collect everything needed to print a canonical receipt."""
        folio = await self.ensure_folio(receipt)
        client_id = str(receipt.get("client_id") or "")
        pro_id = str(receipt.get("professional_id") or "")
        names = self._names([client_id, pro_id])
        return ReceiptDocument(
            folio=folio,
            receipt_id=str(receipt["id"]),
            issued_at=_parse_datetime(receipt.get("created_at")),
            service_title=service_title or self._offer_title(receipt.get("offer_id")) or "Servicio",
            client_name=names.get(client_id),
            professional_name=names.get(pro_id),
            service_cents=int(receipt.get("service_amount") or 0),
            commission_cents=int(receipt.get("commission_amount") or 0),
            iva_cents=int(receipt.get("iva_amount") or 0),
            total_cents=int(receipt.get("total_amount") or 0),
            currency=str(receipt.get("currency") or self.settings.default_currency),
            payment_reference=receipt.get("payment_intent_id") or receipt.get("checkout_session_id"),
        )

    def document_from_session(
        self,
        placeholder_id: str,
        session: dict[str, Any],
        offer: dict[str, Any],
    ) -> ReceiptDocument:
        """Document for a payment whose canonical receipt is not written yet."""
        fees = FeeBreakdown.from_metadata(session.get("metadata") or {}) or compute_client_totals_cents(
            offer.get("amount") or 0
        )
        return ReceiptDocument(
            folio=placeholder_id,
            receipt_id=placeholder_id,
            issued_at=datetime.now(timezone.utc),
            service_title=offer.get("title") or "Servicio",
            client_name=None,
            professional_name=None,
            service_cents=fees.base_cents,
            commission_cents=fees.commission_cents,
            iva_cents=fees.iva_cents,
            total_cents=fees.total_cents,
            currency=str(offer.get("currency") or self.settings.default_currency),
            payment_reference=payment_intent_id_of(session) or session.get("id"),
        )

    async def render_pdf(self, token: str, viewer_id: UUID | str) -> tuple[str, bytes]:
        """Render a receipt for its client or professional.

        Returns:
            tuple: (filename, pdf bytes).

        Raises:
            NotFoundError: If the token resolves to no receipt.
            PermissionDeniedError: If the viewer is not a party to the payment.
        """
        receipt = await self.resolve(token)
        if not receipt:
            raise NotFoundError("Receipt not found")
        if str(viewer_id) not in (str(receipt.get("client_id")), str(receipt.get("professional_id"))):
            raise PermissionDeniedError("You cannot view this receipt")

        document = await self.build_document(receipt)
        return f"{document.folio}.pdf", self.renderer.render(document)
