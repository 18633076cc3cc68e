"""Agreement lifecycle.

An agreement binds a request to one professional once an offer is
accepted. Actor-driven changes are limited to the request owner and the
assigned professional; ``paid`` is only ever written by payment
reconciliation.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from src.core.supabase import get_supabase_client
from src.models.agreement import NEGOTIABLE, PAID_OR_BEYOND, AgreementStatus
from src.models.message import MessageType
from src.services.conversation_service import ConversationService, stable_message_id
from src.services.request_service import RequestService
from src.services.view_cache import get_view_cache, pro_dashboard_tag, request_tag

logger = logging.getLogger(__name__)

AGREEMENT_TRANSITIONS: dict[AgreementStatus, frozenset[AgreementStatus]] = {
    AgreementStatus.NEGOTIATING: frozenset({AgreementStatus.ACCEPTED, AgreementStatus.CANCELLED}),
    AgreementStatus.ACCEPTED: frozenset({AgreementStatus.NEGOTIATING, AgreementStatus.CANCELLED}),
    AgreementStatus.PAID: frozenset({AgreementStatus.IN_PROGRESS, AgreementStatus.DISPUTED}),
    AgreementStatus.IN_PROGRESS: frozenset({AgreementStatus.COMPLETED, AgreementStatus.DISPUTED}),
}

COMPLETION_MESSAGE = "Servicio completado."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AgreementService:
    """Service for agreements between a request owner and a professional."""

    def __init__(self) -> None:
        """Initialize agreement service with Supabase client."""
        self.client = get_supabase_client()
        self.requests = RequestService()
        self.conversations = ConversationService()
        self.cache = get_view_cache()

    async def get_agreement(self, agreement_id: UUID | str) -> dict[str, Any] | None:
        response = (
            self.client.table("agreements")
            .select("*")
            .eq("id", str(agreement_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def find_for(self, request_id: str, professional_id: str) -> dict[str, Any] | None:
        """The agreement for a (request, professional) pair."""
        response = (
            self.client.table("agreements")
            .select("*")
            .eq("request_id", str(request_id))
            .eq("professional_id", str(professional_id))
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def require_participant(
        self, agreement_id: UUID | str, actor_id: UUID | str
    ) -> tuple[dict[str, Any], dict[str, Any], bool]:
        """Load an agreement and its request and check the actor.

        Returns:
            tuple: (agreement, request, actor_is_professional).

        Raises:
            NotFoundError: If the agreement or its request is missing.
            PermissionDeniedError: If the actor is neither owner nor assigned professional.
        """
        agreement = await self.get_agreement(agreement_id)
        if not agreement:
            raise NotFoundError("Agreement not found")
        request = await self.requests.require_request(agreement["request_id"])

        actor = str(actor_id)
        is_pro = actor == str(agreement["professional_id"])
        if not is_pro and actor != str(request.get("created_by")):
            raise PermissionDeniedError("Only the request owner or the assigned professional can change this agreement")
        return agreement, request, is_pro

    # Mirrors driven by offer transitions

    async def mirror_offer_accepted(self, request_id: str, professional_id: str, amount: Any) -> dict[str, Any] | None:
        """Ensure an ``accepted`` agreement exists for an accepted offer.

        Existing agreements that are still negotiable are moved to accepted
        with the offer's amount; agreements already paid or beyond are left
        alone.
        """
        existing = await self.find_for(request_id, professional_id)
        if existing:
            if AgreementStatus(existing["status"]) not in NEGOTIABLE:
                return existing
            response = (
                self.client.table("agreements")
                .update({"status": AgreementStatus.ACCEPTED.value, "amount": float(amount), "updated_at": _now_iso()})
                .eq("id", str(existing["id"]))
                .in_("status", [s.value for s in NEGOTIABLE])
                .execute()
            )
            return response.data[0] if response.data else await self.get_agreement(existing["id"])

        row = {
            "request_id": str(request_id),
            "professional_id": str(professional_id),
            "amount": float(amount),
            "status": AgreementStatus.ACCEPTED.value,
            "completed_by_pro": False,
            "completed_by_client": False,
        }
        self.client.table("agreements").upsert(
            row, on_conflict="request_id,professional_id", ignore_duplicates=True
        ).execute()
        self.cache.invalidate(request_tag(request_id), pro_dashboard_tag(professional_id))
        return await self.find_for(request_id, professional_id)

    async def mirror_offer_closed(self, request_id: str, professional_id: str) -> int:
        """Cancel an unpaid agreement after its offer was rejected or canceled.

        Never creates an agreement.
        """
        response = (
            self.client.table("agreements")
            .update({"status": AgreementStatus.CANCELLED.value, "updated_at": _now_iso()})
            .eq("request_id", str(request_id))
            .eq("professional_id", str(professional_id))
            .in_("status", [s.value for s in NEGOTIABLE])
            .execute()
        )
        if response.data:
            self.cache.invalidate(request_tag(request_id), pro_dashboard_tag(professional_id))
        return len(response.data or [])

    # Actor-driven operations

    async def update_amount(self, agreement_id: UUID | str, actor_id: UUID | str, amount: float) -> dict[str, Any]:
        """Change the agreed amount. Either party may, only before payment.

        Raises:
            ConflictError: If the agreement is already paid or closed.
        """
        agreement, _, _ = await self.require_participant(agreement_id, actor_id)
        current = AgreementStatus(agreement["status"])
        if current not in NEGOTIABLE:
            raise ConflictError(f"Amount cannot change once the agreement is '{current.value}'")

        response = (
            self.client.table("agreements")
            .update({"amount": amount, "updated_at": _now_iso()})
            .eq("id", str(agreement_id))
            .in_("status", [s.value for s in NEGOTIABLE])
            .execute()
        )
        if not response.data:
            raise ConflictError("Agreement changed while updating its amount")
        return response.data[0]

    async def transition(
        self,
        agreement_id: UUID | str,
        actor_id: UUID | str,
        requested: AgreementStatus,
    ) -> dict[str, Any]:
        """Move an agreement to ``requested`` on behalf of a participant.

        Raises:
            InvalidTransitionError: If the move is not allowed, including any
                attempt to set ``paid`` directly.
        """
        agreement, request, _ = await self.require_participant(agreement_id, actor_id)
        current = AgreementStatus(agreement["status"])
        if requested not in AGREEMENT_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError("agreement", current.value, requested.value)

        updated = await self._compare_and_set(agreement, current, {"status": requested.value})
        logger.info("Agreement %s moved %s -> %s by %s", agreement_id, current.value, requested.value, actor_id)
        if requested == AgreementStatus.COMPLETED:
            await self._on_completed(updated, request)
        self._invalidate(updated)
        return updated

    async def confirm_completion(self, agreement_id: UUID | str, actor_id: UUID | str) -> dict[str, Any]:
        """Record one side's confirmation that the work is finished.

        The professional sets ``completed_by_pro`` and the client sets
        ``completed_by_client``. The first confirmation moves a paid
        agreement to ``in_progress``; when both are set the agreement is
        completed and the request, calendar and chat follow.
        """
        agreement, request, is_pro = await self.require_participant(agreement_id, actor_id)
        current = AgreementStatus(agreement["status"])
        if current == AgreementStatus.COMPLETED:
            return agreement
        if current not in (AgreementStatus.PAID, AgreementStatus.IN_PROGRESS):
            raise InvalidTransitionError("agreement", current.value, AgreementStatus.COMPLETED.value)

        flag = "completed_by_pro" if is_pro else "completed_by_client"
        by_pro = bool(agreement.get("completed_by_pro")) or is_pro
        by_client = bool(agreement.get("completed_by_client")) or not is_pro

        patch: dict[str, Any] = {flag: True}
        if by_pro and by_client:
            patch["status"] = AgreementStatus.COMPLETED.value
        elif current == AgreementStatus.PAID:
            patch["status"] = AgreementStatus.IN_PROGRESS.value

        updated = await self._compare_and_set(agreement, current, patch)
        if updated["status"] == AgreementStatus.COMPLETED.value:
            await self._on_completed(updated, request)
        self._invalidate(updated)
        return updated

    async def _compare_and_set(
        self, agreement: dict[str, Any], current: AgreementStatus, patch: dict[str, Any]
    ) -> dict[str, Any]:
        response = (
            self.client.table("agreements")
            .update({**patch, "updated_at": _now_iso()})
            .eq("id", str(agreement["id"]))
            .eq("status", current.value)
            .execute()
        )
        if not response.data:
            latest = await self.get_agreement(agreement["id"]) or agreement
            raise InvalidTransitionError("agreement", str(latest["status"]), str(patch.get("status", current.value)))
        return response.data[0]

    async def _on_completed(self, agreement: dict[str, Any], request: dict[str, Any]) -> None:
        request_id = str(agreement["request_id"])
        await self.requests.mark_completed(request_id)
        await self.requests.calendar.set_status(request_id, "completed")

        response = (
            self.client.table("conversations")
            .select("*")
            .eq("request_id", request_id)
            .eq("pro_id", str(agreement["professional_id"]))
            .limit(1)
            .execute()
        )
        if not response.data:
            return
        conversation = response.data[0]
        await self.conversations.append_message_once(
            stable_message_id(f"completed:{conversation['id']}:{agreement['id']}"),
            conversation["id"],
            request.get("created_by") or conversation["customer_id"],
            MessageType.SYSTEM,
            COMPLETION_MESSAGE,
            {"type": "service_completed", "agreement_id": str(agreement["id"]), "status": "completed"},
        )

    def _invalidate(self, agreement: dict[str, Any]) -> None:
        self.cache.invalidate(
            request_tag(str(agreement["request_id"])),
            pro_dashboard_tag(str(agreement["professional_id"])),
        )


def is_paid_or_beyond(agreement: dict[str, Any] | None) -> bool:
    """Whether payment has already been reconciled onto this agreement."""
    if not agreement:
        return False
    try:
        return AgreementStatus(agreement["status"]) in PAID_OR_BEYOND
    except ValueError:
        return False
