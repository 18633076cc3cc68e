"""Service request status mirror.

A request's status follows the agreement and offer lifecycle. Payment and
completion flows write it as system-owned updates; the only actor-driven
path is ``advance_status`` for owners and assigned professionals.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import InvalidTransitionError, NotFoundError, PermissionDeniedError
from src.core.supabase import get_supabase_client
from src.models.request import RequestStatus
from src.services.calendar_service import CalendarService
from src.services.view_cache import get_view_cache, pro_calendar_tag, pro_dashboard_tag, request_tag

logger = logging.getLogger(__name__)

REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.IN_PROCESS: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.SCHEDULED: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.ACTIVE: frozenset({RequestStatus.CANCELLED}),
    RequestStatus.NEGOTIATING: frozenset({RequestStatus.CANCELLED}),
    RequestStatus.ACCEPTED: frozenset({RequestStatus.CANCELLED}),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def assigned_professional(request: dict[str, Any]) -> str | None:
    """Professional currently assigned to a request, if any."""
    pro = request.get("accepted_professional_id") or request.get("professional_id")
    return str(pro) if pro else None


class RequestService:
    """Service for reading and mirroring request status."""

    def __init__(self) -> None:
        """Initialize request service with Supabase client."""
        self.client = get_supabase_client()
        self.calendar = CalendarService()
        self.cache = get_view_cache()

    async def get_request(self, request_id: UUID | str) -> dict[str, Any] | None:
        """Get a request by ID."""
        response = (
            self.client.table("requests")
            .select("*")
            .eq("id", str(request_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_requests(self, request_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch several requests, keyed by id. Missing ids are absent."""
        if not request_ids:
            return {}
        response = self.client.table("requests").select("*").in_("id", list(set(request_ids))).execute()
        return {str(row["id"]): row for row in response.data or []}

    async def require_request(self, request_id: UUID | str) -> dict[str, Any]:
        request = await self.get_request(request_id)
        if not request:
            raise NotFoundError("Request not found")
        return request

    def is_participant(self, request: dict[str, Any], user_id: UUID | str) -> bool:
        """Owner or assigned professional."""
        return str(user_id) in (str(request.get("created_by")), assigned_professional(request))

    async def apply_patch(self, request_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        """System-owned update of derived request fields."""
        response = (
            self.client.table("requests")
            .update({**patch, "updated_at": _now_iso()})
            .eq("id", str(request_id))
            .execute()
        )
        return response.data[0] if response.data else None

    async def advance_status(
        self,
        request_id: UUID | str,
        actor_id: UUID | str,
        next_status: RequestStatus,
    ) -> dict[str, Any]:
        """Move a request to ``next_status`` on behalf of a participant.

        Re-applying the current status is a no-op.

        Raises:
            NotFoundError: If the request does not exist.
            PermissionDeniedError: If the actor is neither owner nor assigned professional.
            InvalidTransitionError: If the move is not allowed from the current status.
        """
        request = await self.require_request(request_id)
        if not self.is_participant(request, actor_id):
            raise PermissionDeniedError("Only the request owner or assigned professional can change its status")

        current = RequestStatus(request["status"])
        if current == next_status:
            return request
        if next_status not in REQUEST_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError("request", current.value, next_status.value)

        response = (
            self.client.table("requests")
            .update({"status": next_status.value, "updated_at": _now_iso()})
            .eq("id", str(request_id))
            .eq("status", current.value)
            .execute()
        )
        if not response.data:
            latest = await self.require_request(request_id)
            if latest["status"] == next_status.value:
                return latest
            raise InvalidTransitionError("request", str(latest["status"]), next_status.value)

        updated = response.data[0]
        logger.info("Request %s moved %s -> %s by %s", request_id, current.value, next_status.value, actor_id)
        await self._after_status_change(updated, next_status)
        return updated

    async def mark_completed(self, request_id: UUID | str) -> bool:
        """System-owned completion mirror. Returns True if the status changed."""
        response = (
            self.client.table("requests")
            .update({"status": RequestStatus.COMPLETED.value, "updated_at": _now_iso()})
            .eq("id", str(request_id))
            .in_("status", [RequestStatus.IN_PROCESS.value, RequestStatus.SCHEDULED.value])
            .execute()
        )
        if not response.data:
            return False
        await self._after_status_change(response.data[0], RequestStatus.COMPLETED)
        return True

    async def _after_status_change(self, request: dict[str, Any], status: RequestStatus) -> None:
        request_id = str(request["id"])
        if status == RequestStatus.COMPLETED:
            await self.calendar.set_status(request_id, "completed")
        elif status == RequestStatus.CANCELLED:
            await self.calendar.set_status(request_id, "cancelled")

        tags = [request_tag(request_id)]
        pro_id = assigned_professional(request)
        if pro_id:
            tags += [pro_calendar_tag(pro_id), pro_dashboard_tag(pro_id)]
        self.cache.invalidate(*tags)
