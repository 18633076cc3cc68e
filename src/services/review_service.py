"""Completion review trigger.

The review prompt is shown at most once per (request, viewer): an
in-process flag answers repeated polls cheaply and the ``review_prompts``
table keeps the answer across processes and sessions. Submitting a review
closes the prompt and, best effort, completes the request.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import ConflictError, PermissionDeniedError
from src.core.supabase import get_supabase_client
from src.models.agreement import AgreementStatus
from src.models.request import RequestStatus
from src.schemas.request import ReviewCreate
from src.services.agreement_service import AgreementService
from src.services.request_service import RequestService, assigned_professional
from src.services.view_cache import get_view_cache, pro_dashboard_tag, request_tag

logger = logging.getLogger(__name__)


class ReviewPromptCache:
    """Process-local "prompt already handled" flags keyed by (request, viewer)."""

    def __init__(self) -> None:
        self._seen: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def mark(self, request_id: str, viewer_id: str) -> bool:
        """Set the flag. Returns True if it was not set before."""
        key = (str(request_id), str(viewer_id))
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def is_marked(self, request_id: str, viewer_id: str) -> bool:
        with self._lock:
            return (str(request_id), str(viewer_id)) in self._seen

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()


_prompt_cache: ReviewPromptCache | None = None


def get_review_prompt_cache() -> ReviewPromptCache:
    """Get or create the global prompt flag cache."""
    global _prompt_cache
    if _prompt_cache is None:
        _prompt_cache = ReviewPromptCache()
    return _prompt_cache


class ReviewService:
    """Service for completion reviews and the review prompt."""

    def __init__(self) -> None:
        """Initialize review service with Supabase client."""
        self.client = get_supabase_client()
        self.requests = RequestService()
        self.agreements = AgreementService()
        self.prompts = get_review_prompt_cache()
        self.cache = get_view_cache()

    async def get_review(self, request_id: str, reviewer_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table("reviews")
            .select("*")
            .eq("request_id", str(request_id))
            .eq("reviewer_id", str(reviewer_id))
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def _record_prompt(self, request_id: str, viewer_id: str) -> bool:
        """Durably record that the prompt was shown. True if this call recorded it."""
        response = (
            self.client.table("review_prompts")
            .upsert(
                {
                    "request_id": request_id,
                    "viewer_id": viewer_id,
                    "shown_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="request_id,viewer_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        return bool(response.data)

    async def should_show_prompt(self, request_id: UUID | str, viewer_id: UUID | str) -> tuple[bool, str]:
        """Decide whether this viewer should see the review prompt now.

        Returns True exactly once per (request, viewer), the first time the
        request is observed as completed without a prior review.

        Returns:
            tuple: (show, reason).

        Raises:
            NotFoundError: If the request does not exist.
            PermissionDeniedError: If the viewer is not a participant.
        """
        request_id, viewer_id = str(request_id), str(viewer_id)
        request = await self.requests.require_request(request_id)
        if not self.requests.is_participant(request, viewer_id):
            raise PermissionDeniedError("You are not a participant in this request")

        if request.get("status") != RequestStatus.COMPLETED.value:
            return False, "not_completed"
        if self.prompts.is_marked(request_id, viewer_id):
            return False, "already_shown"
        if await self.get_review(request_id, viewer_id):
            self.prompts.mark(request_id, viewer_id)
            return False, "already_reviewed"

        self.prompts.mark(request_id, viewer_id)
        if not self._record_prompt(request_id, viewer_id):
            return False, "already_shown"
        logger.info("Review prompt shown for request %s to %s", request_id, viewer_id)
        return True, "completed"

    async def submit_review(
        self,
        request_id: UUID | str,
        reviewer_id: UUID | str,
        data: ReviewCreate,
    ) -> dict[str, Any]:
        """Persist the client's review of the assigned professional.

        Allowed once the request is completed or the professional has
        finished their side of the agreement. The request is then moved to
        completed if it is not already; that step never fails the review.

        Raises:
            PermissionDeniedError: If the reviewer is not the request owner.
            ConflictError: If the work is not finished or a review exists.
        """
        request_id, reviewer_id = str(request_id), str(reviewer_id)
        request = await self.requests.require_request(request_id)
        if str(request.get("created_by")) != reviewer_id:
            raise PermissionDeniedError("Only the client who created the request can review it")

        pro_id = assigned_professional(request)
        agreement = await self.agreements.find_for(request_id, pro_id) if pro_id else None
        finished = request.get("status") == RequestStatus.COMPLETED.value or bool(
            agreement
            and (agreement.get("status") == AgreementStatus.COMPLETED.value or agreement.get("completed_by_pro"))
        )
        if not finished:
            raise ConflictError("The service has not been completed yet")

        comment = data.comment.strip() if data.comment and data.comment.strip() else None
        response = (
            self.client.table("reviews")
            .upsert(
                {
                    "request_id": request_id,
                    "reviewer_id": reviewer_id,
                    "reviewee_id": pro_id,
                    "rating": data.rating,
                    "comment": comment,
                },
                on_conflict="request_id,reviewer_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        if not response.data:
            raise ConflictError("You already reviewed this request")
        review = response.data[0]

        self.prompts.mark(request_id, reviewer_id)
        try:
            self._record_prompt(request_id, reviewer_id)
        except Exception as e:
            logger.warning("Could not record review prompt for request %s: %s", request_id, str(e))

        completed = request.get("status") == RequestStatus.COMPLETED.value
        if not completed:
            try:
                completed = await self.requests.mark_completed(request_id)
            except Exception as e:
                logger.warning("Could not complete request %s after review: %s", request_id, str(e))

        tags = [request_tag(request_id)]
        if pro_id:
            tags.append(pro_dashboard_tag(pro_id))
        self.cache.invalidate(*tags)

        logger.info("Review %s recorded for request %s", review["id"], request_id)
        return {**review, "request_completed": completed}
