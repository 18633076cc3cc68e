"""Request status and review routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from src.api.deps import CurrentUser, check_rate_limit
from src.schemas.request import (
    RequestResponse,
    RequestStatusUpdate,
    ReviewCreate,
    ReviewPromptResponse,
    ReviewResponse,
)
from src.services.request_service import RequestService
from src.services.review_service import ReviewService

router = APIRouter(prefix="/requests", tags=["requests"])


@router.patch(
    "/{request_id}/status",
    response_model=RequestResponse,
    summary="Advance request status",
    description="Owner or assigned professional. Allowed: in_process/scheduled to completed, "
    "active/negotiating/accepted to cancelled.",
    dependencies=[Depends(check_rate_limit("request.status"))],
)
async def update_request_status(request_id: UUID, data: RequestStatusUpdate, user: CurrentUser) -> RequestResponse:
    request = await RequestService().advance_status(request_id, user.id, data.status)
    return RequestResponse(**request)


@router.get(
    "/{request_id}/review-prompt",
    response_model=ReviewPromptResponse,
    summary="Should the review prompt open",
    description="True exactly once per viewer after the request is completed and not yet reviewed.",
)
async def review_prompt(request_id: UUID, user: CurrentUser) -> ReviewPromptResponse:
    show, reason = await ReviewService().should_show_prompt(request_id, user.id)
    return ReviewPromptResponse(show=show, reason=reason)


@router.post(
    "/{request_id}/review",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a review",
    dependencies=[Depends(check_rate_limit("request.review"))],
)
async def submit_review(request_id: UUID, data: ReviewCreate, user: CurrentUser) -> ReviewResponse:
    review = await ReviewService().submit_review(request_id, user.id, data)
    return ReviewResponse(**review)
