"""Service request and review Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.request import RequestStatus


class RequestStatusUpdate(BaseModel):
    """Schema for PATCH /requests/{id}/status."""

    status: RequestStatus = Field(..., description="Requested status")


class RequestResponse(BaseModel):
    """Schema for request API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Request unique identifier")
    created_by: UUID = Field(description="Client who created the request")
    title: str | None = Field(default=None, description="Request title")
    status: RequestStatus = Field(description="Current status")
    professional_id: UUID | None = Field(default=None, description="Assigned professional")
    scheduled_date: str | None = Field(default=None, description="Scheduled date (YYYY-MM-DD)")
    scheduled_time: str | None = Field(default=None, description="Scheduled time (HH:MM)")


class ReviewCreate(BaseModel):
    """Schema for submitting a review."""

    rating: int = Field(..., ge=1, le=5, description="Star rating")
    comment: str | None = Field(default=None, max_length=2000, description="Optional comment")


class ReviewResponse(BaseModel):
    """Schema for review API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Review unique identifier")
    request_id: UUID = Field(description="Reviewed request")
    reviewer_id: UUID = Field(description="Author")
    reviewee_id: UUID | None = Field(default=None, description="Reviewed professional")
    rating: int = Field(description="Star rating")
    comment: str | None = Field(default=None, description="Comment")
    created_at: datetime = Field(description="Creation timestamp")
    request_completed: bool = Field(default=False, description="Whether the request is now completed")


class ReviewPromptResponse(BaseModel):
    """Whether the review dialog should open for this viewer."""

    show: bool = Field(description="Open the review dialog")
    reason: str = Field(description="Why the prompt is or is not shown")
