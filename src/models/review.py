"""Review model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Review(TypedDict):
    """reviews table row representation.

    Unique on (request_id, reviewer_id).
    """

    id: UUID
    request_id: UUID
    reviewer_id: UUID
    reviewee_id: UUID | None
    rating: int
    comment: str | None
    created_at: datetime


class ReviewPromptRecord(TypedDict):
    """review_prompts table row: durable "prompt shown" flag per viewer."""

    request_id: UUID
    viewer_id: UUID
    shown_at: datetime
