"""Service request model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class RequestStatus(str, Enum):
    """Request status values matching database enum."""

    ACTIVE = "active"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    IN_PROCESS = "in_process"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceRequest(TypedDict):
    """Request table row representation.

    The request status mirrors the agreement and offer lifecycle; it is a
    read projection and never the source of truth for payment state.
    """

    id: UUID
    created_by: UUID
    title: str
    professional_id: UUID | None
    accepted_professional_id: UUID | None
    status: RequestStatus
    scheduled_date: str | None
    scheduled_time: str | None
    required_at: str | None
    budget: float | None
    address_line: str | None
    city: str | None
    created_at: datetime
    updated_at: datetime
