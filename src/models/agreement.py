"""Agreement model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class AgreementStatus(str, Enum):
    """Agreement status values matching database enum."""

    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    PAID = "paid"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


# Once an agreement reaches any of these, payment has been reconciled.
PAID_OR_BEYOND = frozenset(
    {
        AgreementStatus.PAID,
        AgreementStatus.IN_PROGRESS,
        AgreementStatus.COMPLETED,
        AgreementStatus.DISPUTED,
    }
)

# Statuses in which the amount may still be edited.
NEGOTIABLE = frozenset({AgreementStatus.NEGOTIATING, AgreementStatus.ACCEPTED})


class Agreement(TypedDict):
    """Agreement table row representation.

    One agreement exists per (request, professional) pair.
    """

    id: UUID
    request_id: UUID
    professional_id: UUID
    amount: float | None
    status: AgreementStatus
    completed_by_pro: bool
    completed_by_client: bool
    scheduled_date: str | None
    scheduled_time: str | None
    created_at: datetime
    updated_at: datetime
