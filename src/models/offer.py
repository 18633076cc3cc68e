"""Offer model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class OfferStatus(str, Enum):
    """Offer status values matching database enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELED = "canceled"
    EXPIRED = "expired"


class Offer(TypedDict):
    """Offer table row representation.

    ``amount`` is the service price as a decimal; platform fees are added
    when the checkout session is created.
    """

    id: UUID
    conversation_id: UUID
    client_id: UUID
    professional_id: UUID
    title: str
    description: str | None
    amount: Decimal
    currency: str
    service_date: str | None
    status: OfferStatus
    checkout_url: str | None
    checkout_session_id: str | None
    reason: str | None
    payment_intent_id: str | None
    created_at: datetime
    updated_at: datetime


class OfferCreate(TypedDict, total=False):
    """Data required to create a new offer."""

    conversation_id: UUID
    client_id: UUID
    professional_id: UUID
    title: str
    description: str | None
    amount: float
    currency: str
    service_date: str | None
    status: OfferStatus
