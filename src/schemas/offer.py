"""Offer Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.offer import OfferStatus


class OfferCreate(BaseModel):
    """Schema for creating an offer inside a conversation."""

    model_config = ConfigDict(from_attributes=True)

    title: str = Field(..., min_length=1, max_length=200, description="Short description of the job")
    description: str | None = Field(default=None, max_length=4000, description="Scope details")
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Service price (fees excluded)")
    currency: str = Field(default="MXN", min_length=3, max_length=3, description="ISO 4217 currency code")
    service_date: str | None = Field(default=None, description="Requested service date/time (ISO 8601)")

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class OfferReject(BaseModel):
    """Schema for rejecting an offer."""

    reason: str = Field(..., min_length=1, max_length=1000, description="Why the offer was rejected")

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v.strip()


class OfferCancel(BaseModel):
    """Schema for canceling an offer."""

    reason: str | None = Field(default=None, max_length=1000, description="Optional cancellation reason")


class OfferResponse(BaseModel):
    """Schema for offer API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Offer unique identifier")
    conversation_id: UUID = Field(description="Conversation the offer belongs to")
    client_id: UUID = Field(description="Client (payer)")
    professional_id: UUID = Field(description="Professional (payee)")
    title: str = Field(description="Offer title")
    description: str | None = Field(default=None, description="Scope details")
    amount: Decimal = Field(description="Service price (fees excluded)")
    currency: str = Field(description="Currency code")
    service_date: str | None = Field(default=None, description="Requested service date/time")
    status: OfferStatus = Field(description="Current status")
    checkout_url: str | None = Field(default=None, description="Hosted checkout URL when payment is pending")
    reason: str | None = Field(default=None, description="Rejection or cancellation reason")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")


class OfferState(BaseModel):
    """Offer state as rebuilt from the conversation's message log."""

    model_config = ConfigDict(from_attributes=True)

    offer_id: str = Field(description="Offer identifier")
    title: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    service_date: str | None = None
    status: str | None = None
    checkout_url: str | None = None
    reason: str | None = None


class OfferStateListResponse(BaseModel):
    """Folded offer states for a conversation."""

    offers: list[OfferState] = Field(description="One entry per offer id")


class CheckoutResponse(BaseModel):
    """Schema for the lazily created checkout session."""

    model_config = ConfigDict(from_attributes=True)

    checkout_url: str = Field(description="Hosted checkout URL")
    session_id: str | None = Field(default=None, description="Checkout session id")
    base_cents: int = Field(description="Service price in minor units")
    commission_cents: int = Field(description="Platform commission in minor units")
    iva_cents: int = Field(description="Tax in minor units")
    total_cents: int = Field(description="Amount charged in minor units")
    currency: str = Field(description="Currency code")
    reused: bool = Field(default=False, description="True if an open session was reused")
