"""Message Pydantic schemas, including the structured payload union.

Structured messages carry one of three payload kinds, discriminated by
``kind``: an offer snapshot, a quote snapshot, or a system event. Every
snapshot is partial; state is rebuilt by folding snapshots that share an
id (see ``src.services.message_fold``).
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from src.models.message import MessageType


class OfferPayload(BaseModel):
    """Snapshot of an offer carried by an ``offer`` message."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["offer"] = "offer"
    offer_id: str
    title: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    service_date: str | None = None
    status: str | None = None
    checkout_url: str | None = None
    reason: str | None = None


class QuotePayload(BaseModel):
    """Snapshot of a quote (professional-side price proposal)."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["quote"] = "quote"
    quote_id: str
    title: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    items: list[dict[str, Any]] | None = None
    status: str | None = None


class SystemPayload(BaseModel):
    """System event, e.g. an offer status change or a payment receipt.

    System events carry arbitrary extra keys (receipt links, address lines),
    which are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    kind: Literal["system"] = "system"
    offer_id: str | None = None
    status: str | None = None
    reason: str | None = None
    type: str | None = None
    receipt_id: str | None = None


MessagePayload = Annotated[
    OfferPayload | QuotePayload | SystemPayload,
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[MessagePayload] = TypeAdapter(MessagePayload)


def parse_payload(
    message_type: MessageType | str,
    payload: dict[str, Any] | None,
) -> OfferPayload | QuotePayload | SystemPayload | None:
    """Validate a raw payload against the schema for its message type.

    Args:
        message_type: The message's type.
        payload: Raw JSON payload as stored.

    Returns:
        The typed payload, or None for plain text messages.

    Raises:
        pydantic.ValidationError: If the payload does not match its kind.
    """
    raw = dict(payload or {})
    match MessageType(message_type):
        case MessageType.OFFER:
            raw["kind"] = "offer"
        case MessageType.QUOTE:
            raw["kind"] = "quote"
        case MessageType.SYSTEM:
            raw["kind"] = "system"
        case MessageType.TEXT:
            return None
    return _payload_adapter.validate_python(raw)


def dump_payload(payload: OfferPayload | QuotePayload | SystemPayload) -> dict[str, Any]:
    """Serialize a payload for storage, dropping unset fields."""
    return payload.model_dump(mode="json", exclude_none=True)


class MessageCreate(BaseModel):
    """Schema for sending a chat message."""

    model_config = ConfigDict(from_attributes=True)

    body: str = Field(..., min_length=1, max_length=10000, description="Message text")
    message_type: MessageType = Field(default=MessageType.TEXT, description="Message type")
    payload: dict[str, Any] | None = Field(default=None, description="Structured payload for non-text messages")


class MessageResponse(BaseModel):
    """Schema for message API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Message unique identifier")
    conversation_id: UUID = Field(description="Parent conversation ID")
    sender_id: UUID = Field(description="Author of the message")
    body: str = Field(description="Message text")
    message_type: MessageType = Field(description="Message type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Structured payload")
    read_by: list[str] = Field(default_factory=list, description="Viewer ids that have read the message")
    created_at: datetime = Field(description="Creation timestamp")


class MessageListResponse(BaseModel):
    """Schema for paginated message list response."""

    model_config = ConfigDict(from_attributes=True)

    messages: list[MessageResponse] = Field(description="List of messages, oldest first")
    next_cursor: str | None = Field(default=None, description="Cursor for next page")
    has_more: bool = Field(default=False, description="Whether more results exist")
