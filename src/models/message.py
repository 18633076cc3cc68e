"""Message model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import Any, TypedDict
from uuid import UUID


class MessageType(str, Enum):
    """Message type values matching database enum."""

    TEXT = "text"
    OFFER = "offer"
    QUOTE = "quote"
    SYSTEM = "system"


# Payload keys that identify a structured entity across several messages.
FOLD_KEYS = ("offer_id", "quote_id", "receipt_id")


class Message(TypedDict):
    """Message table row representation.

    Messages are append-only. Structured state (offers, quotes, receipts)
    is reconstructed by folding every message that shares a payload key.
    """

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    body: str
    message_type: MessageType
    payload: dict[str, Any]
    read_by: list[str]
    created_at: datetime


class MessageCreate(TypedDict, total=False):
    """Data required to create a new message.

    ``id`` is optional; callers pass a stable id to make the append idempotent.
    """

    id: str
    conversation_id: UUID
    sender_id: UUID
    body: str
    message_type: MessageType
    payload: dict[str, Any]


class MessageAttachment(TypedDict):
    """message_attachments table row representation."""

    id: UUID
    message_id: UUID
    conversation_id: UUID
    uploaded_by: UUID
    storage_path: str
    file_name: str
    mime_type: str
    size_bytes: int
    created_at: datetime
