"""Conversation model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Conversation(TypedDict):
    """Conversation table row representation.

    A conversation joins one client (customer) and one professional,
    optionally about a specific request. Conversations are never deleted;
    each participant may hide it from their own inbox.
    """

    id: UUID
    customer_id: UUID
    pro_id: UUID
    request_id: UUID | None
    last_message_at: datetime | None
    hidden_for: list[str]
    created_at: datetime


class ConversationCreate(TypedDict, total=False):
    """Data required to create a new conversation."""

    customer_id: UUID
    pro_id: UUID
    request_id: UUID | None
