"""Conversation Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConversationCreate(BaseModel):
    """Schema for opening (or re-opening) a conversation.

    The caller is the client; the conversation is with ``professional_id``.
    """

    model_config = ConfigDict(from_attributes=True)

    professional_id: UUID = Field(..., description="Professional participant")
    request_id: UUID | None = Field(default=None, description="Request the conversation is about")


class ConversationResponse(BaseModel):
    """Schema for conversation API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Conversation unique identifier")
    customer_id: UUID = Field(description="Client participant")
    pro_id: UUID = Field(description="Professional participant")
    request_id: UUID | None = Field(default=None, description="Associated request")
    last_message_at: datetime | None = Field(default=None, description="Timestamp of last message")
    created_at: datetime = Field(description="Creation timestamp")


class ConversationListResponse(BaseModel):
    """Schema for conversation list response."""

    model_config = ConfigDict(from_attributes=True)

    conversations: list[ConversationResponse] = Field(description="Conversations, newest activity first")
