"""Conversation API routes."""

import logging
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, Query, status

from src.api.deps import CurrentUser, check_rate_limit
from src.api.middleware.error_handler import ValidationError
from src.models.message import MessageType
from src.schemas.conversation import ConversationCreate, ConversationListResponse, ConversationResponse
from src.schemas.message import MessageCreate, MessageListResponse, MessageResponse
from src.schemas.offer import OfferCreate, OfferResponse, OfferState, OfferStateListResponse
from src.services.conversation_service import ConversationService
from src.services.offer_service import OfferService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])

# System and offer messages are written by the offer and payment flows only.
USER_MESSAGE_TYPES = (MessageType.TEXT, MessageType.QUOTE)


@router.get(
    "",
    response_model=ConversationListResponse,
    summary="List conversations",
    description="Conversations where the caller is client or professional, newest activity first.",
)
async def list_conversations(user: CurrentUser) -> ConversationListResponse:
    service = ConversationService()
    rows = await service.list_conversations(user.id)
    return ConversationListResponse(conversations=[ConversationResponse(**row) for row in rows])


@router.post(
    "",
    response_model=ConversationResponse,
    summary="Open a conversation",
    description="Returns the existing conversation with the professional for this request, or creates one.",
)
async def create_conversation(data: ConversationCreate, user: CurrentUser) -> ConversationResponse:
    service = ConversationService()
    conversation, is_new = await service.get_or_create_conversation(
        user.id,
        str(data.professional_id),
        str(data.request_id) if data.request_id else None,
    )
    if is_new:
        logger.info("User %s opened conversation %s", user.id, conversation["id"])
    return ConversationResponse(**conversation)


@router.get(
    "/{conversation_id}/messages",
    response_model=MessageListResponse,
    summary="List messages",
    description="Messages oldest first with cursor pagination.",
)
async def list_messages(
    conversation_id: UUID,
    user: CurrentUser,
    cursor: str | None = Query(default=None, description="created_at of the last message seen"),
    limit: int = Query(default=50, ge=1, le=100, description="Page size"),
) -> MessageListResponse:
    service = ConversationService()
    await service.require_participant(conversation_id, user.id)
    messages, next_cursor, has_more = await service.get_messages(conversation_id, cursor, limit)
    return MessageListResponse(messages=messages, next_cursor=next_cursor, has_more=has_more)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
    dependencies=[Depends(check_rate_limit("message.send"))],
)
async def send_message(conversation_id: UUID, data: MessageCreate, user: CurrentUser) -> MessageResponse:
    """Append a text or quote message from a participant."""
    if data.message_type not in USER_MESSAGE_TYPES:
        raise ValidationError(f"Messages of type '{data.message_type.value}' cannot be sent directly")

    service = ConversationService()
    await service.require_participant(conversation_id, user.id)
    try:
        message = await service.append_message(conversation_id, user.id, data.message_type, data.body, data.payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid message payload",
            details=[{"loc": [str(p) for p in err["loc"]], "msg": err["msg"], "type": err["type"]} for err in e.errors()],
        ) from e
    return MessageResponse(**message)


@router.post(
    "/{conversation_id}/read",
    summary="Mark conversation read",
)
async def mark_read(conversation_id: UUID, user: CurrentUser) -> dict[str, int]:
    service = ConversationService()
    await service.require_participant(conversation_id, user.id)
    return {"updated": await service.mark_read(conversation_id, user.id)}


@router.post(
    "/{conversation_id}/hide",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Hide conversation",
    description="Removes the conversation from the caller's inbox. Nothing is deleted.",
)
async def hide_conversation(conversation_id: UUID, user: CurrentUser) -> None:
    await ConversationService().hide_conversation(conversation_id, user.id)


@router.post(
    "/{conversation_id}/offers",
    response_model=OfferResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an offer",
    description="The client proposes a price for the job. The offer starts as pending.",
    dependencies=[Depends(check_rate_limit("offer.create"))],
)
async def create_offer(conversation_id: UUID, data: OfferCreate, user: CurrentUser) -> OfferResponse:
    offer = await OfferService().create_offer(conversation_id, user.id, data)
    return OfferResponse(**offer)


@router.get(
    "/{conversation_id}/offers",
    response_model=OfferStateListResponse,
    summary="Offer states",
    description="Offer states rebuilt from the conversation's messages.",
)
async def list_offer_states(conversation_id: UUID, user: CurrentUser) -> OfferStateListResponse:
    service = ConversationService()
    await service.require_participant(conversation_id, user.id)
    states = await service.offer_states(conversation_id)
    return OfferStateListResponse(offers=[OfferState(**state) for state in states])
