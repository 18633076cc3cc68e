"""Conversation and message store.

Messages are append-only. Every append bumps the conversation's
``last_message_at`` and is broadcast on the conversation's realtime topic.
Callers that run multi-step transitions write the authoritative rows first
and append the message last.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import NotFoundError, PermissionDeniedError, ValidationError
from src.core.realtime import MESSAGE_UPDATED_EVENT, get_realtime_bus
from src.core.supabase import get_supabase_client
from src.models.message import FOLD_KEYS, MessageType
from src.schemas.message import MessageResponse, dump_payload, parse_payload
from src.services.message_fold import fold_all_offers, fold_key

logger = logging.getLogger(__name__)


def stable_message_id(seed: str) -> str:
    """Deterministic UUID-shaped id derived from ``seed``.

    Appending twice with the same stable id stores a single message.
    """
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:32]
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:]}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationService:
    """Service for managing conversations and messages."""

    DEFAULT_PAGE_SIZE = 50

    def __init__(self) -> None:
        """Initialize conversation service with Supabase client."""
        self.client = get_supabase_client()
        self.realtime = get_realtime_bus()

    # Conversation operations

    async def get_or_create_conversation(
        self,
        customer_id: str,
        pro_id: str,
        request_id: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Return the conversation for a (client, professional, request) triple.

        Args:
            customer_id: Client participant.
            pro_id: Professional participant.
            request_id: Optional request the conversation is about.

        Returns:
            tuple: (conversation_data, is_new).

        Raises:
            ValidationError: If both participants are the same user.
        """
        if str(customer_id) == str(pro_id):
            raise ValidationError("A conversation needs two different participants")

        query = (
            self.client.table("conversations")
            .select("*")
            .eq("customer_id", str(customer_id))
            .eq("pro_id", str(pro_id))
        )
        query = query.eq("request_id", str(request_id)) if request_id else query.is_("request_id", "null")
        response = query.limit(1).execute()
        if response.data:
            return response.data[0], False

        conversation_data = {
            "customer_id": str(customer_id),
            "pro_id": str(pro_id),
            "request_id": str(request_id) if request_id else None,
            "hidden_for": [],
        }
        response = self.client.table("conversations").insert(conversation_data).execute()
        logger.info("Created conversation %s between %s and %s", response.data[0]["id"], customer_id, pro_id)
        return response.data[0], True

    async def get_conversation(self, conversation_id: UUID | str) -> dict[str, Any] | None:
        """Get a conversation by ID.

        Returns:
            dict | None: The conversation data or None if not found.
        """
        response = (
            self.client.table("conversations")
            .select("*")
            .eq("id", str(conversation_id))
            .maybe_single()
            .execute()
        )

        return response.data if response and response.data else None

    async def require_participant(self, conversation_id: UUID | str, user_id: UUID | str) -> dict[str, Any]:
        """Load a conversation and check that ``user_id`` takes part in it.

        Raises:
            NotFoundError: If the conversation does not exist.
            PermissionDeniedError: If the user is not a participant.
        """
        conversation = await self.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError("Conversation not found")
        if str(user_id) not in (str(conversation.get("customer_id")), str(conversation.get("pro_id"))):
            raise PermissionDeniedError("You are not a participant in this conversation")
        return conversation

    async def list_conversations(self, viewer_id: UUID | str) -> list[dict[str, Any]]:
        """List the viewer's conversations, newest activity first.

        Conversations the viewer has hidden are omitted.
        """
        viewer = str(viewer_id)
        rows: dict[str, dict[str, Any]] = {}
        for column in ("customer_id", "pro_id"):
            response = self.client.table("conversations").select("*").eq(column, viewer).execute()
            for row in response.data or []:
                rows[str(row["id"])] = row

        visible = [row for row in rows.values() if viewer not in (row.get("hidden_for") or [])]
        visible.sort(
            key=lambda row: str(row.get("last_message_at") or row.get("created_at") or ""),
            reverse=True,
        )
        return visible

    async def hide_conversation(self, conversation_id: UUID | str, viewer_id: UUID | str) -> dict[str, Any]:
        """Hide a conversation from the viewer's inbox. Nothing is deleted."""
        conversation = await self.require_participant(conversation_id, viewer_id)
        hidden_for = list(conversation.get("hidden_for") or [])
        if str(viewer_id) in hidden_for:
            return conversation

        hidden_for.append(str(viewer_id))
        response = (
            self.client.table("conversations")
            .update({"hidden_for": hidden_for})
            .eq("id", str(conversation_id))
            .execute()
        )
        return response.data[0] if response.data else conversation

    # Message operations

    def _build_message(
        self,
        conversation_id: UUID | str,
        sender_id: UUID | str,
        message_type: MessageType,
        body: str,
        payload: dict[str, Any] | None,
        message_id: str | None,
    ) -> dict[str, Any]:
        typed = parse_payload(message_type, payload)
        message_data: dict[str, Any] = {
            "conversation_id": str(conversation_id),
            "sender_id": str(sender_id),
            "body": body,
            "message_type": MessageType(message_type).value,
            "payload": dump_payload(typed) if typed is not None else {},
            "read_by": [str(sender_id)],
        }
        if message_id:
            message_data["id"] = message_id
        return message_data

    async def _after_append(self, message: dict[str, Any]) -> None:
        self.client.table("conversations").update(
            {"last_message_at": message.get("created_at") or _now_iso()}
        ).eq("id", str(message["conversation_id"])).execute()
        await self.realtime.publish_message(message)

    async def append_message(
        self,
        conversation_id: UUID | str,
        sender_id: UUID | str,
        message_type: MessageType,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append a message to a conversation.

        Args:
            conversation_id: The conversation's UUID.
            sender_id: Author of the message.
            message_type: text, offer, quote or system.
            body: Display text.
            payload: Structured payload, validated against its message type.

        Returns:
            dict: The created message data.

        Raises:
            pydantic.ValidationError: If the payload does not match the type.
        """
        message_data = self._build_message(conversation_id, sender_id, message_type, body, payload, None)
        response = self.client.table("messages").insert(message_data).execute()
        message = response.data[0]
        await self._after_append(message)
        return message

    async def append_message_once(
        self,
        message_id: str,
        conversation_id: UUID | str,
        sender_id: UUID | str,
        message_type: MessageType,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Append a message under a stable id.

        Returns:
            dict | None: The created message, or None if a message with this
            id already existed (nothing is updated or broadcast).
        """
        message_data = self._build_message(conversation_id, sender_id, message_type, body, payload, message_id)
        response = (
            self.client.table("messages")
            .upsert(message_data, on_conflict="id", ignore_duplicates=True)
            .execute()
        )
        if not response.data:
            logger.debug("Message %s already exists, skipping append", message_id)
            return None

        message = response.data[0]
        await self._after_append(message)
        return message

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Get a single message by id."""
        response = (
            self.client.table("messages")
            .select("*")
            .eq("id", str(message_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def find_system_message(
        self,
        conversation_id: UUID | str,
        match: dict[str, Any],
        message_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Find a system message whose payload contains ``match``.

        When ``message_id`` is given it is checked first, so a message
        appended under a stable id is found even if its payload changed.
        """
        if message_id:
            existing = await self.get_message(message_id)
            if existing:
                return existing

        response = (
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .eq("message_type", MessageType.SYSTEM.value)
            .contains("payload", match)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def update_message_payload(self, message: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
        """Merge ``changes`` into a message's payload in place.

        Used to upgrade a placeholder receipt reference once the canonical
        receipt exists. The message keeps its id and position in the log.
        """
        payload = {**(message.get("payload") or {}), **changes}
        response = (
            self.client.table("messages")
            .update({"payload": payload})
            .eq("id", str(message["id"]))
            .execute()
        )
        updated = response.data[0] if response.data else {**message, "payload": payload}
        await self.realtime.publish_message(updated, event=MESSAGE_UPDATED_EVENT)
        return updated

    async def get_messages(
        self,
        conversation_id: UUID | str,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> tuple[list[MessageResponse], str | None, bool]:
        """Get messages from a conversation with pagination.

        Args:
            conversation_id: The conversation's UUID.
            cursor: Pagination cursor (ISO datetime string).
            limit: Maximum results to return.

        Returns:
            tuple: (messages, next_cursor, has_more)
        """
        page_size = limit or self.DEFAULT_PAGE_SIZE

        query = (
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=False)  # Oldest first for display
            .limit(page_size + 1)
        )

        if cursor:
            query = query.gt("created_at", cursor)

        response = query.execute()
        rows = response.data or []

        has_more = len(rows) > page_size
        if has_more:
            rows = rows[:page_size]

        next_cursor = None
        if has_more and rows:
            next_cursor = rows[-1]["created_at"]

        messages = [
            MessageResponse(
                id=row["id"],
                conversation_id=row["conversation_id"],
                sender_id=row["sender_id"],
                body=row.get("body") or "",
                message_type=row["message_type"],
                payload=row.get("payload") or {},
                read_by=row.get("read_by") or [],
                created_at=row["created_at"],
            )
            for row in rows
        ]

        return messages, next_cursor, has_more

    async def _all_messages(self, conversation_id: UUID | str) -> list[dict[str, Any]]:
        response = (
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=False)
            .execute()
        )
        return response.data or []

    async def fold(self, conversation_id: UUID | str, key: str, value: str) -> dict[str, Any] | None:
        """Latest merged payload for a structured key (offer_id, quote_id, receipt_id)."""
        if key not in FOLD_KEYS:
            raise ValidationError(f"Cannot fold messages by {key}")
        return fold_key(await self._all_messages(conversation_id), key, value)

    async def offer_states(self, conversation_id: UUID | str) -> list[dict[str, Any]]:
        """Folded state of every offer in the conversation."""
        return fold_all_offers(await self._all_messages(conversation_id))

    async def mark_read(self, conversation_id: UUID | str, viewer_id: UUID | str) -> int:
        """Add the viewer to ``read_by`` on every message they have not read.

        Returns:
            Number of messages updated.
        """
        viewer = str(viewer_id)
        updated = 0
        for message in await self._all_messages(conversation_id):
            read_by = list(message.get("read_by") or [])
            if viewer in read_by:
                continue
            read_by.append(viewer)
            self.client.table("messages").update({"read_by": read_by}).eq("id", str(message["id"])).execute()
            updated += 1
        return updated
