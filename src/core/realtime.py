"""Realtime broadcast of chat events over Supabase Realtime.

Messages are pushed to ``conversation:<id>`` topics through the Realtime
REST broadcast endpoint. Publishing is fire-and-forget: a failed broadcast
is logged and never fails the write that triggered it, since clients
re-read the conversation on reconnect.
"""

import logging
from functools import lru_cache
from typing import Any

import httpx

from src.core.config import get_settings

logger = logging.getLogger(__name__)

MESSAGE_CREATED_EVENT = "message.created"
MESSAGE_UPDATED_EVENT = "message.updated"


def conversation_topic(conversation_id: str) -> str:
    """Topic name for a conversation's realtime channel."""
    return f"conversation:{conversation_id}"


class RealtimeBus:
    """Publisher for Supabase Realtime broadcast messages."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0) -> None:
        self.endpoint = f"{base_url.rstrip('/')}/realtime/v1/api/broadcast"
        self.api_key = api_key
        self.timeout = timeout

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> bool:
        """Broadcast an event to a topic.

        Args:
            topic: Channel topic, e.g. ``conversation:<id>``.
            event: Event name.
            payload: JSON-serializable payload.

        Returns:
            True if the broadcast was accepted, False otherwise.
        """
        body = {
            "messages": [
                {"topic": topic, "event": event, "payload": payload, "private": False},
            ]
        }
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=body, headers=headers)
            if response.status_code >= 400:
                logger.warning(
                    "Realtime broadcast to %s rejected: %s %s",
                    topic,
                    response.status_code,
                    response.text[:200],
                )
                return False
            return True
        except httpx.HTTPError as e:
            logger.warning("Realtime broadcast to %s failed: %s", topic, e)
            return False

    async def publish_message(self, message: dict[str, Any], event: str = MESSAGE_CREATED_EVENT) -> bool:
        """Broadcast a stored message row on its conversation topic."""
        conversation_id = str(message.get("conversation_id", ""))
        if not conversation_id:
            return False
        return await self.publish(conversation_topic(conversation_id), event, message)


@lru_cache
def get_realtime_bus() -> RealtimeBus:
    """Get cached realtime bus singleton."""
    settings = get_settings()
    return RealtimeBus(settings.supabase_url, settings.supabase_secret_key)
