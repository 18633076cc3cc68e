"""Professional calendar entries.

``pro_calendar_events`` holds one row per request (``request_id`` is
unique), so every write is an upsert on that key.
"""

import logging
from typing import Any
from uuid import UUID

from src.core.supabase import get_supabase_client
from src.services.view_cache import get_view_cache, pro_calendar_tag

logger = logging.getLogger(__name__)


class CalendarService:
    """Service for the professional's calendar projection."""

    def __init__(self) -> None:
        self.client = get_supabase_client()
        self.cache = get_view_cache()

    async def upsert_entry(
        self,
        pro_id: str,
        request_id: str,
        title: str,
        scheduled_date: str | None,
        scheduled_time: str | None,
        status: str = "scheduled",
        only_if_missing: bool = False,
    ) -> bool:
        """Create or refresh the calendar entry of a request.

        Args:
            pro_id: Professional who owns the entry.
            request_id: Request (unique key).
            title: Display title.
            scheduled_date: Date (YYYY-MM-DD).
            scheduled_time: Time (HH:MM).
            status: Entry status.
            only_if_missing: Leave an existing entry untouched.

        Returns:
            bool: True if a row was written.
        """
        entry = {
            "pro_id": str(pro_id),
            "request_id": str(request_id),
            "title": title or "Servicio",
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "status": status,
        }
        response = (
            self.client.table("pro_calendar_events")
            .upsert(entry, on_conflict="request_id", ignore_duplicates=only_if_missing)
            .execute()
        )
        self.cache.invalidate(pro_calendar_tag(str(pro_id)))
        return bool(response.data)

    async def set_status(self, request_id: str, status: str) -> None:
        """Update the status of a request's entry, if it has one."""
        response = (
            self.client.table("pro_calendar_events")
            .update({"status": status})
            .eq("request_id", str(request_id))
            .execute()
        )
        for row in response.data or []:
            self.cache.invalidate(pro_calendar_tag(str(row["pro_id"])))

    async def list_for_pro(self, pro_id: UUID | str) -> list[dict[str, Any]]:
        """Calendar entries of a professional, soonest first. Cached per pro."""
        key = pro_calendar_tag(str(pro_id))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        response = (
            self.client.table("pro_calendar_events")
            .select("*")
            .eq("pro_id", str(pro_id))
            .order("scheduled_date", desc=False)
            .execute()
        )
        entries = response.data or []
        self.cache.set(key, entries)
        return entries
