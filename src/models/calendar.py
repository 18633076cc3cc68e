"""Professional calendar model type definitions."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID

CalendarStatus = Literal["scheduled", "in_process", "completed", "cancelled"]


class CalendarEntry(TypedDict):
    """pro_calendar_events table row representation.

    ``request_id`` is unique: a request has at most one calendar entry.
    """

    id: UUID
    pro_id: UUID
    request_id: UUID
    title: str
    scheduled_date: str | None
    scheduled_time: str | None
    status: CalendarStatus
    created_at: datetime
