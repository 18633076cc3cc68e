"""Professional calendar and dashboard schemas."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

Interval = Literal["week", "fortnight", "month"]


class CalendarEntryResponse(BaseModel):
    """A scheduled job on the professional's calendar."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID | None = None
    request_id: UUID
    title: str
    scheduled_date: str | None = None
    scheduled_time: str | None = None
    status: str


class CalendarResponse(BaseModel):
    entries: list[CalendarEntryResponse]


class EarningsBucket(BaseModel):
    """Earnings for one period."""

    label: str = Field(description="Period label, e.g. '2026-10-01'")
    start: str = Field(description="Period start date (inclusive)")
    end: str = Field(description="Period end date (exclusive)")
    total: float = Field(description="Earnings in the period")


class DashboardResponse(BaseModel):
    """Professional KPIs derived from agreements and requests."""

    in_progress: int = Field(description="Agreements paid or in progress")
    completed: int = Field(description="Completed agreements")
    potential: int = Field(description="Agreements still negotiating or accepted")
    total_earnings: float = Field(description="Sum over paid-through agreements")
    interval: Interval = Field(description="Bucket size for earnings_by_period")
    earnings_by_period: list[EarningsBucket] = Field(description="Last six periods, oldest first")
