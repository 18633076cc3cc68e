"""Professional calendar and dashboard routes."""

from fastapi import APIRouter, Query

from src.api.deps import CurrentUser
from src.schemas.fulfillment import CalendarEntryResponse, CalendarResponse, DashboardResponse, Interval
from src.services.calendar_service import CalendarService
from src.services.fulfillment_service import FulfillmentService

router = APIRouter(prefix="/pro", tags=["pro"])


@router.get("/calendar", response_model=CalendarResponse, summary="Professional calendar")
async def get_calendar(user: CurrentUser) -> CalendarResponse:
    entries = await CalendarService().list_for_pro(user.id)
    return CalendarResponse(entries=[CalendarEntryResponse(**entry) for entry in entries])


@router.get("/dashboard", response_model=DashboardResponse, summary="Professional KPIs")
async def get_dashboard(
    user: CurrentUser,
    interval: Interval = Query(default="month", description="Earnings bucket size"),
) -> DashboardResponse:
    return await FulfillmentService().get_dashboard(user.id, interval)
