"""Professional dashboard projection.

KPIs and earnings are derived from agreement and request rows on read;
nothing here is stored. Agreements whose request cannot be loaded are
left out of every figure.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from src.core.supabase import get_supabase_client
from src.models.agreement import NEGOTIABLE, AgreementStatus
from src.schemas.fulfillment import DashboardResponse, EarningsBucket, Interval
from src.services.request_service import RequestService
from src.services.view_cache import get_view_cache, pro_dashboard_tag, request_tag

logger = logging.getLogger(__name__)

PERIODS = 6

IN_PROGRESS = frozenset({AgreementStatus.PAID, AgreementStatus.IN_PROGRESS})
EARNING = frozenset({AgreementStatus.PAID, AgreementStatus.IN_PROGRESS, AgreementStatus.COMPLETED})


def _status(agreement: dict[str, Any]) -> AgreementStatus | None:
    try:
        return AgreementStatus(agreement.get("status"))
    except ValueError:
        return None


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _next_month(d: date) -> date:
    return date(d.year + (d.month // 12), d.month % 12 + 1, 1)


def _previous_month(d: date) -> date:
    return date(d.year - (1 if d.month == 1 else 0), 12 if d.month == 1 else d.month - 1, 1)


def period_boundaries(interval: Interval, today: date, periods: int = PERIODS) -> list[tuple[date, date]]:
    """[start, end) ranges for the last ``periods`` periods, oldest first.

    Weeks start on Monday; fortnights are the 1st-15th and the 16th to the
    end of the month.
    """
    if interval == "week":
        start = today - timedelta(days=today.weekday())
    elif interval == "fortnight":
        start = today.replace(day=1 if today.day <= 15 else 16)
    else:
        start = today.replace(day=1)

    ranges: list[tuple[date, date]] = []
    for _ in range(periods):
        if interval == "week":
            end = start + timedelta(days=7)
            previous = start - timedelta(days=7)
        elif interval == "fortnight":
            end = start.replace(day=16) if start.day == 1 else _next_month(start)
            previous = _previous_month(start).replace(day=16) if start.day == 1 else start.replace(day=1)
        else:
            end = _next_month(start)
            previous = _previous_month(start)
        ranges.insert(0, (start, end))
        start = previous
    return ranges


def resolvable(agreements: list[dict[str, Any]], requests: dict[str, dict[str, Any]]) -> list[dict[str, Any]]:
    """Agreements whose request exists."""
    kept = [a for a in agreements if str(a.get("request_id")) in requests]
    if len(kept) != len(agreements):
        logger.debug("Omitting %d agreements without a resolvable request", len(agreements) - len(kept))
    return kept


def compute_kpis(agreements: list[dict[str, Any]], requests: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Counts and total earnings over resolvable agreements."""
    rows = resolvable(agreements, requests)
    statuses = [_status(a) for a in rows]
    return {
        "in_progress": sum(1 for s in statuses if s in IN_PROGRESS),
        "completed": sum(1 for s in statuses if s == AgreementStatus.COMPLETED),
        "potential": sum(1 for s in statuses if s in NEGOTIABLE),
        "total_earnings": round(
            sum(float(a.get("amount") or 0) for a, s in zip(rows, statuses) if s in EARNING), 2
        ),
    }


def earnings_by_period(
    agreements: list[dict[str, Any]],
    requests: dict[str, dict[str, Any]],
    interval: Interval,
    today: date,
) -> list[EarningsBucket]:
    """Completed-agreement earnings bucketed by completion date."""
    buckets = [
        {"start": start, "end": end, "total": 0.0} for start, end in period_boundaries(interval, today)
    ]
    for agreement in resolvable(agreements, requests):
        if _status(agreement) != AgreementStatus.COMPLETED:
            continue
        when = _as_date(agreement.get("completed_at") or agreement.get("updated_at"))
        if when is None:
            continue
        for bucket in buckets:
            if bucket["start"] <= when < bucket["end"]:
                bucket["total"] += float(agreement.get("amount") or 0)
                break

    return [
        EarningsBucket(
            label=b["start"].isoformat(),
            start=b["start"].isoformat(),
            end=b["end"].isoformat(),
            total=round(b["total"], 2),
        )
        for b in buckets
    ]


class FulfillmentService:
    """Read views for professionals."""

    def __init__(self) -> None:
        self.client = get_supabase_client()
        self.requests = RequestService()
        self.cache = get_view_cache()

    async def get_dashboard(
        self,
        pro_id: UUID | str,
        interval: Interval = "month",
        today: date | None = None,
    ) -> DashboardResponse:
        """KPIs and earnings for a professional. Cached per pro and interval."""
        key = f"{pro_dashboard_tag(str(pro_id))}:{interval}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        response = (
            self.client.table("agreements")
            .select("*")
            .eq("professional_id", str(pro_id))
            .execute()
        )
        agreements = response.data or []
        request_ids = [str(a["request_id"]) for a in agreements if a.get("request_id")]
        requests = await self.requests.get_requests(request_ids)

        dashboard = DashboardResponse(
            **compute_kpis(agreements, requests),
            interval=interval,
            earnings_by_period=earnings_by_period(agreements, requests, interval, today or date.today()),
        )
        self.cache.set(
            key,
            dashboard,
            tags=[pro_dashboard_tag(str(pro_id)), *(request_tag(rid) for rid in requests)],
        )
        return dashboard
