"""Client-facing fee schedule for offer payments.

All arithmetic is in integer minor units. The commission is a share of the
service price clamped to a floor and a ceiling; tax is charged over the
service price plus commission.
"""

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.core.config import get_settings


@dataclass(frozen=True)
class FeeBreakdown:
    """Amounts charged to the client, in minor units."""

    base_cents: int
    commission_cents: int
    iva_cents: int
    total_cents: int

    def as_metadata(self) -> dict[str, str]:
        """Stripe metadata values must be strings."""
        return {k: str(v) for k, v in asdict(self).items()}

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> "FeeBreakdown | None":
        """Rebuild from checkout metadata; None if any amount is missing."""
        try:
            values = {k: int(str(metadata[k])) for k in ("base_cents", "commission_cents", "iva_cents", "total_cents")}
        except (KeyError, ValueError):
            return None
        return cls(**values)


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor_units(amount: Decimal | float | int | str) -> int:
    """Convert a decimal amount to integer cents."""
    return _round(Decimal(str(amount)) * 100)


def compute_client_totals_cents(amount: Decimal | float | int | str) -> FeeBreakdown:
    """Compute the client charge for a service price.

    Args:
        amount: Service price in major units (e.g. 1500.00 MXN).

    Returns:
        FeeBreakdown with base, commission, tax and total in cents.
    """
    settings = get_settings()
    base = max(0, to_minor_units(amount))
    if base == 0:
        return FeeBreakdown(0, 0, 0, 0)

    commission = _round(Decimal(base) * Decimal(str(settings.commission_rate)))
    commission = min(max(commission, settings.commission_min_cents), settings.commission_max_cents)
    iva = _round(Decimal(base + commission) * Decimal(str(settings.iva_rate)))
    return FeeBreakdown(
        base_cents=base,
        commission_cents=commission,
        iva_cents=iva,
        total_cents=base + commission + iva,
    )
