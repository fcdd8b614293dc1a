"""Price and validity figures shown on deal cards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from dealbot.db.models import Deal
from dealbot.utils.dates import days_until, format_date

CENT = Decimal("0.01")


def format_price(value: Decimal | None) -> str | None:
    if value is None or value == 0:
        return None
    return f"${value.quantize(CENT, rounding=ROUND_HALF_UP)}"


def percent_off(current: Decimal | None, source: Decimal | None) -> int | None:
    """Whole-percent discount from the source price, or None when it cannot be computed."""
    if current is None or source is None or source <= 0:
        return None
    percent = (source - current) / source * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def savings(deal: Deal) -> Decimal | None:
    if deal.discount_price is not None and deal.discount_price > 0:
        return deal.discount_price
    if deal.current_price is not None and deal.source_price is not None and deal.source_price > deal.current_price:
        return deal.source_price - deal.current_price
    return None


@dataclass(slots=True)
class Validity:
    days_left: int
    end_date: str

    @property
    def ends_today(self) -> bool:
        return self.days_left == 0


def validity(deal: Deal, now: datetime | None = None) -> Validity | None:
    if deal.end_time is None:
        return None
    days_left = days_until(deal.end_time, now)
    if days_left < 0:
        return None
    return Validity(days_left=days_left, end_date=format_date(deal.end_time))
