from dataclasses import dataclass
from datetime import date
from typing import Optional

from clock import days_in_month, local_today, shift_days


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, target: date) -> bool:
        # both bounds inclusive
        return self.start <= target <= self.end


def month_period(year: int, month: int) -> Period:
    return Period(
        f"{year:04d}-{month:02d}",
        date(year, month, 1),
        date(year, month, days_in_month(year, month)),
    )


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
    lead_days: int = 3,
) -> Optional[Period]:
    """Map a history filter to a concrete window; ``None`` means unbounded."""
    today = today or local_today()
    if not period or period == "all":
        return None
    if period == "this_month":
        window = month_period(today.year, today.month)
        return Period("this_month", window.start, window.end)
    if period == "last_month":
        last_month_end = today.replace(day=1) - date.resolution
        window = month_period(last_month_end.year, last_month_end.month)
        return Period("last_month", window.start, window.end)
    if period == "next_days":
        # tomorrow through the end of the reminder lead window
        return Period("next_days", shift_days(today, 1), shift_days(today, lead_days))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    raise ValueError(f"Unknown period: {period}")
