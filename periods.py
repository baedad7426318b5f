from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

CHART_RANGES: dict[str, tuple[str, Optional[int]]] = {
    "7D": ("Last 7 Days", 7),
    "1M": ("Last Month", 30),
    "3M": ("Last 3 Months", 90),
    "6M": ("Last 6 Months", 180),
    "ALL": ("All Time", None),
}


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(today: date) -> Period:
    """Calendar month containing ``today``, both ends inclusive."""
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period("this_month", first, next_month - date.resolution)


def chart_period(range_key: Optional[str], *, today: date) -> Period:
    key = (range_key or "1M").upper()
    if key not in CHART_RANGES:
        raise ValueError(
            f"Unknown range '{range_key}'; expected one of {', '.join(CHART_RANGES)}"
        )
    _label, days = CHART_RANGES[key]
    if days is None:
        return Period(key, date(1970, 1, 1), today)
    return Period(key, today - timedelta(days=days), today)
