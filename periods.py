from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


REPORT_TIMEFRAMES = {
    7: "Last 7 days",
    30: "Last 30 days",
    90: "Last 90 days",
    365: "Last year",
}
DEFAULT_TIMEFRAME = 30


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return Period(
        f"{year:04d}-{month:02d}", month_start(year, month), month_end(year, month)
    )


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def trailing_months(year: int, month: int, count: int) -> list[date]:
    """First days of the `count` months ending at year/month, oldest first."""
    if count < 1:
        raise ValueError("Window must cover at least one month")
    anchor = month_start(year, month)
    return [add_months(anchor, offset) for offset in range(-(count - 1), 1)]


def resolve_timeframe(days: Optional[int], *, today: Optional[date] = None) -> Period:
    today = today or date.today()
    days = DEFAULT_TIMEFRAME if days is None else days
    if days not in REPORT_TIMEFRAMES:
        allowed = ", ".join(str(d) for d in REPORT_TIMEFRAMES)
        raise ValueError(f"Timeframe must be one of {allowed}")
    return Period(f"last_{days}_days", today - timedelta(days=days), today)
