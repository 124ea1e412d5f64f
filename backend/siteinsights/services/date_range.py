"""
Date range vocabulary shared by the aggregation branches.

Dashboards send ``today``, ``7d``/``7days``, ``30d``/``30days`` or
``90d``/``90days``. Anything else falls back to seven days.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

DEFAULT_DATE_RANGE = "7days"

_RANGE_DAYS: dict[str, int] = {
    "today": 0,
    "7d": 7,
    "7days": 7,
    "30d": 30,
    "30days": 30,
    "90d": 90,
    "90days": 90,
}


@dataclass(frozen=True)
class DateWindow:
    """A resolved range: how many days back and where the window starts."""

    label: str
    days: int
    start: datetime
    end: datetime

    @property
    def is_today(self) -> bool:
        return self.days == 0

    @property
    def cache_key(self) -> str:
        """Canonical label, so ``7d`` and ``7days`` share one cache row."""
        return "today" if self.is_today else f"{self.days}d"

    def ga_relative_dates(self) -> tuple[str, str]:
        """Start/end in the Analytics Data API's relative vocabulary."""
        if self.is_today:
            return "today", "today"
        return f"{self.days}daysAgo", "today"

    def calendar_dates(self) -> tuple[date, date]:
        """Absolute start/end dates, as Search Console expects."""
        return self.start.date(), self.end.date()


def resolve_date_range(label: Optional[str], now: Optional[datetime] = None) -> DateWindow:
    """Resolve a dashboard range label into a concrete UTC window."""
    now = now or datetime.now(timezone.utc)
    key = (label or DEFAULT_DATE_RANGE).strip().lower()
    days = _RANGE_DAYS.get(key, 7)

    if days == 0:
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    else:
        start = now - timedelta(days=days)

    return DateWindow(label=label or DEFAULT_DATE_RANGE, days=days, start=start, end=now)
