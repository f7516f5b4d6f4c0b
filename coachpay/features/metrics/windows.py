"""
Metric windows: half-open [start, end) intervals paired with the
equal-length window immediately before them.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from coachpay.core.timestamps import TimestampParseError, parse_query_date

DEFAULT_WINDOW_DAYS = 30
ONE_DAY = timedelta(days=1)
EPSILON = timedelta(microseconds=1)


@dataclass(frozen=True)
class MetricWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("Window end must be after start")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "MetricWindow":
        """The window of equal length ending where this one starts."""
        return MetricWindow(self.start - self.duration, self.start)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def day_count(self) -> int:
        """Number of UTC calendar dates the window touches."""
        first = self.start.astimezone(timezone.utc).date()
        last = (self.end - EPSILON).astimezone(timezone.utc).date()
        return (last - first).days + 1

    def days(self) -> List[date]:
        """Every UTC calendar date from start through the last instant before end."""
        first = self.start.astimezone(timezone.utc).date()
        return [first + ONE_DAY * i for i in range(self.day_count())]


def window_from_query(start_date: Optional[str], end_date: Optional[str], now: Optional[datetime] = None) -> MetricWindow:
    """
    Build a window from startDate/endDate query values.

    Missing endDate means now; missing startDate means 30 days before end.

    Raises:
        ValueError: If a date is malformed or the range is empty. Also
            when the comparison window would start before datetime.min.
    """
    try:
        end = parse_query_date(end_date) if end_date else (now or datetime.now(timezone.utc))
        start = parse_query_date(start_date) if start_date else end - timedelta(days=DEFAULT_WINDOW_DAYS)
    except TimestampParseError as e:
        raise ValueError(f"Invalid date range: {e}") from e
    except OverflowError as e:
        raise ValueError("Date range is out of bounds") from e
    if end <= start:
        raise ValueError("startDate must be before endDate")

    window = MetricWindow(start, end)
    try:
        window.previous()
    except OverflowError as e:
        raise ValueError("Date range is out of bounds") from e
    return window
