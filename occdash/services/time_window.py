"""Time window and month bucket resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple, Union

from occdash.services.labels import Labels
from occdash.utils.filter_params import Filter
from occdash.utils.local_dates import (
    TzLike,
    end_of_day,
    last_day_of_month,
    monday_of,
    parse_date,
    parse_year_month,
    start_of_day,
    today as local_today,
    zone,
)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def intersect(self, other: "TimeWindow") -> "TimeWindow":
        return TimeWindow(max(self.start, other.start), min(self.end, other.end))

    def is_empty(self) -> bool:
        return self.start > self.end


@dataclass(frozen=True)
class MonthBucket:
    start: datetime
    end: datetime
    label: str
    year_month: str


@dataclass(frozen=True)
class ResolvedWindow:
    """``window`` is the year or custom range; ``facet_window`` is what
    non-monthly facets query (the active month, when there is one)."""

    window: TimeWindow
    facet_window: TimeWindow
    buckets: Tuple[MonthBucket, ...]
    month: Optional[str] = None


DateLike = Union[str, date]


class TimeWindowResolver:
    def __init__(self, tz: TzLike, labels: Labels):
        self.tz = zone(tz)
        self.labels = labels

    # ---------- intervals ----------

    def day_window(self, first: date, last: date) -> TimeWindow:
        return TimeWindow(start_of_day(first, self.tz), end_of_day(last, self.tz))

    def year_window(self, year: int) -> TimeWindow:
        return self.day_window(date(year, 1, 1), date(year, 12, 31))

    def month_window(self, year: int, month: int) -> TimeWindow:
        return self.day_window(date(year, month, 1), last_day_of_month(year, month))

    def week_window(self, week_start: date) -> TimeWindow:
        """Monday 00:00 through Friday 23:59:59.999 of the week containing ``week_start``."""
        monday = monday_of(week_start)
        return self.day_window(monday, monday + timedelta(days=4))

    # ---------- buckets ----------

    def year_buckets(self, year: int, today: date) -> List[MonthBucket]:
        last_month = today.month if year == today.year else 12
        buckets: List[MonthBucket] = []
        for month in range(1, last_month + 1):
            window = self.month_window(year, month)
            buckets.append(
                MonthBucket(window.start, window.end, self.labels.month(year, month), f"{year:04d}-{month:02d}")
            )
        return buckets

    def custom_buckets(self, first: date, last: date) -> List[MonthBucket]:
        """Calendar-month buckets whose outer edges are the literal custom bounds."""
        buckets: List[MonthBucket] = []
        year, month = first.year, first.month
        while (year, month) <= (last.year, last.month):
            window = self.month_window(year, month)
            start = start_of_day(first, self.tz) if (year, month) == (first.year, first.month) else window.start
            end = end_of_day(last, self.tz) if (year, month) == (last.year, last.month) else window.end
            buckets.append(
                MonthBucket(start, end, self.labels.month(year, month, with_year=True), f"{year:04d}-{month:02d}")
            )
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return buckets

    # ---------- resolution ----------

    def resolve(
        self,
        selected_year: int,
        custom_start: Optional[DateLike] = None,
        custom_end: Optional[DateLike] = None,
        month: Optional[Union[Filter, str]] = None,
        today: Optional[date] = None,
    ) -> ResolvedWindow:
        today = today or local_today(self.tz)

        if custom_start and custom_end:
            first, last = parse_date(custom_start), parse_date(custom_end)
            if first > last:
                raise ValueError(f"Custom range start {first} is after end {last}")
            window = self.day_window(first, last)
            buckets = self.custom_buckets(first, last)
        else:
            window = self.year_window(int(selected_year))
            buckets = self.year_buckets(int(selected_year), today)

        month_value = month.value if isinstance(month, Filter) else month
        facet_window = window
        if month_value:
            facet_window = self.month_window(*parse_year_month(month_value))

        return ResolvedWindow(window, facet_window, tuple(buckets), month_value or None)


__all__ = ["MonthBucket", "ResolvedWindow", "TimeWindow", "TimeWindowResolver"]
