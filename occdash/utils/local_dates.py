"""Local-calendar helpers.

Every day, weekday and week derived from an occurrence timestamp goes
through :func:`to_local`, so filtering and labeling always agree on which
local calendar day an instant belongs to.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, tzinfo
from typing import Tuple, Union
from zoneinfo import ZoneInfo

import pandas as pd

TzLike = Union[str, tzinfo]


def zone(tz: TzLike) -> tzinfo:
    return ZoneInfo(tz) if isinstance(tz, str) else tz


def to_local(values: pd.Series, tz: TzLike) -> pd.Series:
    """Convert instants to wall-clock time in ``tz``.

    Naive values are taken as UTC; aware values keep their absolute instant.
    """
    return pd.to_datetime(values, utc=True).dt.tz_convert(zone(tz))


def local_date_keys(values: pd.Series, tz: TzLike) -> pd.Series:
    """``YYYY-MM-DD`` of each instant, from local year/month/day fields."""
    return to_local(values, tz).dt.strftime("%Y-%m-%d")


def local_isoweekdays(values: pd.Series, tz: TzLike) -> pd.Series:
    """ISO weekday (Monday=1 .. Sunday=7) of each instant in ``tz``."""
    return to_local(values, tz).dt.dayofweek + 1


def local_iso_weeks(values: pd.Series, tz: TzLike) -> pd.Series:
    """ISO ``(year, week)`` identifier of each instant, encoded as ``year*100 + week``."""
    iso = to_local(values, tz).dt.isocalendar()
    return iso["year"].astype("int64") * 100 + iso["week"].astype("int64")


def start_of_day(day: date, tz: TzLike) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=zone(tz))


def end_of_day(day: date, tz: TzLike) -> datetime:
    return datetime(day.year, day.month, day.day, 23, 59, 59, 999000, tzinfo=zone(tz))


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def today(tz: TzLike) -> date:
    return datetime.now(zone(tz)).date()


def parse_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


def parse_year_month(value: str) -> Tuple[int, int]:
    """Parse ``YYYY-MM`` into ``(year, month)``."""
    parsed = datetime.strptime(str(value).strip(), "%Y-%m")
    return parsed.year, parsed.month


def format_day_month(day: date) -> str:
    return day.strftime("%d/%m")


def format_full_date(day: date) -> str:
    return day.strftime("%d/%m/%Y")


__all__ = [
    "end_of_day",
    "format_day_month",
    "format_full_date",
    "last_day_of_month",
    "local_date_keys",
    "local_iso_weeks",
    "local_isoweekdays",
    "monday_of",
    "parse_date",
    "parse_year_month",
    "start_of_day",
    "to_local",
    "today",
    "zone",
]
