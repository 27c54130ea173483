"""Label catalog utilities."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from occdash.utils.local_dates import format_day_month


class Labels:
    """Encapsulate display labels and placeholder routines."""

    def __init__(self, config: Mapping[str, Any]):
        self.months: List[str] = list(config["MONTH_ABBR"])
        self.weekdays: Dict[int, str] = dict(config["WEEKDAY_NAMES"])
        self.weekdays_short: Dict[int, str] = dict(config["WEEKDAY_SHORT"])
        self.shifts: Dict[str, str] = dict(config["SHIFT_LABELS"])
        self.levels: Dict[str, str] = dict(config["EDUCATION_LEVEL_LABELS"])
        self.placeholders: Dict[str, str] = dict(config["PLACEHOLDERS"])

    def placeholder(self, kind: str, ident: Optional[str] = None) -> str:
        return self.placeholders.get(kind, self.placeholders["unknown"]).format(id=ident)

    def shift(self, key: Optional[str]) -> str:
        if not key:
            return self.placeholders["unknown"]
        return self.shifts.get(key, key)

    def education_level(self, key: Optional[str]) -> str:
        if not key:
            return self.placeholders["unknown"]
        return self.levels.get(key, key)

    def month(self, year: int, month: int, *, with_year: bool = False) -> str:
        name = self.months[month - 1]
        if with_year:
            return f"{name}/{year % 100:02d}"
        return name

    def weekday(self, isoweekday: int) -> str:
        return self.weekdays[isoweekday]

    def weekday_number(self, name: str) -> Optional[int]:
        for number, label in self.weekdays.items():
            if label == name:
                return number
        return None

    def day_detail(self, day: date) -> str:
        """``DD/MM Weekday`` label for a calendar date."""
        return f"{format_day_month(day)} {self.weekdays_short[day.isoweekday()]}"


__all__ = ["Labels"]
