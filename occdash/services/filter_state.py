"""Cross-filter state for the dashboard."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from occdash.utils.filter_params import Dimension, Filter, FilterSet
from occdash.utils.local_dates import parse_date, parse_year_month

logger = logging.getLogger("occdash.filters")

# Activating one of these removes the other
_EXCLUSIVE = {
    Dimension.SPECIFIC_DATE: Dimension.WEEKDAY,
    Dimension.WEEKDAY: Dimension.SPECIFIC_DATE,
}


def normalize_value(dimension: Dimension, value: object) -> str:
    """Validate a filter value and return its canonical string form."""
    raw = str(value).strip()
    if not raw:
        raise ValueError(f"Empty value for filter {dimension.value}")
    try:
        if dimension is Dimension.MONTH:
            year, month = parse_year_month(raw)
            return f"{year:04d}-{month:02d}"
        if dimension is Dimension.SPECIFIC_DATE:
            return parse_date(raw).isoformat()
        if dimension is Dimension.WEEKDAY:
            day = int(raw)
            if not 1 <= day <= 5:
                raise ValueError(f"Weekday must be between 1 and 5, got {day}")
            return str(day)
    except ValueError as exc:
        raise ValueError(f"Invalid value {value!r} for filter {dimension.value}: {exc}") from None
    return raw


class FilterStateManager:
    """Own the active FilterSet and notify on every successful mutation."""

    def __init__(self, on_change: Optional[Callable[[FilterSet], None]] = None):
        self._filters = FilterSet()
        self._on_change = on_change

    @property
    def filters(self) -> FilterSet:
        return self._filters

    def snapshot(self) -> FilterSet:
        return self._filters

    def has_active(self) -> bool:
        return not self._filters.is_empty()

    def add_filter(self, dimension: Union[Dimension, str], value: object, label: str) -> Filter:
        dim = Dimension.parse(dimension)
        flt = Filter(dim, normalize_value(dim, value), str(label))

        updated = self._filters
        other = _EXCLUSIVE.get(dim)
        if other is not None and updated.get(other) is not None:
            logger.debug("Filter %s replaces %s", dim.value, other.value)
            updated = updated.without(other)
        self._commit(updated.with_filter(flt))
        return flt

    def remove_filter(self, dimension: Union[Dimension, str]) -> bool:
        dim = Dimension.parse(dimension)
        if self._filters.get(dim) is None:
            return False
        self._commit(self._filters.without(dim))
        return True

    def clear(self) -> bool:
        if self._filters.is_empty():
            return False
        self._commit(FilterSet())
        return True

    def _commit(self, filters: FilterSet) -> None:
        self._filters = filters
        logger.debug("Active filters: %s", filters.as_dict())
        if self._on_change is not None:
            self._on_change(filters)


__all__ = ["FilterStateManager", "normalize_value"]
