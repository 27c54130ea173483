"""In-memory evaluation of the filters the store cannot express safely.

"This calendar day" and "this weekday" are local-calendar concepts. As UTC
range predicates they shift results near local midnight, so they are applied
here to fetched ``occurred_at`` values instead.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from occdash.utils.filter_params import Dimension, Filter, FilterSet
from occdash.utils.local_dates import TzLike, local_date_keys, local_isoweekdays, zone

logger = logging.getLogger("occdash.residual")


class ResidualClientFilter:
    def __init__(self, tz: TzLike, date_col: str = "occurred_at"):
        self.tz = zone(tz)
        self.date_col = date_col

    @staticmethod
    def select(filters: FilterSet) -> Optional[Filter]:
        """The residual filter to apply, if any; a specific date wins over a weekday."""
        return filters.residual()

    def needed(self, filters: FilterSet) -> bool:
        return self.select(filters) is not None

    def apply(self, records: pd.DataFrame, filters: FilterSet) -> pd.DataFrame:
        return self.apply_filter(records, self.select(filters))

    def apply_filter(self, records: pd.DataFrame, flt: Optional[Filter]) -> pd.DataFrame:
        if flt is None or records.empty:
            return records
        stamps = records[self.date_col]
        present = stamps.notna()

        if flt.dimension is Dimension.SPECIFIC_DATE:
            mask = present & (local_date_keys(stamps, self.tz) == flt.value)
        elif flt.dimension is Dimension.WEEKDAY:
            mask = present & (local_isoweekdays(stamps, self.tz) == int(flt.value))
        else:
            raise ValueError(f"{flt.dimension.value} is not a residual filter")

        out = records[mask.fillna(False)]
        logger.debug("Residual %s=%s kept %d of %d record(s)", flt.dimension.value, flt.value, len(out), len(records))
        return out


__all__ = ["ResidualClientFilter"]
