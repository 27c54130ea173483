# filter_params.py
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union


class Dimension(str, Enum):
    MONTH = "month"
    CLASS = "class"
    STUDENT = "student"
    OCCURRENCE_TYPE = "occurrence_type"
    TEACHER = "teacher"
    SHIFT = "shift"
    EDUCATION_LEVEL = "education_level"
    SPECIFIC_DATE = "specific_date"
    WEEKDAY = "weekday"

    @classmethod
    def parse(cls, value: Union["Dimension", str]) -> "Dimension":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise ValueError(f"Unknown filter dimension: {value!r}") from None


# Dimensions evaluated in memory after the store query
RESIDUAL_DIMENSIONS = (Dimension.SPECIFIC_DATE, Dimension.WEEKDAY)

# Dimensions pushed down as equality predicates on the occurrences table
PUSHDOWN_COLUMNS: Dict[Dimension, str] = {
    Dimension.CLASS: "class_id",
    Dimension.STUDENT: "student_id",
    Dimension.OCCURRENCE_TYPE: "occurrence_type_id",
    Dimension.TEACHER: "teacher_id",
}


@dataclass(frozen=True)
class Filter:
    dimension: Dimension
    value: str
    label: str


@dataclass(frozen=True)
class FilterSet:
    """At most one active filter per dimension.

    Immutable: mutations return a new set, so a reference held by a refresh
    cycle is a consistent snapshot.
    """

    month: Optional[Filter] = None
    school_class: Optional[Filter] = None
    student: Optional[Filter] = None
    occurrence_type: Optional[Filter] = None
    teacher: Optional[Filter] = None
    shift: Optional[Filter] = None
    education_level: Optional[Filter] = None
    specific_date: Optional[Filter] = None
    weekday: Optional[Filter] = None

    _SLOTS = {
        Dimension.MONTH: "month",
        Dimension.CLASS: "school_class",
        Dimension.STUDENT: "student",
        Dimension.OCCURRENCE_TYPE: "occurrence_type",
        Dimension.TEACHER: "teacher",
        Dimension.SHIFT: "shift",
        Dimension.EDUCATION_LEVEL: "education_level",
        Dimension.SPECIFIC_DATE: "specific_date",
        Dimension.WEEKDAY: "weekday",
    }

    def get(self, dimension: Union[Dimension, str]) -> Optional[Filter]:
        return getattr(self, self._SLOTS[Dimension.parse(dimension)])

    def with_filter(self, flt: Filter) -> "FilterSet":
        return replace(self, **{self._SLOTS[flt.dimension]: flt})

    def without(self, *dimensions: Union[Dimension, str]) -> "FilterSet":
        return replace(self, **{self._SLOTS[Dimension.parse(d)]: None for d in dimensions})

    def active(self) -> List[Filter]:
        return [getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None]

    def is_empty(self) -> bool:
        return not self.active()

    def pushdown_equals(self) -> Dict[str, str]:
        """Equality predicates (column -> value) for the occurrences table."""
        out: Dict[str, str] = {}
        for dimension, column in PUSHDOWN_COLUMNS.items():
            flt = self.get(dimension)
            if flt is not None:
                out[column] = flt.value
        return out

    def residual(self) -> Optional[Filter]:
        """The in-memory filter to apply; a specific date wins over a weekday."""
        return self.specific_date or self.weekday

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {f.dimension.value: {"value": f.value, "label": f.label} for f in self.active()}


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class OccurrenceQuery:
    """Predicates the occurrence store can evaluate.

    INTERSECTION (AND) of:
      - institution equality
      - class scope as an IN-list (empty tuple means "no class matches")
      - equality predicates (class_id, student_id, occurrence_type_id, teacher_id)
      - occurred_at range, inclusive on both ends
    """

    institution_id: str
    class_ids: Optional[Tuple[str, ...]] = None
    equals: Dict[str, str] = field(default_factory=dict)
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def with_classes(self, class_ids: Sequence[str]) -> "OccurrenceQuery":
        return replace(self, class_ids=tuple(class_ids))

    def with_range(self, start: Optional[datetime], end: Optional[datetime]) -> "OccurrenceQuery":
        return replace(self, start=start, end=end)

    def is_empty_range(self) -> bool:
        return self.start is not None and self.end is not None and self.start > self.end

    # -------- SQL helpers --------
    def to_sql_where(self, date_col: str = "occurred_at") -> Tuple[str, List[object]]:
        """
        Build a safe SQL WHERE clause and its parameters (DuckDB compatible).

        ``date_col`` is stored as naive UTC, so range bounds are converted to
        naive UTC before binding.
        """
        where: List[str] = ["institution_id = ?"]
        params: List[object] = [self.institution_id]

        if self.class_ids is not None:
            if not self.class_ids:
                where.append("1=0")
            else:
                placeholders = ",".join(["?"] * len(self.class_ids))
                where.append(f"class_id IN ({placeholders})")
                params.extend(self.class_ids)

        for col, value in sorted(self.equals.items()):
            where.append(f"{col} = ?")
            params.append(value)

        if self.start is not None:
            where.append(f"{date_col} >= ?")
            params.append(self.start.astimezone(timezone.utc).replace(tzinfo=None))
        if self.end is not None:
            where.append(f"{date_col} <= ?")
            params.append(self.end.astimezone(timezone.utc).replace(tzinfo=None))

        return " AND ".join(where), params

    # -------- PostgREST helpers --------
    def to_postgrest_params(self, date_col: str = "occurred_at") -> List[Tuple[str, str]]:
        """Encode the predicates as PostgREST query parameters."""
        params: List[Tuple[str, str]] = [("institution_id", f"eq.{self.institution_id}")]
        if self.class_ids is not None:
            params.append(("class_id", f"in.({','.join(self.class_ids)})"))
        for col, value in sorted(self.equals.items()):
            params.append((col, f"eq.{value}"))
        if self.start is not None:
            params.append((date_col, f"gte.{_utc_iso(self.start)}"))
        if self.end is not None:
            params.append((date_col, f"lte.{_utc_iso(self.end)}"))
        return params


__all__ = [
    "Dimension",
    "Filter",
    "FilterSet",
    "OccurrenceQuery",
    "PUSHDOWN_COLUMNS",
    "RESIDUAL_DIMENSIONS",
]
