"""Pure mapping from a dashboard snapshot to the queries each facet runs."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from occdash.services.time_window import ResolvedWindow, TimeWindowResolver
from occdash.utils.filter_params import Filter, FilterSet, OccurrenceQuery
from occdash.utils.local_dates import monday_of, today as local_today

VIEW_MODES = ("week", "average", "month-detail")


class Facet(str, Enum):
    KPI = "kpi"
    CLASS = "class"
    STUDENT = "student"
    OCCURRENCE_TYPE = "occurrence_type"
    MONTHLY = "monthly"
    TEACHER = "teacher"
    STUDENTS_WITHOUT = "students_without_occurrences"
    WEEKDAY = "weekday"
    SHIFT = "shift"
    EDUCATION_LEVEL = "education_level"


# Occurrence columns each record-based facet needs (occurred_at is always added)
FACET_COLUMNS: Dict[Facet, Tuple[str, ...]] = {
    Facet.KPI: ("student_id",),
    Facet.CLASS: ("class_id",),
    Facet.STUDENT: ("student_id",),
    Facet.OCCURRENCE_TYPE: ("occurrence_type_id",),
    Facet.MONTHLY: (),
    Facet.TEACHER: ("teacher_id",),
    Facet.STUDENTS_WITHOUT: ("student_id",),
    Facet.WEEKDAY: (),
    Facet.SHIFT: ("class_id",),
    Facet.EDUCATION_LEVEL: ("class_id",),
}


@dataclass(frozen=True)
class Snapshot:
    """Everything a refresh cycle reads, captured once."""

    institution_id: str
    selected_year: int
    filters: FilterSet
    view_mode: str = "week"
    week_start: Optional[date] = None
    custom_start: Optional[date] = None
    custom_end: Optional[date] = None
    today: Optional[date] = None


@dataclass(frozen=True)
class FacetQuery:
    facet: Facet
    queries: Tuple[OccurrenceQuery, ...]
    columns: Tuple[str, ...] = ()
    residual: Optional[Filter] = None

    @property
    def query(self) -> OccurrenceQuery:
        return self.queries[0]

    def scoped(self, class_ids: Sequence[str]) -> "FacetQuery":
        return replace(self, queries=tuple(q.with_classes(class_ids) for q in self.queries))


@dataclass(frozen=True)
class QueryPlan:
    snapshot: Snapshot
    window: ResolvedWindow
    shift: Optional[str] = None
    education_level: Optional[str] = None
    class_filter: Optional[str] = None
    week_start: Optional[date] = None
    facets: Dict[Facet, FacetQuery] = field(default_factory=dict)

    def scoped(self, class_ids: Sequence[str]) -> "QueryPlan":
        """The same plan restricted to the resolved class scope."""
        ids = tuple(str(c) for c in class_ids)
        return replace(self, facets={name: fq.scoped(ids) for name, fq in self.facets.items()})


def build_query_plan(snapshot: Snapshot, resolver: TimeWindowResolver) -> QueryPlan:
    if snapshot.view_mode not in VIEW_MODES:
        raise ValueError(f"Unknown weekday view mode: {snapshot.view_mode!r}")

    filters = snapshot.filters
    resolved = resolver.resolve(
        snapshot.selected_year,
        snapshot.custom_start,
        snapshot.custom_end,
        filters.month,
        snapshot.today,
    )
    residual = filters.residual()
    base = OccurrenceQuery(snapshot.institution_id, equals=filters.pushdown_equals())
    facet_window = resolved.facet_window
    windowed = base.with_range(facet_window.start, facet_window.end)

    facets: Dict[Facet, FacetQuery] = {}
    for facet in (
        Facet.KPI,
        Facet.CLASS,
        Facet.STUDENT,
        Facet.OCCURRENCE_TYPE,
        Facet.TEACHER,
        Facet.STUDENTS_WITHOUT,
        Facet.SHIFT,
        Facet.EDUCATION_LEVEL,
    ):
        facets[facet] = FacetQuery(facet, (windowed,), FACET_COLUMNS[facet], residual)

    # The monthly facet always spans every bucket; the month filter does not apply.
    facets[Facet.MONTHLY] = FacetQuery(
        Facet.MONTHLY,
        tuple(base.with_range(b.start, b.end) for b in resolved.buckets),
        FACET_COLUMNS[Facet.MONTHLY],
        residual,
    )

    # The weekday facet is where date/weekday filters are picked, so it keeps
    # showing the unrestricted days.
    week_start = monday_of(snapshot.week_start or snapshot.today or local_today(resolver.tz))
    if snapshot.view_mode == "week":
        week = resolver.week_window(week_start)
        if resolved.month:
            week = week.intersect(facet_window)
        weekday_query = base.with_range(week.start, week.end)
    else:
        weekday_query = windowed
    facets[Facet.WEEKDAY] = FacetQuery(Facet.WEEKDAY, (weekday_query,), FACET_COLUMNS[Facet.WEEKDAY])

    return QueryPlan(
        snapshot=snapshot,
        window=resolved,
        shift=filters.shift.value if filters.shift else None,
        education_level=filters.education_level.value if filters.education_level else None,
        class_filter=filters.school_class.value if filters.school_class else None,
        week_start=week_start,
        facets=facets,
    )


__all__ = [
    "FACET_COLUMNS",
    "Facet",
    "FacetQuery",
    "QueryPlan",
    "Snapshot",
    "VIEW_MODES",
    "build_query_plan",
]
