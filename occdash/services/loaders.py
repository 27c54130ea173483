"""Facet loaders: run one facet's queries and aggregate the result."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Tuple, Union

import pandas as pd

from occdash.services.aggregation import AggregationPipeline, FacetRow, KpiSummary
from occdash.services.datastore import OccurrenceStore
from occdash.services.planner import Facet, FacetQuery, QueryPlan
from occdash.services.residual import ResidualClientFilter

logger = logging.getLogger("occdash.loaders")

FacetResult = Union[List[FacetRow], KpiSummary]


@dataclass(frozen=True)
class ClassScope:
    """Classes of the selected year, narrowed by shift / education level."""

    classes: pd.DataFrame
    class_ids: Tuple[str, ...]

    def is_empty(self) -> bool:
        return not self.class_ids


def empty_result(facet: Facet) -> FacetResult:
    return KpiSummary() if facet is Facet.KPI else []


class FacetLoader:
    def __init__(self, store: OccurrenceStore, pipeline: AggregationPipeline, residual: ResidualClientFilter):
        self.store = store
        self.pipeline = pipeline
        self.residual = residual
        self._loaders: Dict[Facet, Callable[[QueryPlan, ClassScope], Awaitable[FacetResult]]] = {
            Facet.KPI: self.load_kpi,
            Facet.CLASS: self.load_class,
            Facet.STUDENT: self.load_student,
            Facet.OCCURRENCE_TYPE: self.load_type,
            Facet.MONTHLY: self.load_monthly,
            Facet.TEACHER: self.load_teacher,
            Facet.STUDENTS_WITHOUT: self.load_students_without,
            Facet.WEEKDAY: self.load_weekday,
            Facet.SHIFT: self.load_shift,
            Facet.EDUCATION_LEVEL: self.load_education_level,
        }

    async def class_scope(self, plan: QueryPlan) -> ClassScope:
        snap = plan.snapshot
        classes = await self.store.classes(
            snap.institution_id,
            snap.selected_year,
            shift=plan.shift,
            education_level=plan.education_level,
        )
        ids = tuple(classes["id"].dropna().astype(str)) if not classes.empty else ()
        logger.debug("Class scope for %s/%s: %d class(es)", snap.institution_id, snap.selected_year, len(ids))
        return ClassScope(classes, ids)

    async def load(self, facet: Facet, plan: QueryPlan, scope: ClassScope) -> FacetResult:
        try:
            loader = self._loaders[facet]
        except KeyError:
            raise ValueError(f"Unknown facet: {facet!r}") from None
        return await loader(plan, scope)

    # ---------- shared ----------

    async def _records(self, fq: FacetQuery) -> pd.DataFrame:
        records = await self.store.fetch(fq.query, fq.columns)
        return self.residual.apply_filter(records, fq.residual)

    async def _count(self, fq: FacetQuery, index: int = 0) -> int:
        query = fq.queries[index]
        if fq.residual is None:
            return await self.store.count(query)
        records = await self.store.fetch(query, fq.columns)
        return len(self.residual.apply_filter(records, fq.residual))

    async def _students_in_scope(self, plan: QueryPlan, scope: ClassScope) -> pd.DataFrame:
        return await self.store.students(plan.snapshot.institution_id, scope.class_ids, class_id=plan.class_filter)

    # ---------- facets ----------

    async def load_kpi(self, plan: QueryPlan, scope: ClassScope) -> KpiSummary:
        fq = plan.facets[Facet.KPI]
        if fq.residual is None:
            total, records, students = await asyncio.gather(
                self.store.count(fq.query),
                self.store.fetch(fq.query, fq.columns),
                self._students_in_scope(plan, scope),
            )
        else:
            records, students = await asyncio.gather(self._records(fq), self._students_in_scope(plan, scope))
            total = len(records)
        return self.pipeline.kpi_summary(total, records, len(students))

    async def load_class(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.CLASS])
        return self.pipeline.class_facet(records, scope.classes)

    async def load_student(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.STUDENT])
        students = await self.store.lookup("students", records["student_id"].dropna().astype(str).unique())
        # current classes may belong to another academic year
        classes = await self.store.lookup("classes", students["class_id"].dropna().astype(str).unique())
        return self.pipeline.student_facet(records, students, classes)

    async def load_type(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.OCCURRENCE_TYPE])
        types = await self.store.occurrence_types(records["occurrence_type_id"].dropna().astype(str).unique())
        return self.pipeline.type_facet(records, types)

    async def load_teacher(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.TEACHER])
        teachers = await self.store.teachers(records["teacher_id"].dropna().astype(str).unique())
        return self.pipeline.teacher_facet(records, teachers)

    async def load_shift(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.SHIFT])
        return self.pipeline.shift_facet(records, scope.classes)

    async def load_education_level(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.EDUCATION_LEVEL])
        return self.pipeline.education_level_facet(records, scope.classes)

    async def load_monthly(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        fq = plan.facets[Facet.MONTHLY]
        counts = await asyncio.gather(*(self._count(fq, i) for i in range(len(fq.queries))))
        return self.pipeline.monthly_facet(plan.window.buckets, list(counts))

    async def load_weekday(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records = await self._records(plan.facets[Facet.WEEKDAY])
        mode = plan.snapshot.view_mode
        if mode == "week":
            return self.pipeline.weekday_week_facet(records, plan.week_start)
        if mode == "average":
            return self.pipeline.weekday_average_facet(records)
        return self.pipeline.weekday_month_detail_facet(records)

    async def load_students_without(self, plan: QueryPlan, scope: ClassScope) -> List[FacetRow]:
        records, students = await asyncio.gather(
            self._records(plan.facets[Facet.STUDENTS_WITHOUT]),
            self._students_in_scope(plan, scope),
        )
        return self.pipeline.students_without_occurrences(students, records, scope.classes)


__all__ = ["ClassScope", "FacetLoader", "FacetResult", "empty_result"]
