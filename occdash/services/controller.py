"""Dashboard controller: owns the dashboard state and drives refresh cycles."""

from __future__ import annotations

import asyncio
import logging
from datetime import MAXYEAR, MINYEAR, date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from occdash.services.aggregation import AggregationPipeline, FacetRow, KpiSummary, chart_payload
from occdash.services.datastore import OccurrenceStore
from occdash.services.filter_state import FilterStateManager
from occdash.services.labels import Labels
from occdash.services.loaders import ClassScope, FacetLoader, FacetResult, empty_result
from occdash.services.planner import VIEW_MODES, Facet, QueryPlan, Snapshot, build_query_plan
from occdash.services.residual import ResidualClientFilter
from occdash.services.time_window import TimeWindowResolver
from occdash.utils.filter_params import Dimension, Filter, FilterSet
from occdash.utils.local_dates import format_full_date, monday_of, parse_date, today as local_today

logger = logging.getLogger("occdash.dashboard")

IDLE = "idle"
LOADING = "loading"

# Chart facet -> filter dimension a click on it activates
CLICK_DIMENSIONS: Dict[Facet, Dimension] = {
    Facet.MONTHLY: Dimension.MONTH,
    Facet.CLASS: Dimension.CLASS,
    Facet.STUDENT: Dimension.STUDENT,
    Facet.OCCURRENCE_TYPE: Dimension.OCCURRENCE_TYPE,
    Facet.TEACHER: Dimension.TEACHER,
    Facet.SHIFT: Dimension.SHIFT,
    Facet.EDUCATION_LEVEL: Dimension.EDUCATION_LEVEL,
}


def _facet(value: Union[Facet, str]) -> Facet:
    if isinstance(value, Facet):
        return value
    try:
        return Facet(str(value))
    except ValueError:
        raise ValueError(f"Unknown facet: {value!r}") from None


class DashboardController:
    """Cross-filtered occurrence dashboard for one institution.

    Every change of year, custom range, filters, view mode or selected week
    schedules a refresh after ``DEBOUNCE_SECONDS`` of quiescence. A refresh
    cycle takes an epoch number; facet results from any older epoch are
    dropped when they arrive.
    """

    def __init__(
        self,
        store: OccurrenceStore,
        config: Mapping[str, Any],
        institution_id: str,
        today: Optional[date] = None,
    ):
        self.store = store
        self.config = config
        self.institution_id = str(institution_id)
        self._today = today

        tz = config.get("TIMEZONE", "America/Sao_Paulo")
        self.labels = Labels(config)
        self.resolver = TimeWindowResolver(tz, self.labels)
        self.pipeline = AggregationPipeline(self.labels, tz)
        self.loader = FacetLoader(store, self.pipeline, ResidualClientFilter(tz))
        self.debounce = float(config.get("DEBOUNCE_SECONDS", 0.05))

        current = self.today()
        self.selected_year = current.year
        self.custom_start: Optional[date] = None
        self.custom_end: Optional[date] = None
        self.view_mode = "week"
        self.week_start = monday_of(current)

        self.status = IDLE
        self.results: Dict[Facet, FacetResult] = {f: empty_result(f) for f in Facet}
        self.errors: Dict[Facet, BaseException] = {}

        self._state: Optional[FilterStateManager] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._idle: Optional[asyncio.Event] = None
        self._epoch = 0

    # ---------- lifecycle ----------

    @property
    def active(self) -> bool:
        return self._loop is not None

    @property
    def epoch(self) -> int:
        return self._epoch

    def activate(self) -> None:
        """Start with an empty filter set and schedule the first refresh.

        Must be called from a running event loop.
        """
        if self.active:
            return
        self._loop = asyncio.get_running_loop()
        self._idle = asyncio.Event()
        self._state = FilterStateManager(on_change=self._on_filters_changed)
        logger.info("Dashboard activated for institution %s (%d)", self.institution_id, self.selected_year)
        self._schedule()

    def deactivate(self) -> None:
        if not self.active:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        # any completion still in flight is now stale
        self._epoch += 1
        self._state = None
        self._loop = None
        self.status = IDLE
        self.results = {f: empty_result(f) for f in Facet}
        self.errors = {}
        if self._idle is not None:
            self._idle.set()
        logger.info("Dashboard deactivated for institution %s", self.institution_id)

    async def wait_idle(self) -> None:
        """Wait until no refresh is pending and the latest cycle has applied."""
        if self._idle is not None:
            await self._idle.wait()

    # ---------- state ----------

    def today(self) -> date:
        return self._today or local_today(self.resolver.tz)

    @property
    def filter_state(self) -> FilterStateManager:
        if self._state is None:
            raise RuntimeError("Dashboard is not active")
        return self._state

    @property
    def filters(self) -> FilterSet:
        return self.filter_state.snapshot()

    def add_filter(self, dimension: Union[Dimension, str], value: object, label: str) -> Filter:
        return self.filter_state.add_filter(dimension, value, label)

    def remove_filter(self, dimension: Union[Dimension, str]) -> bool:
        return self.filter_state.remove_filter(dimension)

    def clear_filters(self) -> bool:
        return self.filter_state.clear()

    def set_year(self, year: int) -> None:
        year = int(year)
        if not MINYEAR < year < MAXYEAR:
            raise ValueError(f"Academic year out of range: {year}")
        if year == self.selected_year:
            return
        self.selected_year = year
        self._schedule()

    def set_custom_range(self, start: Union[str, date], end: Union[str, date]) -> None:
        first, last = parse_date(start), parse_date(end)
        if first > last:
            raise ValueError(f"Custom range start {first} is after end {last}")
        self.custom_start, self.custom_end = first, last
        self._schedule()

    def clear_custom_range(self) -> None:
        if self.custom_start is None and self.custom_end is None:
            return
        self.custom_start = self.custom_end = None
        self._schedule()

    def set_view_mode(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise ValueError(f"Unknown weekday view mode: {mode!r}")
        if mode == self.view_mode:
            return
        self.view_mode = mode
        self._schedule()

    # ---------- week navigation ----------

    def select_week(self, day: Union[str, date]) -> date:
        monday = monday_of(parse_date(day))
        if monday != self.week_start:
            self.week_start = monday
            self._schedule()
        return self.week_start

    def previous_week(self) -> date:
        return self.select_week(self.week_start - timedelta(days=7))

    def next_week(self) -> date:
        return self.select_week(self.week_start + timedelta(days=7))

    def go_to_current_week(self) -> date:
        return self.select_week(self.today())

    # ---------- queries ----------

    async def available_years(self) -> List[int]:
        return await self.store.academic_years(self.institution_id)

    def result(self, facet: Union[Facet, str]) -> FacetResult:
        return self.results[_facet(facet)]

    def chart_payload(self, facet: Union[Facet, str]) -> Dict[str, Any]:
        value = self.result(facet)
        if isinstance(value, KpiSummary):
            return value.to_dict()
        return chart_payload(value)

    def snapshot(self) -> Snapshot:
        return Snapshot(
            institution_id=self.institution_id,
            selected_year=self.selected_year,
            filters=self.filters,
            view_mode=self.view_mode,
            week_start=self.week_start,
            custom_start=self.custom_start,
            custom_end=self.custom_end,
            today=self._today,
        )

    # ---------- chart clicks ----------

    def handle_click(self, facet: Union[Facet, str], label: Optional[str] = None, index: Optional[int] = None) -> Optional[Filter]:
        """Turn a click on a chart element into a filter.

        The element is looked up by label in the facet's latest rows, falling
        back to its index. Returns the activated filter, or ``None`` when the
        element is unknown.
        """
        facet = _facet(facet)
        if facet is not Facet.WEEKDAY and facet not in CLICK_DIMENSIONS:
            raise ValueError(f"Facet {facet.value!r} does not accept clicks")

        row = self._find_row(facet, label, index)
        if row is None:
            logger.debug("Ignoring click on %s: label=%r index=%r", facet.value, label, index)
            return None

        if facet is Facet.WEEKDAY:
            if self.view_mode == "average":
                return self.add_filter(Dimension.WEEKDAY, row.id, row.label)
            day = parse_date(row.extra["date"])
            return self.add_filter(Dimension.SPECIFIC_DATE, day.isoformat(), format_full_date(day))

        if row.id is None:
            return None
        return self.add_filter(CLICK_DIMENSIONS[facet], row.id, row.label)

    def _find_row(self, facet: Facet, label: Optional[str], index: Optional[int]) -> Optional[FacetRow]:
        rows = self.results.get(facet)
        if not isinstance(rows, list) or not rows:
            return None
        if label is not None:
            for row in rows:
                if row.label == label:
                    return row
        if index is not None and 0 <= index < len(rows):
            return rows[index]
        return None

    # ---------- scheduling ----------

    def _on_filters_changed(self, filters: FilterSet) -> None:
        narrowed = filters.student is not None or filters.school_class is not None
        if filters.month is not None and narrowed:
            self.view_mode = "month-detail"
        elif self.view_mode == "month-detail" and filters.month is None and not narrowed:
            self.view_mode = "week"
        self._schedule()

    def _schedule(self) -> None:
        if self._loop is None:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._idle.clear()
        self._timer = self._loop.call_later(self.debounce, self._launch)

    def _launch(self) -> None:
        self._timer = None
        self._epoch += 1
        epoch = self._epoch
        self.status = LOADING
        task = self._loop.create_task(self._refresh(epoch, self.snapshot()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch and self._timer is None

    async def _refresh(self, epoch: int, snapshot: Snapshot) -> None:
        logger.debug("Refresh %d started: %s", epoch, snapshot.filters.as_dict())
        try:
            try:
                plan = build_query_plan(snapshot, self.resolver)
            except Exception as exc:
                if self._is_current(epoch):
                    logger.exception("Could not plan refresh %d", epoch)
                    self.errors = {f: exc for f in Facet}
                return
            try:
                scope = await self.loader.class_scope(plan)
            except Exception as exc:
                if self._is_current(epoch):
                    logger.exception("Class scope failed for institution %s", snapshot.institution_id)
                    self.errors = {f: exc for f in Facet}
                return

            if not self._is_current(epoch):
                return
            if scope.is_empty():
                logger.info("No classes for %s in %d; resetting dashboard", snapshot.institution_id, snapshot.selected_year)
                self.results = {f: empty_result(f) for f in Facet}
                self.errors = {}
                return

            scoped = plan.scoped(scope.class_ids)
            await asyncio.gather(*(self._load_facet(epoch, facet, scoped, scope) for facet in Facet))
        finally:
            if self._is_current(epoch):
                self.status = IDLE
                self._idle.set()
                logger.debug("Refresh %d applied", epoch)

    async def _load_facet(self, epoch: int, facet: Facet, plan: QueryPlan, scope: ClassScope) -> None:
        try:
            result = await self.loader.load(facet, plan, scope)
        except Exception as exc:
            if epoch == self._epoch:
                logger.exception("Facet %s failed; keeping previous value", facet.value)
                self.errors[facet] = exc
            return
        if epoch != self._epoch:
            logger.debug("Dropping stale %s result from refresh %d", facet.value, epoch)
            return
        self.results[facet] = result
        self.errors.pop(facet, None)


__all__ = ["CLICK_DIMENSIONS", "DashboardController", "IDLE", "LOADING"]
