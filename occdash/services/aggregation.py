"""Facet aggregation: group, count, label and order occurrence records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from occdash.services.labels import Labels
from occdash.services.time_window import MonthBucket
from occdash.utils.local_dates import TzLike, local_date_keys, local_iso_weeks, local_isoweekdays, parse_date, zone

# percent_change marker for "previous bucket was zero, this one is not"
NEW = "new"

PercentChange = Optional[Union[float, str]]


@dataclass(frozen=True)
class FacetRow:
    label: str
    id: Optional[str]
    count: float
    percent_change: PercentChange = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class KpiSummary:
    total_occurrences: int = 0
    students_with_occurrences: int = 0
    students_without_occurrences: int = 0
    total_students: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def percent_change(previous: float, current: float) -> PercentChange:
    """Variation of ``current`` against the literal preceding value."""
    if previous > 0:
        return (current - previous) / previous * 100
    if current > 0:
        return NEW
    return 0.0


def percent_changes(values: Sequence[float]) -> List[PercentChange]:
    """Period-over-period changes; the first period has none."""
    out: List[PercentChange] = []
    for i, value in enumerate(values):
        out.append(None if i == 0 else percent_change(values[i - 1], value))
    return out


def chart_payload(rows: Sequence[FacetRow]) -> Dict[str, List[Any]]:
    """Column-oriented view of a facet, the shape chart widgets consume."""
    return {
        "labels": [r.label for r in rows],
        "ids": [r.id for r in rows],
        "values": [r.count for r in rows],
        "percent_change": [r.percent_change for r in rows],
    }


def _name_map(reference: pd.DataFrame, column: str = "name") -> Dict[str, Any]:
    if reference is None or reference.empty or column not in reference.columns:
        return {}
    ref = reference.dropna(subset=["id"]).drop_duplicates(subset=["id"])
    return dict(zip(ref["id"].astype(str), ref[column]))


def _present(value: Any) -> bool:
    if value is None:
        return False
    try:
        if pd.isna(value):
            return False
    except (TypeError, ValueError):
        pass
    return str(value) != ""


class AggregationPipeline:
    """Turn filtered record sets into ordered, labeled facet rows."""

    def __init__(self, labels: Labels, tz: TzLike, date_col: str = "occurred_at"):
        self.labels = labels
        self.tz = zone(tz)
        self.date_col = date_col

    # ---------- grouping ----------

    @staticmethod
    def count_by(records: pd.DataFrame, key: str) -> pd.Series:
        """Occurrences per value of ``key``; rows with a missing key are dropped."""
        if records.empty or key not in records.columns:
            return pd.Series(dtype="int64")
        keys = records[key].dropna().astype(str)
        return keys.value_counts(sort=False)

    @staticmethod
    def _sorted(rows: List[FacetRow], *, by_label: bool = False) -> List[FacetRow]:
        rows = sorted(rows, key=lambda r: r.label.casefold())
        if by_label:
            return rows
        return sorted(rows, key=lambda r: r.count, reverse=True)

    # ---------- dimension facets ----------

    def class_facet(self, records: pd.DataFrame, classes: pd.DataFrame) -> List[FacetRow]:
        names = _name_map(classes)
        rows = [
            FacetRow(
                label=str(names[cid]) if _present(names.get(cid)) else self.labels.placeholder("class", cid),
                id=cid,
                count=int(n),
            )
            for cid, n in self.count_by(records, "class_id").items()
        ]
        return self._sorted(rows, by_label=True)

    def student_facet(
        self,
        records: pd.DataFrame,
        students: pd.DataFrame,
        classes: pd.DataFrame,
    ) -> List[FacetRow]:
        """Every student with occurrences, most occurrences first.

        ``extra["class_name"]`` is the student's current class, which can
        differ from the class an occurrence was recorded in.
        """
        names = _name_map(students)
        current_class = _name_map(students, "class_id")
        class_names = _name_map(classes)
        rows = []
        for sid, n in self.count_by(records, "student_id").items():
            cid = current_class.get(sid)
            class_name = class_names.get(str(cid)) if _present(cid) else None
            rows.append(
                FacetRow(
                    label=str(names[sid]) if _present(names.get(sid)) else self.labels.placeholder("student", sid),
                    id=sid,
                    count=int(n),
                    extra={"class_name": str(class_name) if _present(class_name) else self.labels.placeholder("class")},
                )
            )
        return self._sorted(rows)

    def type_facet(self, records: pd.DataFrame, types: pd.DataFrame) -> List[FacetRow]:
        names = _name_map(types)
        severities = _name_map(types, "severity")
        rows = [
            FacetRow(
                label=str(names[tid]) if _present(names.get(tid)) else self.labels.placeholder("occurrence_type", tid),
                id=tid,
                count=int(n),
                extra={
                    "severity": str(severities[tid]) if _present(severities.get(tid)) else self.labels.placeholder("severity")
                },
            )
            for tid, n in self.count_by(records, "occurrence_type_id").items()
        ]
        return self._sorted(rows)

    def teacher_facet(self, records: pd.DataFrame, teachers: pd.DataFrame) -> List[FacetRow]:
        names = _name_map(teachers)
        rows = [
            FacetRow(
                label=str(names[tid]) if _present(names.get(tid)) else self.labels.placeholder("teacher", tid),
                id=tid,
                count=int(n),
            )
            for tid, n in self.count_by(records, "teacher_id").items()
        ]
        return self._sorted(rows)

    def _class_attribute_facet(self, records: pd.DataFrame, classes: pd.DataFrame, attribute: str, labeler) -> List[FacetRow]:
        per_class = self.count_by(records, "class_id")
        if per_class.empty:
            return []
        values = _name_map(classes, attribute)
        counts: Dict[Optional[str], int] = {}
        for cid, n in per_class.items():
            value = values.get(cid)
            key = str(value) if _present(value) else None
            counts[key] = counts.get(key, 0) + int(n)
        rows = [FacetRow(label=labeler(key), id=key, count=n) for key, n in counts.items()]
        return self._sorted(rows)

    def shift_facet(self, records: pd.DataFrame, classes: pd.DataFrame) -> List[FacetRow]:
        return self._class_attribute_facet(records, classes, "shift", self.labels.shift)

    def education_level_facet(self, records: pd.DataFrame, classes: pd.DataFrame) -> List[FacetRow]:
        return self._class_attribute_facet(records, classes, "education_level", self.labels.education_level)

    # ---------- time facets ----------

    def monthly_facet(self, buckets: Sequence[MonthBucket], counts: Sequence[int]) -> List[FacetRow]:
        """Waterfall rows: count, absolute change and percent change per bucket."""
        if len(buckets) != len(counts):
            raise ValueError("One count per month bucket is required")
        changes = percent_changes(counts)
        rows = []
        for i, (bucket, count) in enumerate(zip(buckets, counts)):
            delta = count if i == 0 else count - counts[i - 1]
            rows.append(
                FacetRow(
                    label=bucket.label,
                    id=bucket.year_month,
                    count=int(count),
                    percent_change=changes[i],
                    extra={"change": int(delta)},
                )
            )
        return rows

    def weekday_week_facet(self, records: pd.DataFrame, week_start: date) -> List[FacetRow]:
        """Monday..Friday of one week; days without occurrences count 0."""
        days = [week_start + timedelta(days=i) for i in range(5)]
        per_day = self._per_local_date(records)
        counts = [int(per_day.get(d.isoformat(), 0)) for d in days]
        changes = percent_changes(counts)
        return [
            FacetRow(
                label=self.labels.weekday(d.isoweekday()),
                id=d.isoformat(),
                count=counts[i],
                percent_change=changes[i],
                extra={"date": d.isoformat()},
            )
            for i, d in enumerate(days)
        ]

    def weekday_average_facet(self, records: pd.DataFrame) -> List[FacetRow]:
        """Average occurrences per weekday, over the distinct ISO weeks it occurred in."""
        totals: Dict[int, int] = {}
        weeks: Dict[int, int] = {}
        if not records.empty:
            stamps = records[self.date_col].dropna()
            frame = pd.DataFrame(
                {
                    "weekday": local_isoweekdays(stamps, self.tz).to_numpy(),
                    "week": local_iso_weeks(stamps, self.tz).to_numpy(),
                }
            )
            frame = frame[frame["weekday"] <= 5]
            grouped = frame.groupby("weekday")["week"]
            totals = {int(k): int(v) for k, v in grouped.size().items()}
            weeks = {int(k): int(v) for k, v in grouped.nunique().items()}

        averages = [totals.get(day, 0) / weeks[day] if weeks.get(day) else 0.0 for day in range(1, 6)]
        changes = percent_changes(averages)
        return [
            FacetRow(
                label=self.labels.weekday(day),
                id=str(day),
                count=round(averages[day - 1], 1),
                percent_change=changes[day - 1],
                extra={"total": totals.get(day, 0), "weeks": weeks.get(day, 0)},
            )
            for day in range(1, 6)
        ]

    def weekday_month_detail_facet(self, records: pd.DataFrame) -> List[FacetRow]:
        """Every local date with at least one occurrence, ascending."""
        per_day = self._per_local_date(records).sort_index()
        counts = [int(n) for n in per_day.to_numpy()]
        changes = percent_changes(counts)
        rows = []
        for i, key in enumerate(per_day.index):
            day = parse_date(key)
            rows.append(
                FacetRow(
                    label=self.labels.day_detail(day),
                    id=key,
                    count=counts[i],
                    percent_change=changes[i],
                    extra={"date": key},
                )
            )
        return rows

    def _per_local_date(self, records: pd.DataFrame) -> pd.Series:
        if records.empty:
            return pd.Series(dtype="int64")
        stamps = records[self.date_col].dropna()
        return local_date_keys(stamps, self.tz).value_counts(sort=False)

    # ---------- summaries ----------

    def kpi_summary(self, total: int, records: pd.DataFrame, total_students: int) -> KpiSummary:
        with_occ = int(records["student_id"].dropna().nunique()) if not records.empty else 0
        return KpiSummary(
            total_occurrences=int(total),
            students_with_occurrences=with_occ,
            students_without_occurrences=max(int(total_students) - with_occ, 0),
            total_students=int(total_students),
        )

    def students_without_occurrences(
        self,
        students: pd.DataFrame,
        records: pd.DataFrame,
        classes: pd.DataFrame,
    ) -> List[FacetRow]:
        if students is None or students.empty:
            return []
        seen = set(records["student_id"].dropna().astype(str)) if not records.empty else set()
        class_names = _name_map(classes)
        rows = []
        for student in students.itertuples(index=False):
            sid = str(student.id)
            if sid in seen:
                continue
            cid = str(student.class_id) if _present(student.class_id) else None
            rows.append(
                FacetRow(
                    label=str(student.name) if _present(student.name) else self.labels.placeholder("student", sid),
                    id=sid,
                    count=0,
                    extra={
                        "class_id": cid,
                        "class_name": str(class_names[cid]) if cid and _present(class_names.get(cid)) else self.labels.placeholder("class"),
                    },
                )
            )
        return self._sorted(rows, by_label=True)


__all__ = [
    "AggregationPipeline",
    "FacetRow",
    "KpiSummary",
    "NEW",
    "chart_payload",
    "percent_change",
    "percent_changes",
]
