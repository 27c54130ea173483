"""Occurrence store interface and the local DuckDB implementation."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Any, List, Mapping, Optional, Sequence

import duckdb
import pandas as pd

from occdash.utils.filter_params import OccurrenceQuery

logger = logging.getLogger("occdash.store")

TABLE_COLUMNS = {
    "occurrences": (
        "id",
        "institution_id",
        "class_id",
        "student_id",
        "teacher_id",
        "occurrence_type_id",
        "occurred_at",
    ),
    "classes": ("id", "institution_id", "name", "shift", "education_level", "academic_year"),
    "students": ("id", "institution_id", "name", "class_id"),
    "teachers": ("id", "name"),
    "occurrence_types": ("id", "name", "severity"),
}

OCCURRENCE_COLUMNS = TABLE_COLUMNS["occurrences"]

LOOKUP_TABLES = ("classes", "students", "teachers", "occurrence_types")


class StoreError(RuntimeError):
    """A store call failed (connection, remote error, bad SQL)."""


def _check_columns(columns: Sequence[str]) -> List[str]:
    cols = list(dict.fromkeys(columns))
    unknown = [c for c in cols if c not in OCCURRENCE_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown occurrence columns: {unknown}")
    return cols


class OccurrenceStore:
    """Asynchronous, read-only view of occurrences and their references.

    Public methods are coroutines; each runs the backend's blocking hook in a
    worker thread so the event loop is never blocked. Subclasses implement
    the ``_``-prefixed hooks.
    """

    date_col = "occurred_at"

    async def count(self, query: OccurrenceQuery) -> int:
        if query.is_empty_range():
            return 0
        return await asyncio.to_thread(self._count, query)

    async def fetch(self, query: OccurrenceQuery, columns: Sequence[str] = ("occurred_at",)) -> pd.DataFrame:
        cols = _check_columns(list(columns) + [self.date_col])
        if query.is_empty_range():
            return pd.DataFrame(columns=cols)
        return await asyncio.to_thread(self._fetch, query, cols)

    async def classes(
        self,
        institution_id: str,
        academic_year: int,
        shift: Optional[str] = None,
        education_level: Optional[str] = None,
    ) -> pd.DataFrame:
        return await asyncio.to_thread(self._classes, institution_id, academic_year, shift, education_level)

    async def students(
        self,
        institution_id: str,
        class_ids: Sequence[str],
        class_id: Optional[str] = None,
    ) -> pd.DataFrame:
        if not class_ids:
            return pd.DataFrame(columns=list(TABLE_COLUMNS["students"]))
        return await asyncio.to_thread(self._students, institution_id, tuple(class_ids), class_id)

    async def lookup(self, table: str, ids: Sequence[str]) -> pd.DataFrame:
        """Reference rows of ``table`` (classes, students, teachers, occurrence_types) by id."""
        if table not in LOOKUP_TABLES:
            raise ValueError(f"Unknown reference table: {table}")
        ids = tuple(dict.fromkeys(str(i) for i in ids))
        if not ids:
            return pd.DataFrame(columns=list(TABLE_COLUMNS[table]))
        return await asyncio.to_thread(self._lookup, table, ids)

    async def teachers(self, ids: Sequence[str]) -> pd.DataFrame:
        return await self.lookup("teachers", ids)

    async def occurrence_types(self, ids: Sequence[str]) -> pd.DataFrame:
        return await self.lookup("occurrence_types", ids)

    async def academic_years(self, institution_id: str) -> List[int]:
        return await asyncio.to_thread(self._academic_years, institution_id)

    # ---------- backend hooks ----------

    def _count(self, query: OccurrenceQuery) -> int:
        raise NotImplementedError

    def _fetch(self, query: OccurrenceQuery, columns: List[str]) -> pd.DataFrame:
        raise NotImplementedError

    def _classes(self, institution_id, academic_year, shift, education_level) -> pd.DataFrame:
        raise NotImplementedError

    def _students(self, institution_id, class_ids, class_id) -> pd.DataFrame:
        raise NotImplementedError

    def _lookup(self, table: str, ids) -> pd.DataFrame:
        raise NotImplementedError

    def _academic_years(self, institution_id) -> List[int]:
        raise NotImplementedError


class DuckDBOccurrenceStore(OccurrenceStore):
    """Occurrence store backed by a DuckDB database.

    Tables: occurrences, classes, students, teachers, occurrence_types.
    ``occurred_at`` is persisted as a naive UTC TIMESTAMP and returned as an
    aware UTC timestamp.
    """

    def __init__(self, config: Mapping[str, Any]):
        self.config = config
        self._con: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    # ---------- DuckDB helpers ----------

    def _connect(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._con is None:
                db_path = str(self.config.get("DUCKDB_PATH", ":memory:"))
                if db_path != ":memory:":
                    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
                self._con = duckdb.connect(db_path)
                logger.info("Connected to DuckDB at %s", db_path)
            return self._con

    def _table_exists(self, name: str) -> bool:
        df = self.run_query(
            "SELECT COUNT(*) AS n FROM information_schema.tables WHERE table_name = ?;",
            [name],
        )
        return bool(df.iloc[0]["n"])

    def run_query(self, sql: str, params=None) -> pd.DataFrame:
        """Execute SQL on a per-call cursor and return a pandas DataFrame."""
        con = self._connect()
        with self._lock:
            cur = con.cursor()
        try:
            return cur.execute(sql, params or []).df()
        except duckdb.Error as exc:
            logger.error("DuckDB query failed: %s", exc)
            raise StoreError(str(exc)) from exc
        finally:
            cur.close()

    def set_table(self, name: str, df: pd.DataFrame) -> None:
        """Replace table ``name`` with the contents of ``df``."""
        if name not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {name}")
        columns = TABLE_COLUMNS[name]
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise ValueError(f"Table {name} is missing columns: {missing}")

        frame = df.loc[:, list(columns)].copy()
        for col in columns:
            if col == "academic_year":
                frame[col] = pd.to_numeric(frame[col], errors="coerce").astype("Int64")
            elif col == self.date_col:
                frame[col] = pd.to_datetime(frame[col], utc=True).dt.tz_localize(None)
            else:
                frame[col] = frame[col].map(lambda v: None if pd.isna(v) else str(v)).astype(object)

        con = self._connect()
        with self._lock:
            con.register("tmp_df", frame)
            try:
                con.execute(f"CREATE OR REPLACE TABLE {name} AS SELECT * FROM tmp_df;")
            finally:
                con.unregister("tmp_df")
        logger.info("Loaded %d row(s) into DuckDB table %s.", len(frame), name)

    def _empty(self, name: str, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
        logger.warning("DuckDB table %s missing; returning no rows.", name)
        return pd.DataFrame(columns=list(columns or TABLE_COLUMNS[name]))

    # ---------- backend hooks ----------

    def _count(self, query: OccurrenceQuery) -> int:
        if not self._table_exists("occurrences"):
            return 0
        clause, params = query.to_sql_where(self.date_col)
        df = self.run_query(f"SELECT COUNT(*) AS n FROM occurrences WHERE {clause};", params)
        return int(df.iloc[0]["n"])

    def _fetch(self, query: OccurrenceQuery, columns: List[str]) -> pd.DataFrame:
        if not self._table_exists("occurrences"):
            return self._empty("occurrences", columns)
        clause, params = query.to_sql_where(self.date_col)
        df = self.run_query(
            f"""
            SELECT {", ".join(columns)}
            FROM occurrences
            WHERE {clause}
            ORDER BY {self.date_col};
            """,
            params,
        )
        df[self.date_col] = pd.to_datetime(df[self.date_col]).dt.tz_localize("UTC")
        return df

    def _classes(self, institution_id, academic_year, shift, education_level) -> pd.DataFrame:
        if not self._table_exists("classes"):
            return self._empty("classes")
        where = ["institution_id = ?", "academic_year = ?"]
        params: List[object] = [institution_id, int(academic_year)]
        if shift is not None:
            where.append("shift = ?")
            params.append(shift)
        if education_level is not None:
            where.append("education_level = ?")
            params.append(education_level)
        return self.run_query(
            f"""
            SELECT id, institution_id, name, shift, education_level, academic_year
            FROM classes
            WHERE {" AND ".join(where)}
            ORDER BY name;
            """,
            params,
        )

    def _students(self, institution_id, class_ids, class_id) -> pd.DataFrame:
        if not self._table_exists("students"):
            return self._empty("students")
        placeholders = ",".join(["?"] * len(class_ids))
        where = ["institution_id = ?", f"class_id IN ({placeholders})"]
        params: List[object] = [institution_id, *class_ids]
        if class_id is not None:
            where.append("class_id = ?")
            params.append(class_id)
        return self.run_query(
            f"""
            SELECT id, institution_id, name, class_id
            FROM students
            WHERE {" AND ".join(where)}
            ORDER BY name;
            """,
            params,
        )

    def _lookup(self, table: str, ids) -> pd.DataFrame:
        if not self._table_exists(table):
            return self._empty(table)
        placeholders = ",".join(["?"] * len(ids))
        return self.run_query(
            f"SELECT {', '.join(TABLE_COLUMNS[table])} FROM {table} WHERE id IN ({placeholders});",
            list(ids),
        )

    def _academic_years(self, institution_id) -> List[int]:
        if not self._table_exists("classes"):
            return []
        df = self.run_query(
            """
            SELECT DISTINCT academic_year AS y
            FROM classes
            WHERE institution_id = ? AND academic_year IS NOT NULL
            ORDER BY y DESC;
            """,
            [institution_id],
        )
        return [int(y) for y in df["y"]]


__all__ = [
    "DuckDBOccurrenceStore",
    "LOOKUP_TABLES",
    "OCCURRENCE_COLUMNS",
    "OccurrenceStore",
    "StoreError",
    "TABLE_COLUMNS",
]
