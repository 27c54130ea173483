"""Occurrence store backed by a Supabase (PostgREST) endpoint."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import requests

from occdash.services.datastore import TABLE_COLUMNS, OccurrenceStore, StoreError
from occdash.utils.filter_params import OccurrenceQuery

logger = logging.getLogger("occdash.store")

Params = List[Tuple[str, str]]


def parse_content_range(value: Optional[str]) -> int:
    """Total from a ``Content-Range`` header such as ``0-24/573`` or ``*/0``."""
    if not value or "/" not in value:
        raise StoreError(f"Missing or malformed Content-Range header: {value!r}")
    total = value.rsplit("/", 1)[1]
    if total == "*":
        raise StoreError("Remote store did not return an exact count")
    return int(total)


class SupabaseOccurrenceStore(OccurrenceStore):
    """Read occurrences and references through the PostgREST API.

    Table names follow the school database: occurrences, classes, students,
    users (teachers) and occurrence_types.
    """

    remote_tables = {"teachers": "users"}

    def __init__(self, config: Mapping[str, Any], session: Optional[requests.Session] = None):
        url = config.get("SUPABASE_URL")
        if not url:
            raise ValueError("SUPABASE_URL is required for the supabase store")
        self.base_url = f"{str(url).rstrip('/')}/rest/v1"
        self.timeout = float(config.get("REQUEST_TIMEOUT", 30))
        self.page_size = int(config.get("PAGE_SIZE", 1000))
        self.lookup_chunk = max(int(config.get("LOOKUP_CHUNK", 100)), 1)
        self.session = session or requests.Session()

        key = config.get("SUPABASE_KEY")
        self.headers = {"Accept": "application/json"}
        if key:
            self.headers.update({"apikey": key, "Authorization": f"Bearer {key}"})

    # ---------- HTTP helpers ----------

    def _request(self, method: str, table: str, params: Params, headers: Optional[Mapping[str, str]] = None) -> requests.Response:
        url = f"{self.base_url}/{table}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                headers={**self.headers, **(headers or {})},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp
        except (requests.HTTPError, requests.ConnectionError, requests.Timeout) as e:
            logger.error("Remote store %s %s failed: %s", method, table, e)
            raise StoreError(f"{method} {table} failed: {e}") from e

    def _rows(self, table: str, params: Params, columns: Sequence[str]) -> pd.DataFrame:
        """Enumerate all matching rows, one ``Range`` page at a time.

        The server may cap a page below ``page_size`` (PostgREST ``max-rows``),
        so paging stops on an empty page or once the exact total is reached.
        """
        rows: List[dict] = []
        offset = 0
        total: Optional[int] = None
        while True:
            resp = self._request(
                "GET",
                table,
                params,
                headers={
                    "Range-Unit": "items",
                    "Range": f"{offset}-{offset + self.page_size - 1}",
                    "Prefer": "count=exact",
                },
            )
            batch = resp.json()
            rows.extend(batch)
            content_range = resp.headers.get("Content-Range")
            if total is None and content_range and not content_range.endswith("/*"):
                total = parse_content_range(content_range)
            if not batch or (total is not None and len(rows) >= total):
                break
            offset += len(batch)
        logger.debug("Fetched %d row(s) from %s", len(rows), table)
        return pd.DataFrame(rows, columns=list(columns))

    @staticmethod
    def _in(ids: Sequence[str]) -> str:
        return f"in.({','.join(str(i) for i in ids)})"

    # ---------- backend hooks ----------

    def _count(self, query: OccurrenceQuery) -> int:
        params: Params = [("select", "id")] + query.to_postgrest_params(self.date_col)
        resp = self._request("HEAD", "occurrences", params, headers={"Prefer": "count=exact"})
        return parse_content_range(resp.headers.get("Content-Range"))

    def _fetch(self, query: OccurrenceQuery, columns: List[str]) -> pd.DataFrame:
        params: Params = (
            [("select", ",".join(columns))]
            + query.to_postgrest_params(self.date_col)
            + [("order", f"{self.date_col}.asc")]
        )
        df = self._rows("occurrences", params, columns)
        df[self.date_col] = pd.to_datetime(df[self.date_col], utc=True)
        return df

    def _classes(self, institution_id, academic_year, shift, education_level) -> pd.DataFrame:
        columns = TABLE_COLUMNS["classes"]
        params: Params = [
            ("select", ",".join(columns)),
            ("institution_id", f"eq.{institution_id}"),
            ("academic_year", f"eq.{int(academic_year)}"),
        ]
        if shift is not None:
            params.append(("shift", f"eq.{shift}"))
        if education_level is not None:
            params.append(("education_level", f"eq.{education_level}"))
        params.append(("order", "name.asc"))
        return self._rows("classes", params, columns)

    def _students(self, institution_id, class_ids, class_id) -> pd.DataFrame:
        columns = TABLE_COLUMNS["students"]
        params: Params = [
            ("select", ",".join(columns)),
            ("institution_id", f"eq.{institution_id}"),
            ("class_id", self._in(class_ids)),
        ]
        if class_id is not None:
            params.append(("class_id", f"eq.{class_id}"))
        params.append(("order", "name.asc"))
        return self._rows("students", params, columns)

    def _lookup(self, table: str, ids) -> pd.DataFrame:
        # ids travel in the URL; batch them to stay under gateway URL limits
        columns = TABLE_COLUMNS[table]
        ids = list(ids)
        frames = []
        for start in range(0, len(ids), self.lookup_chunk):
            params: Params = [("select", ",".join(columns)), ("id", self._in(ids[start:start + self.lookup_chunk]))]
            frames.append(self._rows(self.remote_tables.get(table, table), params, columns))
        if not frames:
            return pd.DataFrame(columns=list(columns))
        return pd.concat(frames, ignore_index=True)

    def _academic_years(self, institution_id) -> List[int]:
        params: Params = [("select", "academic_year"), ("institution_id", f"eq.{institution_id}")]
        df = self._rows("classes", params, ["academic_year"])
        years = pd.to_numeric(df["academic_year"], errors="coerce").dropna().astype(int)
        return sorted(set(years.tolist()), reverse=True)


__all__ = ["SupabaseOccurrenceStore", "parse_content_range"]
