import asyncio
from datetime import datetime, timezone

import pytest
import requests

from occdash.services.datastore import StoreError
from occdash.services.remote import SupabaseOccurrenceStore, parse_content_range
from occdash.utils.filter_params import OccurrenceQuery


class FakeResponse:
    def __init__(self, payload=None, headers=None, status=200):
        self.payload = payload if payload is not None else []
        self.headers = headers or {}
        self.status_code = status

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, params=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_store(responses, **config):
    settings = {"SUPABASE_URL": "https://school.example.co/", "SUPABASE_KEY": "anon-key", "PAGE_SIZE": 2}
    settings.update(config)
    session = FakeSession(responses)
    return SupabaseOccurrenceStore(settings, session=session), session


QUERY = OccurrenceQuery(
    "inst-1",
    class_ids=("c1",),
    start=datetime(2025, 3, 1, 3, tzinfo=timezone.utc),
    end=datetime(2025, 4, 1, 2, 59, 59, 999000, tzinfo=timezone.utc),
)


def test_parse_content_range():
    assert parse_content_range("0-24/573") == 573
    assert parse_content_range("*/0") == 0
    with pytest.raises(StoreError):
        parse_content_range(None)
    with pytest.raises(StoreError):
        parse_content_range("0-24/*")


def test_count_uses_exact_count_header():
    store, session = make_store([FakeResponse(headers={"Content-Range": "*/7"})])
    assert asyncio.run(store.count(QUERY)) == 7

    call = session.calls[0]
    assert call["method"] == "HEAD"
    assert call["url"] == "https://school.example.co/rest/v1/occurrences"
    assert call["headers"]["Prefer"] == "count=exact"
    assert call["headers"]["apikey"] == "anon-key"
    assert call["headers"]["Authorization"] == "Bearer anon-key"
    assert ("class_id", "in.(c1)") in call["params"]
    assert ("occurred_at", "gte.2025-03-01T03:00:00.000Z") in call["params"]


def test_fetch_paginates_with_range_headers():
    store, session = make_store(
        [
            FakeResponse(
                [
                    {"student_id": "s1", "occurred_at": "2025-03-17T12:00:00+00:00"},
                    {"student_id": "s2", "occurred_at": "2025-03-18T02:30:00+00:00"},
                ],
                headers={"Content-Range": "0-1/3"},
            ),
            FakeResponse(
                [{"student_id": "s3", "occurred_at": "2025-03-19T15:00:00+00:00"}],
                headers={"Content-Range": "2-2/3"},
            ),
        ]
    )
    df = asyncio.run(store.fetch(QUERY, ["student_id"]))

    assert list(df["student_id"]) == ["s1", "s2", "s3"]
    assert str(df["occurred_at"].dt.tz) == "UTC"
    assert [c["headers"]["Range"] for c in session.calls] == ["0-1", "2-3"]
    assert session.calls[0]["headers"]["Prefer"] == "count=exact"
    assert ("select", "student_id,occurred_at") in session.calls[0]["params"]
    assert ("order", "occurred_at.asc") in session.calls[0]["params"]


def test_fetch_keeps_paging_when_server_caps_rows():
    # server max-rows (2) is below the configured page size (3)
    pages = [
        FakeResponse(
            [{"student_id": f"s{i}", "occurred_at": "2025-03-17T12:00:00+00:00"} for i in range(start, min(start + 2, 5))],
            headers={"Content-Range": f"{start}-{min(start + 1, 4)}/5"},
        )
        for start in (0, 2, 4)
    ]
    store, session = make_store(pages, PAGE_SIZE=3)
    df = asyncio.run(store.fetch(QUERY, ["student_id"]))

    assert list(df["student_id"]) == ["s0", "s1", "s2", "s3", "s4"]
    assert [c["headers"]["Range"] for c in session.calls] == ["0-2", "2-4", "4-6"]


def test_paging_stops_on_empty_page_without_total():
    store, session = make_store(
        [
            FakeResponse([{"id": "t1", "name": "Prof. Silva"}]),
            FakeResponse([]),
        ],
        PAGE_SIZE=5,
    )
    df = asyncio.run(store.teachers(["t1"]))
    assert list(df["name"]) == ["Prof. Silva"]
    assert len(session.calls) == 2


def test_teachers_read_users_table():
    store, session = make_store([FakeResponse([{"id": "t1", "name": "Prof. Silva"}], headers={"Content-Range": "0-0/1"})])
    df = asyncio.run(store.teachers(["t1"]))
    assert list(df["name"]) == ["Prof. Silva"]
    assert session.calls[0]["url"].endswith("/rest/v1/users")
    assert ("id", "in.(t1)") in session.calls[0]["params"]


def test_lookup_ids_are_sent_in_batches():
    ids = [f"s{i}" for i in range(5)]
    store, session = make_store(
        [
            FakeResponse([{"id": "s0", "name": "Ana"}, {"id": "s1", "name": "Bruno"}], headers={"Content-Range": "0-1/2"}),
            FakeResponse([{"id": "s2", "name": "Carla"}], headers={"Content-Range": "0-0/1"}),
            FakeResponse([], headers={"Content-Range": "*/0"}),
        ],
        LOOKUP_CHUNK=2,
    )
    df = asyncio.run(store.lookup("students", ids))

    assert list(df["name"]) == ["Ana", "Bruno", "Carla"]
    assert [dict(c["params"])["id"] for c in session.calls] == ["in.(s0,s1)", "in.(s2,s3)", "in.(s4)"]


def test_classes_filters_and_years():
    store, session = make_store(
        [
            FakeResponse([{"id": "c1", "name": "Turma A", "shift": "matutino"}], headers={"Content-Range": "0-0/1"}),
            FakeResponse([{"academic_year": 2024}, {"academic_year": 2025}], headers={"Content-Range": "0-1/3"}),
            FakeResponse([{"academic_year": 2025}], headers={"Content-Range": "2-2/3"}),
        ]
    )
    classes = asyncio.run(store.classes("inst-1", 2025, shift="matutino"))
    assert list(classes["id"]) == ["c1"]
    assert ("shift", "eq.matutino") in session.calls[0]["params"]
    assert ("academic_year", "eq.2025") in session.calls[0]["params"]

    assert asyncio.run(store.academic_years("inst-1")) == [2025, 2024]
    assert len(session.calls) == 3


@pytest.mark.parametrize(
    "failure",
    [requests.ConnectionError("refused"), requests.Timeout("slow"), FakeResponse(status=500)],
)
def test_transport_errors_become_store_errors(failure):
    store, _ = make_store([failure])
    with pytest.raises(StoreError):
        asyncio.run(store.count(QUERY))


def test_url_is_required():
    with pytest.raises(ValueError):
        SupabaseOccurrenceStore({"SUPABASE_URL": None})
