import pandas as pd
import pytest

from occdash.services.residual import ResidualClientFilter
from occdash.utils.filter_params import Dimension, Filter, FilterSet

from conftest import TZ, records


@pytest.fixture
def residual():
    return ResidualClientFilter(TZ)


def test_specific_date_uses_local_calendar_day(residual):
    recs = records(
        "2025-03-17T12:00:00Z",
        "2025-03-18T02:30:00Z",  # 23:30 local on the 17th
        "2025-03-18T03:30:00Z",  # 00:30 local on the 18th
    )
    flt = Filter(Dimension.SPECIFIC_DATE, "2025-03-17", "17/03/2025")
    assert len(residual.apply_filter(recs, flt)) == 2


def test_weekday_uses_local_weekday(residual):
    recs = records(
        "2025-03-18T02:30:00Z",  # Monday in Sao Paulo, Tuesday in UTC
        "2025-03-18T15:00:00Z",  # Tuesday
        "2025-03-22T15:00:00Z",  # Saturday
    )
    monday = residual.apply_filter(recs, Filter(Dimension.WEEKDAY, "1", "Segunda"))
    assert list(monday["occurred_at"]) == [recs["occurred_at"][0]]
    tuesday = residual.apply_filter(recs, Filter(Dimension.WEEKDAY, "2", "Terça"))
    assert len(tuesday) == 1


def test_naive_timestamps_are_utc(residual):
    recs = pd.DataFrame({"occurred_at": ["2025-03-18 02:30:00"]})
    flt = Filter(Dimension.SPECIFIC_DATE, "2025-03-17", "17/03/2025")
    assert len(residual.apply_filter(recs, flt)) == 1


def test_no_residual_filter_returns_records_unchanged(residual):
    recs = records("2025-03-17T12:00:00Z")
    filters = FilterSet(school_class=Filter(Dimension.CLASS, "c1", "Turma A"))
    assert not residual.needed(filters)
    assert residual.apply(recs, filters) is recs


def test_specific_date_takes_precedence(residual):
    recs = records("2025-03-17T12:00:00Z", "2025-03-19T12:00:00Z")
    filters = FilterSet(
        specific_date=Filter(Dimension.SPECIFIC_DATE, "2025-03-19", "19/03/2025"),
        weekday=Filter(Dimension.WEEKDAY, "1", "Segunda"),
    )
    out = residual.apply(recs, filters)
    assert len(out) == 1
    assert out["occurred_at"].iloc[0].day == 19


def test_non_residual_filter_raises(residual):
    with pytest.raises(ValueError):
        residual.apply_filter(records("2025-03-17T12:00:00Z"), Filter(Dimension.CLASS, "c1", "Turma A"))


def test_late_evening_stays_on_its_local_day(residual):
    recs = records(
        "2025-10-31T02:50:00Z",  # 30/10 23:50 local
        "2025-10-31T03:10:00Z",  # 31/10 00:10 local
    )
    out = residual.apply_filter(recs, Filter(Dimension.SPECIFIC_DATE, "2025-10-30", "30/10/2025"))
    assert list(out.index) == [0]

    local = recs.copy()
    local["occurred_at"] = local["occurred_at"].dt.tz_convert(TZ)
    assert list(residual.apply_filter(local, Filter(Dimension.SPECIFIC_DATE, "2025-10-30", "30/10/2025")).index) == [0]
