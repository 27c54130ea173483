from datetime import date

import pandas as pd
import pytest

from occdash.app import load_config
from occdash.services.aggregation import AggregationPipeline
from occdash.services.datastore import DuckDBOccurrenceStore
from occdash.services.labels import Labels
from occdash.services.time_window import TimeWindowResolver

TZ = "America/Sao_Paulo"
INSTITUTION = "inst-1"
TODAY = date(2025, 3, 20)  # a Thursday


def occurrence(oid, class_id, student_id, teacher_id, type_id, occurred_at, institution_id=INSTITUTION):
    return {
        "id": oid,
        "institution_id": institution_id,
        "class_id": class_id,
        "student_id": student_id,
        "teacher_id": teacher_id,
        "occurrence_type_id": type_id,
        "occurred_at": occurred_at,
    }


OCCURRENCES = [
    occurrence("o1", "c1", "s1", "t1", "ty1", "2025-01-15T13:00:00Z"),
    occurrence("o2", "c1", "s1", "t1", "ty2", "2025-02-10T12:00:00Z"),
    occurrence("o3", "c1", "s2", "t2", "ty1", "2025-03-17T12:00:00Z"),
    # 23:30 on Monday 17/03 in Sao Paulo, already Tuesday in UTC
    occurrence("o4", "c2", "s3", "t2", "ty1", "2025-03-18T02:30:00Z"),
    occurrence("o5", "c2", "s3", "t1", "ty2", "2025-03-19T15:00:00Z"),
    # class from a previous academic year: outside the 2025 class scope
    occurrence("o6", "c9", "s1", "t1", "ty1", "2025-03-19T16:00:00Z"),
    occurrence("o7", "c1", "s1", "t1", "ty1", "2025-03-19T16:00:00Z", institution_id="inst-2"),
]

CLASSES = [
    {"id": "c1", "institution_id": INSTITUTION, "name": "Turma A", "shift": "matutino", "education_level": "fundamental", "academic_year": 2025},
    {"id": "c2", "institution_id": INSTITUTION, "name": "Turma B", "shift": "vespertino", "education_level": "ensino_medio", "academic_year": 2025},
    {"id": "c9", "institution_id": INSTITUTION, "name": "Turma Antiga", "shift": "matutino", "education_level": "fundamental", "academic_year": 2024},
]

STUDENTS = [
    {"id": "s1", "institution_id": INSTITUTION, "name": "Ana", "class_id": "c1"},
    {"id": "s2", "institution_id": INSTITUTION, "name": "Bruno", "class_id": "c1"},
    {"id": "s3", "institution_id": INSTITUTION, "name": "Carla", "class_id": "c2"},
    {"id": "s4", "institution_id": INSTITUTION, "name": "Diego", "class_id": "c2"},
]

TEACHERS = [
    {"id": "t1", "name": "Prof. Silva"},
    {"id": "t2", "name": "Prof. Souza"},
]

OCCURRENCE_TYPES = [
    {"id": "ty1", "name": "Atraso", "severity": "leve"},
    {"id": "ty2", "name": "Indisciplina", "severity": "grave"},
]


@pytest.fixture
def config():
    return load_config(
        {
            "STORE_BACKEND": "duckdb",
            "DUCKDB_PATH": ":memory:",
            "TIMEZONE": TZ,
            "DEBOUNCE_SECONDS": 0.01,
        }
    )


@pytest.fixture
def labels(config):
    return Labels(config)


@pytest.fixture
def resolver(labels):
    return TimeWindowResolver(TZ, labels)


@pytest.fixture
def pipeline(labels):
    return AggregationPipeline(labels, TZ)


def seed(store):
    store.set_table("occurrences", pd.DataFrame(OCCURRENCES))
    store.set_table("classes", pd.DataFrame(CLASSES))
    store.set_table("students", pd.DataFrame(STUDENTS))
    store.set_table("teachers", pd.DataFrame(TEACHERS))
    store.set_table("occurrence_types", pd.DataFrame(OCCURRENCE_TYPES))
    return store


@pytest.fixture
def store(config):
    return seed(DuckDBOccurrenceStore(config))


def records(*stamps, **columns):
    """Occurrence records with aware UTC timestamps, as the stores return them."""
    data = {"occurred_at": pd.to_datetime(list(stamps), utc=True)}
    data.update(columns)
    return pd.DataFrame(data)
