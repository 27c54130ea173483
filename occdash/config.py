"""Application configuration objects."""

import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration for the occurrence dashboard engine."""

    # -------------------------
    # Occurrence store
    # -------------------------
    # "duckdb" (local file) or "supabase" (PostgREST over HTTP)
    STORE_BACKEND = os.getenv("OCCDASH_STORE", "duckdb")

    # DuckDB database file (":memory:" for an ephemeral store)
    DUCKDB_PATH = Path(os.getenv("OCCDASH_DUCKDB_PATH", "data/occurrences.duckdb"))

    # Remote store
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")
    REQUEST_TIMEOUT = float(os.getenv("OCCDASH_REQUEST_TIMEOUT", "30"))
    PAGE_SIZE = int(os.getenv("OCCDASH_PAGE_SIZE", "1000"))
    # ids per ``id=in.(...)`` reference lookup
    LOOKUP_CHUNK = int(os.getenv("OCCDASH_LOOKUP_CHUNK", "100"))

    # -------------------------
    # Calendar
    # -------------------------
    # Local calendar used for day/weekday/month boundaries
    TIMEZONE = os.getenv("OCCDASH_TIMEZONE", "America/Sao_Paulo")

    # Quiescence delay before a refresh cycle starts
    DEBOUNCE_SECONDS = float(os.getenv("OCCDASH_DEBOUNCE_SECONDS", "0.05"))

    # -------------------------
    # Labels
    # -------------------------
    MONTH_ABBR: List[str] = [
        "jan", "fev", "mar", "abr", "mai", "jun",
        "jul", "ago", "set", "out", "nov", "dez",
    ]

    # ISO weekday -> name, Monday..Friday only
    WEEKDAY_NAMES: Dict[int, str] = {
        1: "Segunda",
        2: "Terça",
        3: "Quarta",
        4: "Quinta",
        5: "Sexta",
    }

    # ISO weekday -> short name, used in month-detail labels
    WEEKDAY_SHORT: Dict[int, str] = {
        1: "Seg",
        2: "Ter",
        3: "Qua",
        4: "Qui",
        5: "Sex",
        6: "Sáb",
        7: "Dom",
    }

    SHIFT_LABELS: Dict[str, str] = {
        "matutino": "Matutino",
        "vespertino": "Vespertino",
        "noturno": "Noturno",
        "integral": "Integral",
    }

    EDUCATION_LEVEL_LABELS: Dict[str, str] = {
        "creche": "Creche (0-3 anos)",
        "pre_escola": "Pré-escola (4-5 anos)",
        "fundamental": "Ensino Fundamental",
        "ensino_medio": "Ensino Médio",
    }

    PLACEHOLDERS: Dict[str, str] = {
        "class": "Sem turma",
        "student": "Aluno {id}",
        "teacher": "Professor {id}",
        "occurrence_type": "Sem tipo ({id})",
        "severity": "leve",
        "unknown": "Não informado",
    }


__all__ = ["Config"]
