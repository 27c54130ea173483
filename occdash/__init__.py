"""Occurrence analytics engine for the school dashboard."""

from .config import Config  # noqa: F401
from .app import create_dashboard  # noqa: F401

__all__ = ["Config", "create_dashboard"]
