"""Factory for the occurrence dashboard engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("occdash")

from .config import Config
from .services.controller import DashboardController
from .services.datastore import DuckDBOccurrenceStore, OccurrenceStore
from .services.remote import SupabaseOccurrenceStore


def load_config(config_object: Optional[Union[Mapping[str, Any], type]] = None) -> Dict[str, Any]:
    """Upper-case settings of ``Config``, a mapping, or a config class."""
    if config_object is None:
        config_object = Config
    if isinstance(config_object, Mapping):
        settings = {k: v for k, v in vars(Config).items() if k.isupper()}
        settings.update(config_object)
        return settings
    return {k: getattr(config_object, k) for k in dir(config_object) if k.isupper()}


def create_store(config: Mapping[str, Any]) -> OccurrenceStore:
    backend = str(config.get("STORE_BACKEND", "duckdb")).lower()
    if backend == "duckdb":
        return DuckDBOccurrenceStore(config)
    if backend == "supabase":
        return SupabaseOccurrenceStore(config)
    raise ValueError(f"Unknown store backend: {backend!r}")


def create_dashboard(
    institution_id: str,
    config_object: Optional[Union[Mapping[str, Any], type]] = None,
    store: Optional[OccurrenceStore] = None,
) -> DashboardController:
    """Create a dashboard controller for one institution."""
    config = load_config(config_object)
    if store is None:
        store = create_store(config)
    logger.info("Dashboard for institution %s using %s", institution_id, type(store).__name__)
    return DashboardController(store, config, institution_id)


__all__ = ["create_dashboard", "create_store", "load_config"]
