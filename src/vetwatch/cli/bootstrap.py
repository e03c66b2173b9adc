# src/vetwatch/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- picks the store backend and wires the services into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import PersistenceStore
from ..core.state import AppState
from ..dashboard.aggregator import DashboardAggregator
from ..dashboard.students import EducatorStudentService
from ..followup.engine import FollowUpTaskEngine
from ..storage.memory_store import InMemoryCollectionStore
from ..storage.sqlite_store import SqliteCollectionStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_store(settings) -> PersistenceStore:
    backend = str(getattr(settings, "store_backend", "sqlite")).lower()
    if backend == "memory":
        logger.info("Using in-memory store (data is lost on exit).")
        return InMemoryCollectionStore()
    if backend != "sqlite":
        logger.warning("Unknown store backend %r, falling back to sqlite.", backend)
    return SqliteCollectionStore(settings.store_db_path)


def create_initial_state(*, settings=None, store: PersistenceStore | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). A store can be injected (tests);
    otherwise one is built from settings.store_backend.
    """
    if settings is None:
        settings = get_settings()

    if store is None:
        _ensure_local_dirs(settings)
        store = create_store(settings)

    engine = FollowUpTaskEngine(store, settings=settings)
    return AppState(
        settings=settings,
        store=store,
        engine=engine,
        dashboard=DashboardAggregator(engine, store, settings=settings),
        students=EducatorStudentService(engine, store, settings=settings),
    )
