# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from vetwatch.config import DEFAULT_ESCALATION_KEYWORDS
from vetwatch.dashboard.aggregator import DashboardAggregator
from vetwatch.dashboard.students import EducatorStudentService
from vetwatch.followup.engine import FollowUpTaskEngine
from vetwatch.storage.memory_store import InMemoryCollectionStore

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the services.

    A SimpleNamespace instead of the real config keeps tests independent of the environment.
    """
    return SimpleNamespace(
        app_name="vetwatch-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        store_backend="memory",
        store_db_path=tmp_path / "store.sqlite3",
        serialize_writes=False,
        recent_completed_days=30,
        deadline_window_days=7,
        response_rate_threshold=0.8,
        update_quality_threshold=0.7,
        reflection_min_chars=50,
        escalation_concern_level=4,
        escalation_keywords=DEFAULT_ESCALATION_KEYWORDS,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryCollectionStore:
    return InMemoryCollectionStore()


@pytest.fixture()
def engine(store, settings, clock) -> FollowUpTaskEngine:
    return FollowUpTaskEngine(store, settings=settings, clock=clock)


@pytest.fixture()
def aggregator(engine, store, settings) -> DashboardAggregator:
    return DashboardAggregator(engine, store, settings=settings)


@pytest.fixture()
def students(engine, store, settings) -> EducatorStudentService:
    return EducatorStudentService(engine, store, settings=settings)
