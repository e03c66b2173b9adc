# src/vetwatch/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..dashboard.aggregator import DashboardAggregator
from ..dashboard.students import EducatorStudentService
from ..followup.engine import FollowUpTaskEngine
from .ports import PersistenceStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in command handlers.
    settings: object

    store: PersistenceStore
    engine: FollowUpTaskEngine
    dashboard: DashboardAggregator
    students: EducatorStudentService

    # Identity the console acts as (educator id for /dashboard, /students, ...).
    actor_id: str | None = None
