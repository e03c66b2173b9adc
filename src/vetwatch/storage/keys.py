# src/vetwatch/storage/keys.py

from __future__ import annotations

from enum import StrEnum


class StorageKey(StrEnum):
    """Logical collection keys understood by every PersistenceStore."""

    # Owned by the follow-up engine
    FOLLOW_UP_TASKS = "follow_up_tasks"
    FOLLOW_UP_UPDATES = "follow_up_updates"
    HEALTH_ALERTS = "health_alerts"
    EDUCATOR_MONITORING = "educator_monitoring"

    # Read-only references (profiles are also edited for supervision links)
    HEALTH_RECORDS = "health_records"
    ANIMALS = "animals"
    JOURNAL = "journal"
    PROFILES = "ffa_profiles"
    FINANCIAL_ENTRIES = "financial_entries"
