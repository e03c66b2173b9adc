# tests/test_concurrency.py

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from vetwatch.followup.engine import FollowUpTaskEngine
from vetwatch.storage.keys import StorageKey
from vetwatch.storage.memory_store import InMemoryCollectionStore

from .fakes import FakeClock


async def _two_concurrent_updates(engine: FollowUpTaskEngine) -> str:
    task = await engine.create_follow_up_task(
        {"studentId": "s1", "animalId": "a1", "frequency": "daily", "durationDays": 5}
    )
    assert task is not None

    await asyncio.gather(
        engine.add_task_update({"followUpTaskId": task.id, "observations": "morning check"}),
        engine.add_task_update({"followUpTaskId": task.id, "observations": "evening check"}),
    )
    return task.id


@pytest.mark.asyncio
async def test_concurrent_updates_lose_one_write_by_default(
    engine: FollowUpTaskEngine, store: InMemoryCollectionStore
) -> None:
    task_id = await _two_concurrent_updates(engine)

    stored = store.snapshot(StorageKey.FOLLOW_UP_UPDATES) or []
    assert len([u for u in stored if u["followUpTaskId"] == task_id]) == 1


@pytest.mark.asyncio
async def test_serialized_writes_keep_both_updates(settings, clock: FakeClock) -> None:
    store = InMemoryCollectionStore()
    serialized = SimpleNamespace(**{**vars(settings), "serialize_writes": True})
    engine = FollowUpTaskEngine(store, settings=serialized, clock=clock)

    task_id = await _two_concurrent_updates(engine)

    stored = store.snapshot(StorageKey.FOLLOW_UP_UPDATES) or []
    assert len([u for u in stored if u["followUpTaskId"] == task_id]) == 2

    task = await engine.get_follow_up_task(task_id)
    assert task is not None
    assert task.progress_percentage == 40.0

