# src/vetwatch/storage/memory_store.py

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)


class InMemoryCollectionStore:
    """
    Process-local key -> collection store.

    Values are deep-copied in both directions so callers never share mutable state with the
    store. Both calls yield to the event loop before touching data, the same way a real
    async backend would, so un-awaited concurrent writers race here too.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {k: copy.deepcopy(v) for k, v in (initial or {}).items()}

    def close(self) -> None:
        return

    def snapshot(self, key: str) -> Any | None:
        """Synchronous peek for diagnostics and tests."""
        return copy.deepcopy(self._data.get(key))

    async def load_data(self, key: str) -> Any | None:
        await asyncio.sleep(0)
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def save_data(self, key: str, value: Any) -> bool:
        await asyncio.sleep(0)
        try:
            self._data[key] = copy.deepcopy(value)
        except Exception:
            logger.exception("Failed to save data for key %s", key)
            return False
        return True
