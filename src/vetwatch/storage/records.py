# src/vetwatch/storage/records.py

from __future__ import annotations

import logging

from ..core.ports import PersistenceStore, Record

logger = logging.getLogger(__name__)


async def load_records(store: PersistenceStore, key: str) -> list[Record]:
    """
    Load a collection as a list of dict records.

    Missing keys read as []. Anything that is not a list of dicts is dropped with a warning;
    store errors propagate to the caller's boundary.
    """
    raw = await store.load_data(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring non-list collection key=%s type=%s", key, type(raw).__name__)
        return []
    return [r for r in raw if isinstance(r, dict)]
