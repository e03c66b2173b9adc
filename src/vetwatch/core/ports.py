# src/vetwatch/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the services.

The engine and dashboards depend on Protocols instead of concrete implementations.
This keeps the storage backend swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Callable, Protocol

Record = dict[str, Any]
# One stored entity in its camelCase wire shape.

Clock = Callable[[], datetime]
# Returns the current time as an aware UTC datetime.


class PersistenceStore(Protocol):
    """
    Async key -> collection store.

    There is no per-record access: callers load a whole collection, change it, and save it
    back. Implementations never raise; failures come back as None / False.
    """

    async def load_data(self, key: str) -> Any | None: ...

    async def save_data(self, key: str, value: Any) -> bool: ...
