# src/vetwatch/core/errors.py

from __future__ import annotations


class PersistenceError(RuntimeError):
    """A store reported a failed save. Services catch it at their public boundary."""

    def __init__(self, key: str) -> None:
        super().__init__(f"store refused to save key={key}")
        self.key = key
