# src/vetwatch/storage/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SqliteCollectionStore:
    """
    SQLite key -> collection store.

    Each key holds one JSON document (normally a list of records). The schema is
    intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection
    - blocking work runs in a worker thread via asyncio.to_thread

    save_data replaces the whole document: concurrent writers of the same key get
    last-writer-wins. The revision column only counts writes.
    """

    def __init__(self, db_path: str | Path = "store.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = len(self.list_keys())
        except Exception:
            total = -1
        logger.info("SqliteCollectionStore ready db=%s keys=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL DEFAULT 'null',
                    revision INTEGER NOT NULL DEFAULT 0,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute("PRAGMA table_info(collections)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE collections ADD COLUMN {name} {decl}")
                logger.info("SqliteCollectionStore migration: added column %s", name)

            add_col("revision", "INTEGER NOT NULL DEFAULT 0")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            conn.commit()
        finally:
            conn.close()

    def _load_sync(self, key: str) -> Any | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT value FROM collections WHERE key = ?", (key,))
            row = cur.fetchone()
            if row is None:
                return None
            return json.loads(row["value"])
        finally:
            conn.close()

    def _save_sync(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO collections(key, value, revision, updated_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    revision = collections.revision + 1,
                    updated_at = excluded.updated_at
                """,
                (key, payload, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def list_keys(self) -> list[str]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT key FROM collections ORDER BY key")
            return [str(r["key"]) for r in cur.fetchall()]
        finally:
            conn.close()

    async def load_data(self, key: str) -> Any | None:
        try:
            return await asyncio.to_thread(self._load_sync, key)
        except Exception:
            logger.exception("Failed to load data for key %s", key)
            return None

    async def save_data(self, key: str, value: Any) -> bool:
        try:
            await asyncio.to_thread(self._save_sync, key, value)
        except Exception:
            logger.exception("Failed to save data for key %s", key)
            return False
        logger.debug("Saved key=%s", key)
        return True
