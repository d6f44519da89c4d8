"""
Persisted deployment history.

Each creator address owns one JSON array (key ``tokens_<creator>``) of
DeploymentRecords, most-recent-first. ``max_records`` bounds each array;
``None`` keeps everything.
"""

import asyncio
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Protocol

import launchpad.constants as C
from launchpad.models import DeploymentRecord

log = logging.getLogger("launchpad.store")


def storage_key(creator: str) -> str:
    return f"{C.STORAGE_KEY_PREFIX}{creator}"


class DeploymentStore(Protocol):
    async def add(self, record: DeploymentRecord) -> None: ...
    async def list_for(self, creator: str) -> list[DeploymentRecord]: ...
    async def clear(self, creator: str) -> None: ...


def _prepend(existing: list[dict], record: DeploymentRecord, max_records: int | None) -> list[dict]:
    records = [record.to_dict(), *existing]
    if max_records is not None:
        records = records[:max_records]
    return records


class InMemoryDeploymentStore:
    """Deployment history kept in process memory."""

    def __init__(self, max_records: int | None = None) -> None:
        self.max_records = max_records
        self._lock = asyncio.Lock()
        self._data: dict[str, str] = {}  # key -> JSON array

    async def add(self, record: DeploymentRecord) -> None:
        key = storage_key(record.creator)
        async with self._lock:
            existing = json.loads(self._data.get(key, "[]"))
            self._data[key] = json.dumps(_prepend(existing, record, self.max_records))

    async def list_for(self, creator: str) -> list[DeploymentRecord]:
        async with self._lock:
            raw = self._data.get(storage_key(creator), "[]")
        return [DeploymentRecord.from_dict(d) for d in json.loads(raw)]

    async def clear(self, creator: str) -> None:
        async with self._lock:
            self._data.pop(storage_key(creator), None)


class SQLiteDeploymentStore:
    """Persistent store backed by SQLite."""

    def __init__(self, db_path: str | Path = "launchpad.db", max_records: int | None = None) -> None:
        self.db_path = Path(db_path)
        self.max_records = max_records
        self._lock = asyncio.Lock()
        self._init_db()

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(
                """
                -- One JSON array of deployment records per creator
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                );
                """
            )
            conn.commit()
            log.debug(f"SQLite database initialized at {self.db_path}")
        finally:
            conn.close()

    def _read(self, conn: sqlite3.Connection, key: str) -> list[dict]:
        cursor = conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = cursor.fetchone()
        if not row:
            return []
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError:
            log.warning("Corrupt deployment history under %s, starting over", key)
            return []
        return data if isinstance(data, list) else []

    async def add(self, record: DeploymentRecord) -> None:
        key = storage_key(record.creator)
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                records = _prepend(self._read(conn, key), record, self.max_records)
                conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, json.dumps(records), time.time()),
                )
                conn.commit()
                log.debug("Saved deployment %s for %s (%s total)", record.address, record.creator, len(records))
            finally:
                conn.close()

    async def list_for(self, creator: str) -> list[DeploymentRecord]:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                return [DeploymentRecord.from_dict(d) for d in self._read(conn, storage_key(creator))]
            finally:
                conn.close()

    async def clear(self, creator: str) -> None:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute("DELETE FROM kv WHERE key = ?", (storage_key(creator),))
                conn.commit()
            finally:
                conn.close()
