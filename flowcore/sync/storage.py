"""Durable key/value storage for the sync queue: SQLite (aiosqlite) or JSON files."""

import asyncio
import logging
import os
import re
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT    PRIMARY KEY,
    value       TEXT    NOT NULL,
    updated_at  REAL    NOT NULL
);
"""


class PersistenceError(Exception):
    """Queue state could not be written to durable storage."""


@runtime_checkable
class SyncStorage(Protocol):
    """Whole-value reads and writes under a string key."""

    async def read(self, key: str) -> str | None:
        """Return the stored value or None."""

    async def write(self, key: str, value: str) -> None:
        """Replace the stored value. Must be durable when it returns."""

    async def close(self) -> None:
        """Release resources."""


class SqliteStorage:
    """SQLite-backed store. One connection per instance, opened lazily."""

    def __init__(self, db_path: Path, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=FULL")
            await self._conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        return self._conn

    async def read(self, key: str) -> str | None:
        conn = await self._ensure_conn()
        cursor = await conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def write(self, key: str, value: str) -> None:
        conn = await self._ensure_conn()
        await conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, time.time()),
        )
        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None


def _fsync_dir(path: Path) -> None:
    """Flush a directory entry (the rename) to disk. Not supported on Windows."""
    if os.name == "nt":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class JsonFileStorage:
    """One file per key in data_dir.

    Writes go to a temp file that is fsynced, renamed over the target, and
    then the directory is fsynced. File I/O runs in a worker thread.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._data_dir / f"{key}.json"

    async def read(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read_sync, self._path(key))

    async def write(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write_sync, self._path(key), value)

    async def close(self) -> None:
        pass

    @staticmethod
    def _read_sync(path: Path) -> str | None:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write_sync(self, path: Path, value: str) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".json.tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(value)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
        _fsync_dir(self._data_dir)
