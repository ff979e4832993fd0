"""
Key-Value Persistence
=====================

The SDC core only needs ``get(key)`` and ``set(key, value)`` from its
storage collaborator. Two implementations are provided:

- ``MemoryStore``: process-local dict, for tests and ephemeral use
- ``SQLiteStore``: single-table SQLite file

Every backend failure surfaces as ``StorageError``; nothing here retries.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Final, Iterator, Optional, Protocol, runtime_checkable

from sdcvault.core.errors import StorageError


@runtime_checkable
class KeyValueStore(Protocol):
    """Storage contract consumed by the SDC and signature services."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...


class MemoryStore:
    """Thread-safe in-memory store."""

    __slots__ = ("_data", "_lock")

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise StorageError("Store values must be bytes")
        with self._lock:
            self._data[key] = bytes(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SQLiteStore:
    """
    Key-value store backed by one SQLite table.

    Usage:
        store = SQLiteStore(config.paths.database_path)
        store.set("sdc:123", envelope_bytes)
        raw = store.get("sdc:123")
    """

    __slots__ = ("_db_path",)

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value BLOB NOT NULL,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self.initialize_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=10)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Database operation failed: {e}") from e
        finally:
            conn.close()

    def initialize_db(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory: {e}") from e
        with self._connection() as conn:
            conn.executescript(self._SCHEMA)

    def get(self, key: str) -> Optional[bytes]:
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return bytes(row[0]) if row else None

    def set(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise StorageError("Store values must be bytes")
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, sqlite3.Binary(bytes(value))),
            )
