"""Flat tabular stores consumed by the automation engine.

The engine only talks to the :class:`TabularStore` protocol. Two implementations
ship with the package:

- :class:`InMemoryTabularStore` for tests and demos
- :class:`SQLiteTabularStore` for single-node deployments

Filters passed to :meth:`TabularStore.query` map a column name to either a
scalar (equality), a list (membership) or a dict of comparison operators
(``">="``, ``"<="``, ``">"``, ``"<"``, ``"!="``).
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .exceptions import StoreError
from .logger import get_logger

logger = get_logger("store")

Row = dict[str, Any]

_COMPARATORS = {
    ">=": lambda left, right: left >= right,
    "<=": lambda left, right: left <= right,
    ">": lambda left, right: left > right,
    "<": lambda left, right: left < right,
    "!=": lambda left, right: left != right,
}


@runtime_checkable
class TabularStore(Protocol):
    """Protocol implemented by every row store."""

    def read_all(self, collection: str) -> list[Row]: ...

    def query(self, collection: str, filters: Mapping[str, Any]) -> list[Row]: ...

    def create(self, collection: str, row: Mapping[str, Any]) -> str: ...

    def update(self, collection: str, row_id: str, patch: Mapping[str, Any]) -> bool: ...

    def delete(self, collection: str, row_id: str) -> bool: ...


def _compare(op: str, left: Any, right: Any) -> bool:
    if op not in _COMPARATORS:
        raise StoreError(f"Unsupported filter operator: {op}")
    if left is None:
        return op == "!=" and right is not None
    try:
        return bool(_COMPARATORS[op](left, right))
    except TypeError:
        return False


def row_matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Return True when ``row`` satisfies every entry of ``filters``."""

    for column, expected in filters.items():
        actual = row.get(column)
        if isinstance(expected, dict):
            if not all(_compare(op, actual, value) for op, value in expected.items()):
                return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def new_id() -> str:
    """Generate a row identifier."""

    return uuid.uuid4().hex


class InMemoryTabularStore:
    """Lock-guarded in-memory store; rows keep insertion order per collection."""

    def __init__(self, seed: Mapping[str, list[Mapping[str, Any]]] | None = None):
        self._collections: dict[str, dict[str, Row]] = {}
        self._lock = threading.RLock()
        for collection, rows in (seed or {}).items():
            for row in rows:
                self.create(collection, row)

    def read_all(self, collection: str) -> list[Row]:
        with self._lock:
            return [dict(row) for row in self._collections.get(collection, {}).values()]

    def query(self, collection: str, filters: Mapping[str, Any]) -> list[Row]:
        with self._lock:
            return [
                dict(row)
                for row in self._collections.get(collection, {}).values()
                if row_matches(row, filters)
            ]

    def create(self, collection: str, row: Mapping[str, Any]) -> str:
        data = dict(row)
        row_id = str(data.get("id") or new_id())
        data["id"] = row_id
        with self._lock:
            rows = self._collections.setdefault(collection, {})
            if row_id in rows:
                raise StoreError(f"Duplicate id {row_id}", collection=collection)
            rows[row_id] = data
        return row_id

    def update(self, collection: str, row_id: str, patch: Mapping[str, Any]) -> bool:
        with self._lock:
            row = self._collections.get(collection, {}).get(row_id)
            if row is None:
                return False
            row.update({key: value for key, value in patch.items() if key != "id"})
            return True

    def delete(self, collection: str, row_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(row_id, None) is not None


class SQLiteTabularStore:
    """SQLite-backed store keeping each row as a JSON payload.

    All collections share one ``rows`` table keyed by ``(collection, id)``; the
    autoincrement ``seq`` column preserves creation order.
    """

    def __init__(self, db_path: str | Path | None = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. None for in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self._local = threading.local()
        self._keeper: sqlite3.Connection | None = None
        if self.db_path == ":memory:":
            # Worker threads must see the same database, so share a named
            # in-memory database and hold one connection open for its lifetime.
            self._uri = f"file:bizops-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._keeper = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
        else:
            self._uri = None
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            if self._uri is not None:
                connection = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
            else:
                connection = sqlite3.connect(self.db_path, check_same_thread=False)
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
        return self._local.connection

    @contextmanager
    def _cursor(self, collection: str | None = None) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
        except sqlite3.Error as exc:
            raise StoreError(str(exc), collection=collection, original_error=exc) from exc
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(str(exc), collection=collection, original_error=exc) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rows (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    UNIQUE (collection, id)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rows_collection
                ON rows(collection, seq)
            """)
        logger.info("SQLite store initialized: %s", self.db_path)

    def _load(self, collection: str) -> list[Row]:
        with self._cursor(collection) as cursor:
            cursor.execute(
                "SELECT payload FROM rows WHERE collection = ? ORDER BY seq",
                (collection,),
            )
            return [json.loads(record["payload"]) for record in cursor.fetchall()]

    def read_all(self, collection: str) -> list[Row]:
        return self._load(collection)

    def query(self, collection: str, filters: Mapping[str, Any]) -> list[Row]:
        return [row for row in self._load(collection) if row_matches(row, filters)]

    def create(self, collection: str, row: Mapping[str, Any]) -> str:
        data = dict(row)
        row_id = str(data.get("id") or new_id())
        data["id"] = row_id
        with self._cursor(collection) as cursor:
            cursor.execute(
                "INSERT INTO rows (collection, id, payload) VALUES (?, ?, ?)",
                (collection, row_id, json.dumps(data, default=str)),
            )
        return row_id

    def update(self, collection: str, row_id: str, patch: Mapping[str, Any]) -> bool:
        with self._cursor(collection) as cursor:
            cursor.execute(
                "SELECT payload FROM rows WHERE collection = ? AND id = ?",
                (collection, row_id),
            )
            record = cursor.fetchone()
            if record is None:
                return False
            data = json.loads(record["payload"])
            data.update({key: value for key, value in patch.items() if key != "id"})
            cursor.execute(
                "UPDATE rows SET payload = ? WHERE collection = ? AND id = ?",
                (json.dumps(data, default=str), collection, row_id),
            )
            return True

    def delete(self, collection: str, row_id: str) -> bool:
        with self._cursor(collection) as cursor:
            cursor.execute(
                "DELETE FROM rows WHERE collection = ? AND id = ?",
                (collection, row_id),
            )
            return cursor.rowcount > 0

    def close(self) -> None:
        """Close this thread's connection and release an in-memory database."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            del self._local.connection
        if self._keeper is not None:
            self._keeper.close()
            self._keeper = None


def create_store(backend: str = "memory", path: str | Path | None = None) -> TabularStore:
    """Build a store from configuration values."""

    if backend == "sqlite":
        return SQLiteTabularStore(path)
    if backend == "memory":
        return InMemoryTabularStore()
    raise StoreError(f"Unknown store backend: {backend}")


__all__ = [
    "InMemoryTabularStore",
    "Row",
    "SQLiteTabularStore",
    "TabularStore",
    "create_store",
    "new_id",
    "row_matches",
]
