"""Tests for the tabular stores."""

from __future__ import annotations

import threading

import pytest

from bizops_automation.core.exceptions import StoreError
from bizops_automation.core.store import (
    InMemoryTabularStore,
    SQLiteTabularStore,
    create_store,
    row_matches,
)


@pytest.fixture(params=["memory", "sqlite-file", "sqlite-memory"])
def tabular_store(request, tmp_path):
    """Each store implementation, empty."""
    if request.param == "memory":
        yield InMemoryTabularStore()
        return
    path = tmp_path / "store.db" if request.param == "sqlite-file" else None
    store = SQLiteTabularStore(path)
    yield store
    store.close()


class TestRowMatches:
    """Tests for filter semantics."""

    def test_scalar_equality(self):
        """Test scalar filters compare for equality."""
        assert row_matches({"status": "sent"}, {"status": "sent"})
        assert not row_matches({"status": "paid"}, {"status": "sent"})

    def test_list_membership(self):
        """Test list filters check membership."""
        assert row_matches({"status": "todo"}, {"status": ["todo", "in_progress"]})
        assert not row_matches({"status": "done"}, {"status": ["todo", "in_progress"]})

    def test_comparisons(self):
        """Test dict filters apply every comparison."""
        row = {"total": 150}
        assert row_matches(row, {"total": {">=": 100, "<": 200}})
        assert not row_matches(row, {"total": {">": 150}})
        assert row_matches(row, {"total": {"!=": 10}})

    def test_missing_column(self):
        """Test a missing column only satisfies != against a value."""
        assert not row_matches({}, {"total": {">": 1}})
        assert row_matches({}, {"total": {"!=": 1}})
        assert not row_matches({}, {"status": "sent"})

    def test_incomparable_types(self):
        """Test comparing incompatible types is a non-match, not an error."""
        assert not row_matches({"total": "abc"}, {"total": {">": 1}})

    def test_unsupported_operator(self):
        """Test unknown comparison operators raise StoreError."""
        with pytest.raises(StoreError):
            row_matches({"total": 1}, {"total": {"~": 1}})


class TestTabularStore:
    """Behaviour shared by every store implementation."""

    def test_create_assigns_id(self, tabular_store):
        """Test create returns a generated id when none is given."""
        row_id = tabular_store.create("tasks", {"title": "Write"})
        assert row_id
        assert tabular_store.read_all("tasks") == [{"title": "Write", "id": row_id}]

    def test_create_keeps_given_id(self, tabular_store):
        """Test a caller-supplied id is kept."""
        assert tabular_store.create("tasks", {"id": "t1", "title": "Write"}) == "t1"

    def test_duplicate_id_raises(self, tabular_store):
        """Test inserting the same id twice fails."""
        tabular_store.create("tasks", {"id": "t1"})
        with pytest.raises(StoreError):
            tabular_store.create("tasks", {"id": "t1"})

    def test_read_all_preserves_insertion_order(self, tabular_store):
        """Test rows come back in creation order."""
        for name in ["b", "a", "c"]:
            tabular_store.create("clients", {"id": name})
        assert [row["id"] for row in tabular_store.read_all("clients")] == ["b", "a", "c"]

    def test_query(self, tabular_store):
        """Test query applies filters."""
        tabular_store.create("invoices", {"id": "1", "status": "sent", "total": 10})
        tabular_store.create("invoices", {"id": "2", "status": "paid", "total": 20})
        tabular_store.create("invoices", {"id": "3", "status": "sent", "total": 30})

        rows = tabular_store.query("invoices", {"status": "sent", "total": {">": 15}})
        assert [row["id"] for row in rows] == ["3"]

    def test_update_merges_patch(self, tabular_store):
        """Test update merges columns and never changes the id."""
        tabular_store.create("projects", {"id": "p1", "status": "active", "name": "Site"})

        assert tabular_store.update("projects", "p1", {"status": "completed", "id": "zzz"})
        assert tabular_store.query("projects", {"id": "p1"}) == [
            {"id": "p1", "status": "completed", "name": "Site"}
        ]

    def test_update_missing_row(self, tabular_store):
        """Test updating a missing row returns False."""
        assert tabular_store.update("projects", "nope", {"status": "x"}) is False

    def test_delete(self, tabular_store):
        """Test delete removes the row and reports whether it existed."""
        tabular_store.create("logs", {"id": "l1"})
        assert tabular_store.delete("logs", "l1") is True
        assert tabular_store.delete("logs", "l1") is False
        assert tabular_store.read_all("logs") == []

    def test_collections_are_isolated(self, tabular_store):
        """Test the same id may exist in different collections."""
        tabular_store.create("tasks", {"id": "x"})
        tabular_store.create("projects", {"id": "x"})
        assert len(tabular_store.read_all("tasks")) == 1
        assert len(tabular_store.read_all("projects")) == 1

    def test_unknown_collection_is_empty(self, tabular_store):
        """Test reading an unknown collection returns no rows."""
        assert tabular_store.read_all("nothing") == []


class TestSQLiteTabularStore:
    """SQLite-specific behaviour."""

    def test_persists_across_instances(self, tmp_path):
        """Test rows survive reopening the database file."""
        path = tmp_path / "bizops.db"
        first = SQLiteTabularStore(path)
        first.create("rules", {"id": "r1", "active": True, "nested": {"a": [1, 2]}})
        first.close()

        second = SQLiteTabularStore(path)
        assert second.read_all("rules") == [{"id": "r1", "active": True, "nested": {"a": [1, 2]}}]
        second.close()

    def test_in_memory_database_shared_across_threads(self):
        """Test worker threads see rows written on the main thread."""
        store = SQLiteTabularStore()
        store.create("tasks", {"id": "t1"})
        seen: list[list[dict]] = []

        worker = threading.Thread(target=lambda: seen.append(store.read_all("tasks")))
        worker.start()
        worker.join()

        assert seen == [[{"id": "t1"}]]
        store.close()


class TestCreateStore:
    """Tests for create_store()."""

    def test_memory_backend(self):
        """Test the memory backend."""
        assert isinstance(create_store("memory"), InMemoryTabularStore)

    def test_sqlite_backend(self, tmp_path):
        """Test the sqlite backend."""
        store = create_store("sqlite", tmp_path / "x.db")
        assert isinstance(store, SQLiteTabularStore)
        store.close()

    def test_unknown_backend(self):
        """Test an unknown backend raises StoreError."""
        with pytest.raises(StoreError):
            create_store("postgres")
