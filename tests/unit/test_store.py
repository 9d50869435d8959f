"""Unit tests for marina_sync.store (in-memory implementation)."""

from datetime import datetime, timezone

import pytest

from marina_sync.store import (
    DuplicateRecordError,
    MemoryRecordStore,
    RecordNotFoundError,
    writable,
)


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def mem(clock):
    return MemoryRecordStore(clock=clock)


class TestWritable:
    def test_drops_unknown_columns(self):
        assert writable("personnel", {"id": "p", "name": "A", "updated_at": "x", "deleted": True}) == {
            "id": "p", "name": "A",
        }

    def test_unknown_entity(self, mem):
        with pytest.raises(ValueError, match="unknown entity"):
            mem.count("invoice")


class TestInsertUpdate:
    def test_insert_and_fetch(self, mem, clock):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        row = mem.fetch_by_ids("personnel", ["p-1", "p-2"])["p-1"]
        assert row["name"] == "Ada"
        assert row["active"] is True
        assert row["created_at"] == clock.now
        assert row["deleted_at"] is None

    def test_duplicate_insert(self, mem):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        with pytest.raises(DuplicateRecordError):
            mem.insert("personnel", {"id": "p-1", "name": "Ada"})

    def test_update_bumps_updated_at(self, mem, clock):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        clock.now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        mem.update("personnel", "p-1", {"name": "Ada L."})
        row = mem.fetch_by_ids("personnel", ["p-1"])["p-1"]
        assert row["name"] == "Ada L."
        assert row["updated_at"] == clock.now
        assert row["created_at"] == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_update_missing(self, mem):
        with pytest.raises(RecordNotFoundError):
            mem.update("personnel", "nope", {"name": "x"})

    def test_upsert(self, mem):
        mem.upsert("vessel", {"id": "v-1", "name": "Sea"})
        mem.upsert("vessel", {"id": "v-1", "name": "Sea Star"})
        assert mem.count("vessel") == 1
        assert mem.fetch_by_ids("vessel", ["v-1"])["v-1"]["name"] == "Sea Star"

    def test_fetch_returns_copies(self, mem):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        mem.fetch_by_ids("personnel", ["p-1"])["p-1"]["name"] = "changed"
        assert mem.fetch_by_ids("personnel", ["p-1"])["p-1"]["name"] == "Ada"


class TestTransaction:
    def test_rolls_back_on_error(self, mem):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        with pytest.raises(RuntimeError):
            with mem.transaction():
                mem.insert("personnel", {"id": "p-2", "name": "Bob"})
                mem.update("personnel", "p-1", {"name": "changed"})
                raise RuntimeError("boom")
        assert mem.count("personnel") == 1
        assert mem.fetch_by_ids("personnel", ["p-1"])["p-1"]["name"] == "Ada"

    def test_commits_on_success(self, mem):
        with mem.transaction():
            mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        assert mem.count("personnel") == 1


class TestBulkOperations:
    def test_delete_all(self, mem):
        for i in range(3):
            mem.insert("service", {"id": f"s-{i}"})
        assert mem.delete_all("service") == 3
        assert mem.count("service") == 0

    def test_deactivate_by_prefix(self, mem):
        mem.insert("vessel", {"id": "sheet-vessel-a", "name": "A"})
        mem.insert("vessel", {"id": "sheet-vessel-b", "name": "B", "active": False})
        mem.insert("vessel", {"id": "reg-1", "name": "C"})
        assert mem.deactivate("vessel", "sheet-vessel-") == 1
        rows = mem.fetch_by_ids("vessel", ["sheet-vessel-a", "reg-1"])
        assert rows["sheet-vessel-a"]["active"] is False
        assert rows["reg-1"]["active"] is True

    def test_list_ids_filters(self, mem):
        mem.insert("service", {"id": "sheet-svc-1", "status": "SCHEDULED"})
        mem.insert("service", {"id": "sheet-svc-2", "status": "COMPLETED"})
        mem.insert("service", {"id": "manual-3", "status": "SCHEDULED"})
        assert mem.list_ids("service") == ["manual-3", "sheet-svc-1", "sheet-svc-2"]
        assert mem.list_ids("service", id_prefix="sheet-svc-") == ["sheet-svc-1", "sheet-svc-2"]
        assert mem.list_ids(
            "service", id_prefix="sheet-svc-", exclude_statuses={"COMPLETED"},
        ) == ["sheet-svc-1"]


class TestSoftDelete:
    def test_soft_deleted_hidden(self, mem, clock):
        mem.insert("personnel", {"id": "p-1", "name": "Ada"})
        mem.insert("personnel", {"id": "p-2", "name": "Bob"})
        mem.soft_delete("personnel", "p-1")
        assert [r["id"] for r in mem.list_records("personnel")] == ["p-2"]
        assert mem.list_ids("personnel") == ["p-2"]
        assert mem.list_soft_deleted_ids("personnel") == ["p-1"]
        assert mem.fetch_by_ids("personnel", ["p-1"])["p-1"]["deleted_at"] == clock.now
        assert mem.count("personnel") == 2

    def test_soft_delete_missing(self, mem):
        with pytest.raises(RecordNotFoundError):
            mem.soft_delete("personnel", "nope")
