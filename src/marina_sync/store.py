"""marina_sync.store

Record store behind a small protocol.

  PgRecordStore      PostgreSQL via psycopg 3 (tables from migrations/)
  MemoryRecordStore  dict-backed store for unit tests and dry runs

Records are plain dicts keyed by column name.  Writable columns per entity
are listed in ENTITY_COLUMNS; created_at / updated_at are maintained by the
store and deleted_at is the soft-delete marker.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, ContextManager, Protocol

import psycopg
from psycopg.rows import dict_row

ENTITY_TABLES = {
    "service": "service",
    "vessel": "vessel",
    "personnel": "personnel",
}

ENTITY_COLUMNS: dict[str, tuple[str, ...]] = {
    "service": (
        "id", "service_date", "time_text", "vessel_id", "vessel_name",
        "address", "location", "description", "contact_name", "phone",
        "status", "job_type", "deleted_at",
    ),
    "vessel": (
        "id", "name", "serial_no", "brand", "model", "length_m",
        "engine_type", "engine_serial_no", "build_year", "color",
        "ownership", "address", "phone", "email", "notes", "active",
        "deleted_at",
    ),
    "personnel": (
        "id", "name", "title", "role", "active", "start_year", "phone",
        "email", "address", "notes", "deleted_at",
    ),
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RecordNotFoundError(LookupError):
    """Raised when updating or soft-deleting an id that is not stored."""


class DuplicateRecordError(ValueError):
    """Raised when inserting an id that already exists."""


def writable(entity: str, record: dict[str, Any]) -> dict[str, Any]:
    """Drop keys that are not writable columns of the entity."""
    columns = ENTITY_COLUMNS[entity]
    return {k: v for k, v in record.items() if k in columns}


def _table(entity: str) -> str:
    try:
        return ENTITY_TABLES[entity]
    except KeyError:
        raise ValueError(f"unknown entity: {entity!r}") from None


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    def transaction(self) -> ContextManager[Any]:
        """Unit of work for one row; rolls back on exception."""
        ...

    def fetch_by_ids(self, entity: str, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ...

    def insert(self, entity: str, record: dict[str, Any]) -> None:
        ...

    def update(self, entity: str, record_id: str, data: dict[str, Any]) -> None:
        ...

    def upsert(self, entity: str, record: dict[str, Any]) -> None:
        ...

    def delete_all(self, entity: str) -> int:
        """Hard-delete every row of the entity; returns the number removed."""
        ...

    def deactivate(self, entity: str, id_prefix: str) -> int:
        """Set active=false on rows whose id starts with id_prefix."""
        ...

    def list_records(self, entity: str) -> list[dict[str, Any]]:
        """All rows that are not soft-deleted."""
        ...

    def list_ids(
        self,
        entity: str,
        id_prefix: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[str]:
        """Ids of rows that are not soft-deleted, optionally filtered."""
        ...

    def list_soft_deleted_ids(self, entity: str) -> list[str]:
        ...

    def soft_delete(self, entity: str, record_id: str) -> None:
        ...

    def count(self, entity: str) -> int:
        ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

class PgRecordStore:
    """psycopg-backed store.

    Open the connection with autocommit=True so that each transaction()
    block commits on its own; inside an outer transaction the blocks become
    savepoints instead.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def transaction(self) -> ContextManager[Any]:
        return self._conn.transaction()

    def _select(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def fetch_by_ids(self, entity: str, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return {}
        rows = self._select(
            f"SELECT * FROM {_table(entity)} WHERE id = ANY(%s)",
            (id_list,),
        )
        return {r["id"]: r for r in rows}

    def insert(self, entity: str, record: dict[str, Any]) -> None:
        data = writable(entity, record)
        cols = list(data.keys())
        try:
            self._conn.execute(
                f"INSERT INTO {_table(entity)} ({', '.join(cols)}) "
                f"VALUES ({', '.join(['%s'] * len(cols))})",
                tuple(data[c] for c in cols),
            )
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateRecordError(f"{entity} {data.get('id')!r} already exists") from exc

    def update(self, entity: str, record_id: str, data: dict[str, Any]) -> None:
        fields = {k: v for k, v in writable(entity, data).items() if k != "id"}
        if not fields:
            return
        assignments = ", ".join(f"{c} = %s" for c in fields)
        cur = self._conn.execute(
            f"UPDATE {_table(entity)} SET {assignments}, updated_at = now() WHERE id = %s",
            (*fields.values(), record_id),
        )
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"{entity} {record_id!r} not found")

    def upsert(self, entity: str, record: dict[str, Any]) -> None:
        data = writable(entity, record)
        cols = list(data.keys())
        updates = [c for c in cols if c != "id"]
        set_clause = ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
        if set_clause:
            set_clause += ", "
        self._conn.execute(
            f"INSERT INTO {_table(entity)} ({', '.join(cols)}) "
            f"VALUES ({', '.join(['%s'] * len(cols))}) "
            f"ON CONFLICT (id) DO UPDATE SET {set_clause}updated_at = now()",
            tuple(data[c] for c in cols),
        )

    def delete_all(self, entity: str) -> int:
        cur = self._conn.execute(f"DELETE FROM {_table(entity)}")
        return cur.rowcount

    def deactivate(self, entity: str, id_prefix: str) -> int:
        cur = self._conn.execute(
            f"UPDATE {_table(entity)} SET active = false, updated_at = now() "
            f"WHERE starts_with(id, %s) AND active",
            (id_prefix,),
        )
        return cur.rowcount

    def list_records(self, entity: str) -> list[dict[str, Any]]:
        return self._select(
            f"SELECT * FROM {_table(entity)} WHERE deleted_at IS NULL ORDER BY id"
        )

    def list_ids(
        self,
        entity: str,
        id_prefix: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[str]:
        sql = f"SELECT id FROM {_table(entity)} WHERE deleted_at IS NULL"
        params: list[Any] = []
        if id_prefix:
            sql += " AND starts_with(id, %s)"
            params.append(id_prefix)
        excluded = list(exclude_statuses)
        if excluded:
            sql += " AND NOT (status = ANY(%s))"
            params.append(excluded)
        rows = self._conn.execute(sql + " ORDER BY id", tuple(params)).fetchall()
        return [r[0] for r in rows]

    def list_soft_deleted_ids(self, entity: str) -> list[str]:
        rows = self._conn.execute(
            f"SELECT id FROM {_table(entity)} WHERE deleted_at IS NOT NULL ORDER BY id"
        ).fetchall()
        return [r[0] for r in rows]

    def soft_delete(self, entity: str, record_id: str) -> None:
        cur = self._conn.execute(
            f"UPDATE {_table(entity)} SET deleted_at = now(), updated_at = now() WHERE id = %s",
            (record_id,),
        )
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"{entity} {record_id!r} not found")

    def count(self, entity: str) -> int:
        row = self._conn.execute(f"SELECT count(*) FROM {_table(entity)}").fetchone()
        return int(row[0]) if row else 0


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemoryRecordStore:
    """Dict-backed store with the same semantics as PgRecordStore.

    transaction() snapshots the tables and restores them if the block raises.
    """

    def __init__(self, clock=None) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {e: {} for e in ENTITY_TABLES}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        snapshot = copy.deepcopy(self._tables)
        try:
            yield
        except BaseException:
            self._tables = snapshot
            raise

    def _rows(self, entity: str) -> dict[str, dict[str, Any]]:
        _table(entity)
        return self._tables[entity]

    def _new_row(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        row = {c: None for c in ENTITY_COLUMNS[entity]}
        if "active" in row:
            row["active"] = True
        row.update(data)
        row["created_at"] = now
        row["updated_at"] = now
        return row

    def fetch_by_ids(self, entity: str, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        rows = self._rows(entity)
        return {i: dict(rows[i]) for i in ids if i in rows}

    def insert(self, entity: str, record: dict[str, Any]) -> None:
        data = writable(entity, record)
        rows = self._rows(entity)
        if data["id"] in rows:
            raise DuplicateRecordError(f"{entity} {data['id']!r} already exists")
        rows[data["id"]] = self._new_row(entity, data)

    def update(self, entity: str, record_id: str, data: dict[str, Any]) -> None:
        rows = self._rows(entity)
        if record_id not in rows:
            raise RecordNotFoundError(f"{entity} {record_id!r} not found")
        fields = {k: v for k, v in writable(entity, data).items() if k != "id"}
        rows[record_id].update(fields)
        rows[record_id]["updated_at"] = self._clock()

    def upsert(self, entity: str, record: dict[str, Any]) -> None:
        data = writable(entity, record)
        if data["id"] in self._rows(entity):
            self.update(entity, data["id"], data)
        else:
            self.insert(entity, data)

    def delete_all(self, entity: str) -> int:
        rows = self._rows(entity)
        removed = len(rows)
        rows.clear()
        return removed

    def deactivate(self, entity: str, id_prefix: str) -> int:
        changed = 0
        for row in self._rows(entity).values():
            if row["id"].startswith(id_prefix) and row.get("active"):
                row["active"] = False
                row["updated_at"] = self._clock()
                changed += 1
        return changed

    def list_records(self, entity: str) -> list[dict[str, Any]]:
        return [
            dict(r) for _, r in sorted(self._rows(entity).items())
            if r.get("deleted_at") is None
        ]

    def list_ids(
        self,
        entity: str,
        id_prefix: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[str]:
        excluded = set(exclude_statuses)
        return [
            r["id"] for r in self.list_records(entity)
            if (not id_prefix or r["id"].startswith(id_prefix))
            and (not excluded or r.get("status") not in excluded)
        ]

    def list_soft_deleted_ids(self, entity: str) -> list[str]:
        return sorted(i for i, r in self._rows(entity).items() if r.get("deleted_at") is not None)

    def soft_delete(self, entity: str, record_id: str) -> None:
        rows = self._rows(entity)
        if record_id not in rows:
            raise RecordNotFoundError(f"{entity} {record_id!r} not found")
        now = self._clock()
        rows[record_id]["deleted_at"] = now
        rows[record_id]["updated_at"] = now

    def count(self, entity: str) -> int:
        return len(self._rows(entity))
