"""marina_sync.change_detector

Bidirectional diff/apply between the record store and a sheet.

detect_changes() loads both sides keyed by id and emits ChangeRecords:

  id only in store             CREATE  origin=STORE
  id only in sheet             CREATE  origin=SHEET
  id on both sides             UPDATE  origin=<side with the newer last-modified timestamp>
  soft-deleted on one side     DELETE  origin=<that side>

apply_changes() replays the changes of one origin onto the opposite side.
Sheet rows are never removed: a DELETE writes TRUE into the sheet's
soft-delete column.  Each change is applied independently; failures are
counted and the batch continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from marina_sync.columns import build_header_report, resolve_columns
from marina_sync.dates import parse_datetime
from marina_sync.normalize import compact_phone, trim
from marina_sync.sanitize import SKIP_NONE, sanitize_service_row
from marina_sync.shared import ROW_ERROR, SyncError, utcnow
from marina_sync.sheet_config import SheetConfig, coerce_row, load_sheet_configs
from marina_sync.sources import SheetSource
from marina_sync.store import ENTITY_COLUMNS, RecordStore, writable
from marina_sync.sync_manager import values_equal

log = logging.getLogger(__name__)

CHANGE_CREATE = "CREATE"
CHANGE_UPDATE = "UPDATE"
CHANGE_DELETE = "DELETE"

ORIGIN_STORE = "STORE"
ORIGIN_SHEET = "SHEET"
VALID_ORIGINS = (ORIGIN_STORE, ORIGIN_SHEET)

SHEET_DATE_FORMAT = "%d.%m.%Y"

_STORE_MANAGED = frozenset({"created_at", "updated_at", "deleted_at"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ColumnShiftError(RuntimeError):
    """Raised when the sheet header no longer matches the configured columns."""

    def __init__(self, sheet_name: str, errors: list[str], header_report: list[dict[str, Any]]) -> None:
        super().__init__(f"{sheet_name}: " + "; ".join(errors))
        self.errors = errors
        self.header_report = header_report


class ChangeApplyError(RuntimeError):
    """Raised when a change cannot be applied to the sheet."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ChangeRecord:
    type: str
    id: str
    origin: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "origin": self.origin,
            "before": self.before,
            "after": self.after,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ApplyResult:
    applied: int = 0
    failed: int = 0
    ignored: int = 0
    errors: list[SyncError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "failed": self.failed,
            "ignored": self.ignored,
            "errors": [e.to_dict() for e in self.errors[:50]],
        }


@dataclass
class SheetSnapshot:
    header: list[str]
    index_map: dict[str, int]
    raw_rows: dict[int, list[str]] = field(default_factory=dict)
    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    row_numbers: dict[str, int] = field(default_factory=dict)
    deleted_ids: set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_sheet_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.strftime(SHEET_DATE_FORMAT)
    if isinstance(value, (float, Decimal)) and value == int(value):
        return str(int(value))
    return str(value)


def record_to_sheet_row(
    config: SheetConfig,
    record: dict[str, Any],
    index_map: dict[str, int],
    base: list[str] | None = None,
) -> list[str]:
    """Lay a record out at its resolved column positions.

    Cells for fields the record does not carry keep their `base` value.
    """
    width = max(index_map.values(), default=-1) + 1
    values = list(base or [])[:width]
    values += [""] * (width - len(values))
    for spec in config.columns:
        idx = index_map.get(spec.field)
        if idx is None or spec.field not in record:
            continue
        values[idx] = format_sheet_value(record[spec.field])
    return values


# ---------------------------------------------------------------------------
# ChangeDetector
# ---------------------------------------------------------------------------

class ChangeDetector:
    def __init__(
        self,
        source: SheetSource,
        store: RecordStore,
        configs: dict[str, SheetConfig] | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._configs = configs if configs is not None else load_sheet_configs()

    def _config(self, sheet_key: str) -> SheetConfig:
        config = self._configs.get(sheet_key)
        if config is None:
            raise KeyError(f"Unknown sheet key: {sheet_key}")
        return config

    # -- loading -------------------------------------------------------------

    def read_sheet(self, config: SheetConfig) -> SheetSnapshot:
        rows = self._source.read_rows(config.sheet_name, config.cell_range)
        if not rows:
            return SheetSnapshot(header=[], index_map={c.field: c.fallback_index for c in config.columns})
        header = rows[0]
        resolution = resolve_columns(config.columns, header)
        if not resolution.ok:
            raise ColumnShiftError(
                config.sheet_name,
                resolution.errors,
                build_header_report(config.columns, header, resolution),
            )
        snapshot = SheetSnapshot(header=list(header), index_map=resolution.index_map)
        for offset, raw in enumerate(rows[1:]):
            if not any(cell.strip() for cell in raw):
                continue
            row_number = offset + 2
            coerced = coerce_row(config, raw, resolution.index_map)
            if config.is_schedule:
                sanitized = sanitize_service_row(coerced)
                record_id = sanitized.id
                record = sanitized.to_payload() if sanitized.skip_reason == SKIP_NONE else None
                deleted = sanitized.deleted
            else:
                raw_id = coerced.get(config.primary_key)
                record_id = trim(None if raw_id is None else str(raw_id))
                if not record_id:
                    continue
                record = {**coerced, config.primary_key: record_id}
                deleted = bool(config.soft_delete_field and coerced.get(config.soft_delete_field) is True)

            if record_id in snapshot.row_numbers:
                continue
            snapshot.row_numbers[record_id] = row_number
            snapshot.raw_rows[row_number] = list(raw)
            if deleted:
                snapshot.deleted_ids.add(record_id)
            elif record is not None:
                snapshot.records[record_id] = record
        return snapshot

    # -- detection -----------------------------------------------------------

    def detect_changes(self, sheet_key: str) -> list[ChangeRecord]:
        config = self._config(sheet_key)
        sheet = self.read_sheet(config)
        stored = {r["id"]: r for r in self._store.list_records(config.entity)}
        store_deleted = set(self._store.list_soft_deleted_ids(config.entity))

        changes: list[ChangeRecord] = []
        for record_id, record in stored.items():
            if record_id not in sheet.row_numbers:
                changes.append(ChangeRecord(CHANGE_CREATE, record_id, ORIGIN_STORE, None, record))

        for record_id, record in sheet.records.items():
            if record_id in stored:
                change = self._compare(config, record_id, record, stored[record_id])
                if change is not None:
                    changes.append(change)
            elif record_id not in store_deleted:
                changes.append(ChangeRecord(CHANGE_CREATE, record_id, ORIGIN_SHEET, None, record))

        # A store delete only has somewhere to land when the sheet has a flag
        # column and still carries the row.
        pushable_deletes = store_deleted - sheet.deleted_ids if config.soft_delete_field else set()
        for record_id in sorted(pushable_deletes & sheet.row_numbers.keys()):
            changes.append(ChangeRecord(CHANGE_DELETE, record_id, ORIGIN_STORE, sheet.records.get(record_id), None))
        for record_id in sorted(sheet.deleted_ids - store_deleted):
            changes.append(ChangeRecord(CHANGE_DELETE, record_id, ORIGIN_SHEET, stored.get(record_id), None))

        log.info(
            "%s: %d changes (%d from store, %d from sheet)",
            config.sheet_name, len(changes),
            sum(1 for c in changes if c.origin == ORIGIN_STORE),
            sum(1 for c in changes if c.origin == ORIGIN_SHEET),
        )
        return changes

    def _compare(
        self,
        config: SheetConfig,
        record_id: str,
        sheet_record: dict[str, Any],
        store_record: dict[str, Any],
    ) -> ChangeRecord | None:
        if not config.updated_at_field:
            return None
        sheet_ts = parse_datetime(sheet_record.get(config.updated_at_field))
        store_ts = parse_datetime(store_record.get("updated_at"))
        if sheet_ts is None or store_ts is None or sheet_ts == store_ts:
            return None

        columns = set(ENTITY_COLUMNS[config.entity]) - _STORE_MANAGED - {"id"}
        shared = [f for f in sheet_record if f in columns]
        if all(values_equal(store_record.get(f), sheet_record.get(f)) for f in shared):
            return None

        if sheet_ts > store_ts:
            return ChangeRecord(CHANGE_UPDATE, record_id, ORIGIN_SHEET, store_record, sheet_record)
        return ChangeRecord(CHANGE_UPDATE, record_id, ORIGIN_STORE, sheet_record, store_record)

    # -- application ---------------------------------------------------------

    def apply_changes(self, sheet_key: str, changes: list[ChangeRecord], origin: str) -> ApplyResult:
        """Replay changes of `origin` onto the other side.

        origin=STORE pushes store changes into the sheet; origin=SHEET pulls
        sheet changes into the store.  Changes of the other origin are ignored.
        """
        if origin not in VALID_ORIGINS:
            raise ValueError(f"origin must be one of {VALID_ORIGINS}, got {origin!r}")
        config = self._config(sheet_key)
        result = ApplyResult()
        selected = [c for c in changes if c.origin == origin]
        result.ignored = len(changes) - len(selected)
        if not selected:
            return result

        sheet = self.read_sheet(config) if origin == ORIGIN_STORE else None
        for change in selected:
            try:
                if origin == ORIGIN_SHEET:
                    self._apply_to_store(config, change)
                else:
                    self._apply_to_sheet(config, sheet, change)
                result.applied += 1
            except Exception as exc:
                log.warning("apply %s %s failed: %s", change.type, change.id, exc)
                result.failed += 1
                result.errors.append(SyncError(ROW_ERROR, str(exc), change.id))
        return result

    def _apply_to_store(self, config: SheetConfig, change: ChangeRecord) -> None:
        entity = config.entity
        with self._store.transaction():
            if change.type == CHANGE_DELETE:
                self._store.soft_delete(entity, change.id)
                return
            record = dict(change.after or {})
            if config.is_schedule:
                self._store.upsert("vessel", {
                    "id": record["vessel_id"],
                    "name": record.get("vessel_name"),
                    "address": record.get("address"),
                    "phone": record.get("phone"),
                    "active": True,
                })
            payload = writable(entity, record)
            payload.pop("deleted_at", None)
            payload["id"] = change.id
            if "phone" in payload:
                payload["phone"] = compact_phone(payload["phone"])
            self._store.upsert(entity, payload)

    def _apply_to_sheet(self, config: SheetConfig, sheet: SheetSnapshot, change: ChangeRecord) -> None:
        if change.type == CHANGE_CREATE:
            values = record_to_sheet_row(config, change.after or {}, sheet.index_map)
            self._source.append_row(config.sheet_name, values)
            return

        row_number = sheet.row_numbers.get(change.id)
        if row_number is None:
            raise ChangeApplyError(f"row for {change.id} not found in {config.sheet_name}")
        base = sheet.raw_rows.get(row_number, [])

        if change.type == CHANGE_DELETE:
            if not config.soft_delete_field:
                raise ChangeApplyError(f"{config.sheet_name} has no soft-delete column")
            values = record_to_sheet_row(config, {config.soft_delete_field: True}, sheet.index_map, base)
        else:
            values = record_to_sheet_row(config, change.after or {}, sheet.index_map, base)
        self._source.write_row(config.sheet_name, row_number, values)
