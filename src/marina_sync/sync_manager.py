"""marina_sync.sync_manager

Pull pipeline: spreadsheet → record store.

Per sheet:
  1. Read the configured range (header row + data rows)
  2. Resolve columns once; abort the sheet with COLUMN_SHIFT_DETECTED on failure
  3. Coerce every row per its ColumnSpec
  4. Schedule sheet: sanitize → drop skipped → de-duplicate by id → write
     Other sheets:  generic per-row upsert keyed by primary key

Modes:
  incremental  write only rows whose payload differs from the stored record
  full_reset   wipe the target entity, deactivate sheet-derived vessels, recreate

Every row write runs in its own store transaction.  A failing row becomes a
ROW_ERROR outcome and the remaining rows still run; any uncaught exception in
a sheet's pipeline becomes a SYNC_ERROR result for that sheet only.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from marina_sync.columns import build_header_report, format_header_report, resolve_columns
from marina_sync.normalize import compact_phone, trim
from marina_sync.sanitize import (
    SERVICE_ID_PREFIX,
    SKIP_MISSING_REQUIRED,
    SKIP_STATUS_FILTERED,
    VESSEL_ID_PREFIX,
    SanitizedServiceRow,
    sanitize_service_row,
)
from marina_sync.shared import (
    COLUMN_SHIFT_DETECTED,
    CONFIG_ERROR,
    MODE_FULL_RESET,
    MODE_INCREMENTAL,
    OUTCOME_CREATED,
    OUTCOME_SKIPPED,
    OUTCOME_UPDATED,
    ROW_ERROR,
    SYNC_ERROR,
    SYNC_TYPE_FULL,
    SYNC_TYPE_INCREMENTAL,
    VALID_MODES,
    MemoryRunLog,
    RejectWriter,
    RowOutcome,
    RunLog,
    SyncResult,
    SyncRunSummary,
    ValidationResult,
    fold_outcomes,
    utcnow,
)
from marina_sync.sheet_config import SheetConfig, coerce_row, load_sheet_configs
from marina_sync.sources import SheetSource
from marina_sync.status import INGESTION_EXEMPT_STATUSES, is_ingestion_exempt, map_status
from marina_sync.store import RecordStore, writable

log = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 50
MAX_SAMPLE_LIMIT = 500

SKIP_DUPLICATE_ID = "DUPLICATE_ID"
SKIP_MISSING_ID = "MISSING_ID"
SKIP_SOFT_DELETED = "SOFT_DELETED"

SERVICE_COMPARE_FIELDS = (
    "service_date", "time_text", "vessel_id", "vessel_name", "address",
    "location", "description", "contact_name", "phone", "status",
    "job_type", "deleted_at",
)
VESSEL_TRACKED_FIELDS = ("name", "address", "phone", "active")

VALIDATION_FIELDS = (
    "date", "time", "vessel_name", "address", "location", "description",
    "phone", "status",
)
CRITICAL_FIELDS = frozenset({"date", "address", "location", "status"})


# ---------------------------------------------------------------------------
# Comparison helpers
# ---------------------------------------------------------------------------

def _date_key(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return None if value in (None, "") else str(value)


def values_equal(stored: Any, computed: Any) -> bool:
    """Field equality tolerant of driver types: '' == None, Decimal == float."""
    if isinstance(stored, (date, datetime)) or isinstance(computed, (date, datetime)):
        return _date_key(stored) == _date_key(computed)
    if isinstance(stored, bool) or isinstance(computed, bool):
        return stored == computed
    if isinstance(stored, (int, float, Decimal)) and isinstance(computed, (int, float, Decimal)):
        return float(stored) == float(computed)
    if stored in (None, "") and computed in (None, ""):
        return True
    return stored == computed


def is_same_service_payload(stored: dict[str, Any], payload: dict[str, Any]) -> bool:
    return all(values_equal(stored.get(f), payload.get(f)) for f in SERVICE_COMPARE_FIELDS)


def _differs(stored: dict[str, Any] | None, payload: dict[str, Any], fields: tuple[str, ...]) -> bool:
    if stored is None:
        return True
    return any(not values_equal(stored.get(f), payload.get(f)) for f in fields)


def _is_blank_row(row: list[str]) -> bool:
    return not any(cell.strip() for cell in row)


def _check_mode(mode: str) -> None:
    if mode not in VALID_MODES:
        raise ValueError(f"mode must be one of {VALID_MODES}, got {mode!r}")


# ---------------------------------------------------------------------------
# SyncManager
# ---------------------------------------------------------------------------

class SyncManager:
    """Runs sheet → store syncs and the read-only validation report."""

    def __init__(
        self,
        source: SheetSource,
        store: RecordStore,
        configs: dict[str, SheetConfig] | None = None,
        run_log: RunLog | None = None,
        rejects: RejectWriter | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._configs = configs if configs is not None else load_sheet_configs()
        self._run_log = run_log if run_log is not None else MemoryRunLog()
        self._rejects = rejects

    @property
    def configs(self) -> dict[str, SheetConfig]:
        return self._configs

    @property
    def run_log(self) -> RunLog:
        return self._run_log

    # -- public operations ---------------------------------------------------

    def sync(self, sheet_key: str, mode: str = MODE_INCREMENTAL, run_id: str | None = None) -> SyncResult:
        """Sync one sheet and record a single-sheet run summary."""
        _check_mode(mode)
        run_id = run_id or str(uuid.uuid4())
        started_at = utcnow()
        result = self._sync_sheet(sheet_key, mode, run_id)
        self._run_log.record(
            SyncRunSummary.from_results(run_id, mode, started_at, {sheet_key: result})
        )
        return result

    def sync_all(self, mode: str = MODE_INCREMENTAL, run_id: str | None = None) -> dict[str, SyncResult]:
        """Sync every configured sheet in order; one sheet's failure never stops the rest."""
        _check_mode(mode)
        run_id = run_id or str(uuid.uuid4())
        started_at = utcnow()
        results = {key: self._sync_sheet(key, mode, run_id) for key in self._configs}
        summary = SyncRunSummary.from_results(run_id, mode, started_at, results)
        self._run_log.record(summary)
        log.info(
            "[%s] sync_all %s finished: success=%s totals=%s",
            run_id, mode, summary.success, summary.totals,
        )
        return results

    def validate(
        self,
        sample_limit: int = DEFAULT_SAMPLE_LIMIT,
        include_all_samples: bool = False,
    ) -> ValidationResult:
        """Compare the schedule sheet with stored services without writing anything."""
        limit = max(1, min(MAX_SAMPLE_LIMIT, int(sample_limit)))
        config = self._schedule_config()
        if config is None:
            result = ValidationResult(ok=False, sheet_name="")
            result.error = CONFIG_ERROR
            result.details = ["no sheet uses the schedule pipeline"]
            return result

        result = ValidationResult(ok=True, sheet_name=config.sheet_name)
        rows = self._source.read_rows(config.sheet_name, config.cell_range)
        if not rows:
            return result

        header = rows[0]
        data = [r for r in rows[1:] if not _is_blank_row(r)]
        resolution = resolve_columns(config.columns, header)
        if not resolution.ok:
            result.ok = False
            result.error = COLUMN_SHIFT_DETECTED
            result.details = list(resolution.errors)
            result.headers = list(header)
            result.header_report = build_header_report(config.columns, header, resolution)
            result.summary.total_sheet_rows = len(data)
            return result

        summary = result.summary
        summary.total_sheet_rows = len(data)

        sheet_rows: dict[str, SanitizedServiceRow] = {}
        for raw in data:
            row = sanitize_service_row(coerce_row(config, raw, resolution.index_map))
            if row.skip_reason == SKIP_STATUS_FILTERED:
                summary.skipped_by_status_count += 1
            elif row.skip_reason == SKIP_MISSING_REQUIRED or row.id in sheet_rows:
                summary.invalid_row_count += 1
            else:
                sheet_rows[row.id] = row
        summary.effective_sheet_rows = len(sheet_rows)

        stored = self._store.fetch_by_ids(config.entity, sheet_rows.keys())
        summary.db_rows_checked = len(stored)

        def take(bucket: str, item: Any) -> None:
            if include_all_samples or len(result.samples[bucket]) < limit:
                result.samples[bucket].append(item)

        for record_id, row in sheet_rows.items():
            existing = stored.get(record_id)
            if existing is None or existing.get("deleted_at") is not None:
                summary.missing_in_db_count += 1
                take("missing_in_db", record_id)
                continue
            sheet_snap = _sheet_snapshot(row)
            db_snap = _db_snapshot(existing)
            diffs = [
                {"field": f, "sheet": sheet_snap[f], "db": db_snap[f]}
                for f in VALIDATION_FIELDS
                if sheet_snap[f] != db_snap[f]
            ]
            if not diffs:
                continue
            summary.mismatched_count += 1
            for d in diffs:
                result.mismatch_by_field[d["field"]] = result.mismatch_by_field.get(d["field"], 0) + 1
            if any(d["field"] in CRITICAL_FIELDS for d in diffs):
                summary.critical_mismatch_count += 1
            take("mismatched", {"id": record_id, "diffs": diffs})

        extra = [
            i for i in self._store.list_ids(
                config.entity,
                id_prefix=SERVICE_ID_PREFIX,
                exclude_statuses=INGESTION_EXEMPT_STATUSES,
            )
            if i not in sheet_rows
        ]
        summary.extra_in_db_count = len(extra)
        for record_id in extra:
            take("extra_in_db", record_id)

        result.ok = (
            summary.missing_in_db_count == 0
            and summary.extra_in_db_count == 0
            and summary.mismatched_count == 0
        )
        return result

    # -- per-sheet pipeline --------------------------------------------------

    def _schedule_config(self) -> SheetConfig | None:
        return next((c for c in self._configs.values() if c.is_schedule), None)

    def _sync_sheet(self, sheet_key: str, mode: str, run_id: str) -> SyncResult:
        t0 = time.monotonic()
        result = SyncResult(
            sync_type=SYNC_TYPE_FULL if mode == MODE_FULL_RESET else SYNC_TYPE_INCREMENTAL,
            metadata={"run_id": run_id, "mode": mode, "sheet_key": sheet_key, "warnings": []},
        )

        config = self._configs.get(sheet_key)
        if config is None:
            result.add_error(CONFIG_ERROR, f"Unknown sheet key: {sheet_key}")
            return self._finish(result, t0)
        result.sheet_name = config.sheet_name

        try:
            rows = self._source.read_rows(config.sheet_name, config.cell_range)
            if not rows:
                log.info("[%s] %s: sheet is empty", run_id, config.sheet_name)
                return self._finish(result, t0)

            header = rows[0]
            data = [r for r in rows[1:] if not _is_blank_row(r)]
            resolution = resolve_columns(config.columns, header)
            result.metadata["warnings"].extend(resolution.warnings)
            if not resolution.ok:
                report = build_header_report(config.columns, header, resolution)
                result.add_error(
                    COLUMN_SHIFT_DETECTED,
                    "Sheet columns do not match the expected layout; nothing was written",
                    data={
                        "errors": list(resolution.errors),
                        "headers": list(header),
                        "header_report": report,
                    },
                )
                result.skipped = len(data)
                log.warning(
                    "[%s] %s: column shift detected, %d rows not synced\n%s",
                    run_id, config.sheet_name, len(data), format_header_report(report),
                )
                return self._finish(result, t0)

            records = [coerce_row(config, row, resolution.index_map) for row in data]
            if config.is_schedule:
                self._sync_schedule(config, records, mode, result)
            else:
                self._sync_generic(config, records, mode, result)
        except Exception as exc:
            log.warning("[%s] %s: sync failed: %s", run_id, sheet_key, exc)
            result.add_error(SYNC_ERROR, str(exc) or type(exc).__name__)

        return self._finish(result, t0)

    def _finish(self, result: SyncResult, t0: float) -> SyncResult:
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        log.info(
            "[%s] %s: created=%d updated=%d deleted=%d skipped=%d errors=%d",
            result.metadata.get("run_id"), result.sheet_name or result.metadata.get("sheet_key"),
            result.created, result.updated, result.deleted, result.skipped, len(result.errors),
        )
        return result

    def _reject(self, record: dict[str, Any], reason: str) -> None:
        if self._rejects is not None:
            self._rejects.write(record, reason)

    # -- schedule pipeline ---------------------------------------------------

    def _prepare_schedule_rows(
        self,
        records: list[dict[str, Any]],
        result: SyncResult,
    ) -> list[SanitizedServiceRow]:
        prepared: list[SanitizedServiceRow] = []
        seen: set[str] = set()
        for record in records:
            row = sanitize_service_row(record)
            if row.skipped:
                result.fold(RowOutcome(OUTCOME_SKIPPED, row.id, row.skip_reason))
                self._reject(record, row.skip_reason)
                continue
            if row.id in seen:
                result.fold(RowOutcome(OUTCOME_SKIPPED, row.id, SKIP_DUPLICATE_ID))
                self._reject(record, SKIP_DUPLICATE_ID)
                continue
            seen.add(row.id)
            result.metadata["warnings"].extend(f"{row.id}: {w}" for w in row.warnings)
            prepared.append(row)
        return prepared

    def _sync_schedule(
        self,
        config: SheetConfig,
        records: list[dict[str, Any]],
        mode: str,
        result: SyncResult,
    ) -> None:
        rows = self._prepare_schedule_rows(records, result)
        if mode == MODE_FULL_RESET:
            with self._store.transaction():
                result.deleted = self._store.delete_all(config.entity)
                self._store.deactivate("vessel", VESSEL_ID_PREFIX)
            fold_outcomes(result, [self._create_with_parent(config, row) for row in rows])
            return

        self._sync_parent_vessels(rows, result)
        stored = self._store.fetch_by_ids(config.entity, [r.id for r in rows])
        fold_outcomes(
            result,
            [self._write_service(config, row, stored.get(row.id)) for row in rows],
        )

    def _create_with_parent(self, config: SheetConfig, row: SanitizedServiceRow) -> RowOutcome:
        try:
            with self._store.transaction():
                self._store.upsert("vessel", row.vessel_payload())
                self._store.insert(config.entity, row.to_payload())
            return RowOutcome(OUTCOME_CREATED, row.id)
        except Exception as exc:
            log.warning("create %s failed: %s", row.id, exc)
            return RowOutcome.failed(row.id, exc)

    def _sync_parent_vessels(self, rows: list[SanitizedServiceRow], result: SyncResult) -> None:
        vessels: dict[str, dict[str, Any]] = {}
        for row in rows:
            vessels.setdefault(row.vessel_id, row.vessel_payload())
        stored = self._store.fetch_by_ids("vessel", vessels.keys())
        for vessel_id, payload in vessels.items():
            if not _differs(stored.get(vessel_id), payload, VESSEL_TRACKED_FIELDS):
                continue
            try:
                with self._store.transaction():
                    self._store.upsert("vessel", payload)
            except Exception as exc:
                log.warning("vessel upsert %s failed: %s", vessel_id, exc)
                result.add_error(ROW_ERROR, str(exc), vessel_id)

    def _write_service(
        self,
        config: SheetConfig,
        row: SanitizedServiceRow,
        stored: dict[str, Any] | None,
    ) -> RowOutcome:
        payload = row.to_payload()
        try:
            if stored is None:
                with self._store.transaction():
                    self._store.insert(config.entity, payload)
                return RowOutcome(OUTCOME_CREATED, row.id)
            if is_ingestion_exempt(stored.get("status")):
                return RowOutcome(OUTCOME_SKIPPED, row.id, SKIP_STATUS_FILTERED)
            if is_same_service_payload(stored, payload):
                return RowOutcome(OUTCOME_SKIPPED, row.id)
            with self._store.transaction():
                self._store.update(config.entity, row.id, payload)
            return RowOutcome(OUTCOME_UPDATED, row.id)
        except Exception as exc:
            log.warning("write %s failed: %s", row.id, exc)
            return RowOutcome.failed(row.id, exc)

    # -- generic pipeline ----------------------------------------------------

    def _entity_payload(self, config: SheetConfig, record: dict[str, Any], record_id: str) -> dict[str, Any]:
        payload = writable(config.entity, record)
        payload.pop("deleted_at", None)
        payload["id"] = record_id
        if "phone" in payload:
            payload["phone"] = compact_phone(payload["phone"])
        return payload

    def _sync_generic(
        self,
        config: SheetConfig,
        records: list[dict[str, Any]],
        mode: str,
        result: SyncResult,
    ) -> None:
        entity = config.entity
        if mode == MODE_FULL_RESET and config.reset_strategy == "delete_all":
            with self._store.transaction():
                result.deleted = self._store.delete_all(entity)

        prepared: list[tuple[str, dict[str, Any]]] = []
        seen: set[str] = set()
        for record in records:
            raw_id = record.get(config.primary_key)
            record_id = trim(None if raw_id is None else str(raw_id))
            if not record_id:
                result.fold(RowOutcome(OUTCOME_SKIPPED, None, SKIP_MISSING_ID))
                self._reject(record, SKIP_MISSING_ID)
                continue
            if config.soft_delete_field and record.get(config.soft_delete_field) is True:
                result.fold(RowOutcome(OUTCOME_SKIPPED, record_id, SKIP_SOFT_DELETED))
                continue
            if record_id in seen:
                result.fold(RowOutcome(OUTCOME_SKIPPED, record_id, SKIP_DUPLICATE_ID))
                self._reject(record, SKIP_DUPLICATE_ID)
                continue
            seen.add(record_id)
            prepared.append((record_id, self._entity_payload(config, record, record_id)))

        stored = self._store.fetch_by_ids(entity, [rid for rid, _ in prepared])
        outcomes: list[RowOutcome] = []
        for record_id, payload in prepared:
            existing = stored.get(record_id)
            try:
                if existing is None:
                    with self._store.transaction():
                        self._store.insert(entity, payload)
                    outcomes.append(RowOutcome(OUTCOME_CREATED, record_id))
                elif not _differs(existing, payload, tuple(k for k in payload if k != "id")):
                    outcomes.append(RowOutcome(OUTCOME_SKIPPED, record_id))
                else:
                    with self._store.transaction():
                        self._store.update(entity, record_id, payload)
                    outcomes.append(RowOutcome(OUTCOME_UPDATED, record_id))
            except Exception as exc:
                log.warning("%s %s failed: %s", entity, record_id, exc)
                outcomes.append(RowOutcome.failed(record_id, exc))
        fold_outcomes(result, outcomes)


# ---------------------------------------------------------------------------
# Validation snapshots
# ---------------------------------------------------------------------------

def _sheet_snapshot(row: SanitizedServiceRow) -> dict[str, Any]:
    return {
        "date": row.service_date.isoformat() if row.service_date else None,
        "time": row.time_text or "",
        "vessel_name": row.vessel_name,
        "address": row.address,
        "location": row.location,
        "description": row.description,
        "phone": row.phone,
        "status": row.status,
    }


def _db_snapshot(stored: dict[str, Any]) -> dict[str, Any]:
    return {
        "date": _date_key(stored.get("service_date")),
        "time": stored.get("time_text") or "",
        "vessel_name": stored.get("vessel_name") or "",
        "address": stored.get("address") or "",
        "location": stored.get("location") or "",
        "description": stored.get("description") or "",
        "phone": compact_phone(stored.get("phone")),
        "status": map_status(stored.get("status")).status,
    }
