"""marina_sync.shared

Shared result types and run bookkeeping used by the sync manager, the change
detector and the CLI.  Includes RejectWriter, the per-row outcome variant,
SyncResult / ValidationResult, the injectable run log, and report-writing
support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

CONFIG_ERROR = "CONFIG_ERROR"
COLUMN_SHIFT_DETECTED = "COLUMN_SHIFT_DETECTED"
ROW_ERROR = "ROW_ERROR"
SYNC_ERROR = "SYNC_ERROR"

SYNC_TYPE_FULL = "FULL"
SYNC_TYPE_INCREMENTAL = "INCREMENTAL"

MODE_INCREMENTAL = "incremental"
MODE_FULL_RESET = "full_reset"
VALID_MODES = (MODE_INCREMENTAL, MODE_FULL_RESET)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rows the sanitizer refused to ingest."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = {k: "" if v is None else v for k, v in row.items()}
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Per-row outcomes
# ---------------------------------------------------------------------------

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class RowOutcome:
    kind: str
    row_id: str | None = None
    message: str | None = None

    @classmethod
    def failed(cls, row_id: str | None, exc: BaseException | str) -> RowOutcome:
        return cls(OUTCOME_ERROR, row_id, str(exc))


@dataclass
class SyncError:
    type: str
    message: str
    row_id: str | None = None
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.row_id is not None:
            d["row_id"] = self.row_id
        if self.data is not None:
            d["data"] = self.data
        return d


# ---------------------------------------------------------------------------
# SyncResult
# ---------------------------------------------------------------------------

@dataclass
class SyncResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: list[SyncError] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0
    sheet_name: str = ""
    sync_type: str = SYNC_TYPE_INCREMENTAL
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_error(self, error_type: str, message: str, row_id: str | None = None,
                  data: dict[str, Any] | None = None) -> None:
        self.errors.append(SyncError(error_type, message, row_id, data))
        self.success = False

    def fold(self, outcome: RowOutcome) -> None:
        """Add one row outcome to the totals."""
        if outcome.kind == OUTCOME_CREATED:
            self.created += 1
        elif outcome.kind == OUTCOME_UPDATED:
            self.updated += 1
        elif outcome.kind == OUTCOME_SKIPPED:
            self.skipped += 1
        elif outcome.kind == OUTCOME_ERROR:
            self.add_error(ROW_ERROR, outcome.message or "row failed", outcome.row_id)
        else:
            raise ValueError(f"unknown row outcome: {outcome.kind!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "sheet_name": self.sheet_name,
            "sync_type": self.sync_type,
            "metadata": self.metadata,
        }


def fold_outcomes(result: SyncResult, outcomes: list[RowOutcome]) -> SyncResult:
    for outcome in outcomes:
        result.fold(outcome)
    return result


# ---------------------------------------------------------------------------
# ValidationResult
# ---------------------------------------------------------------------------

@dataclass
class ValidationSummary:
    total_sheet_rows: int = 0
    effective_sheet_rows: int = 0
    db_rows_checked: int = 0
    missing_in_db_count: int = 0
    extra_in_db_count: int = 0
    mismatched_count: int = 0
    skipped_by_status_count: int = 0
    invalid_row_count: int = 0
    critical_mismatch_count: int = 0


@dataclass
class ValidationResult:
    ok: bool
    sheet_name: str
    summary: ValidationSummary = field(default_factory=ValidationSummary)
    mismatch_by_field: dict[str, int] = field(default_factory=dict)
    samples: dict[str, list[Any]] = field(default_factory=lambda: {
        "missing_in_db": [], "extra_in_db": [], "mismatched": [],
    })
    error: str | None = None
    details: list[str] = field(default_factory=list)
    headers: list[str] | None = None
    header_report: list[dict[str, Any]] | None = None

    @property
    def has_critical_drift(self) -> bool:
        s = self.summary
        return bool(s.critical_mismatch_count or s.missing_in_db_count or s.extra_in_db_count)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "ok": self.ok,
            "sheet_name": self.sheet_name,
            "summary": asdict(self.summary),
            "mismatch_by_field": self.mismatch_by_field,
            "samples": self.samples,
        }
        if self.error is not None:
            d.update({
                "error": self.error,
                "details": self.details,
                "headers": self.headers,
                "header_report": self.header_report,
            })
        return d


# ---------------------------------------------------------------------------
# Run summaries + run log
# ---------------------------------------------------------------------------

@dataclass
class SyncRunSummary:
    run_id: str
    mode: str
    started_at: datetime
    finished_at: datetime
    success: bool
    totals: dict[str, int]
    errors: list[dict[str, Any]] = field(default_factory=list)
    results: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_results(
        cls,
        run_id: str,
        mode: str,
        started_at: datetime,
        results: dict[str, SyncResult],
    ) -> SyncRunSummary:
        totals = {"created": 0, "updated": 0, "deleted": 0, "skipped": 0, "errors": 0}
        errors: list[dict[str, Any]] = []
        for key, r in results.items():
            totals["created"] += r.created
            totals["updated"] += r.updated
            totals["deleted"] += r.deleted
            totals["skipped"] += r.skipped
            totals["errors"] += len(r.errors)
            errors.extend({"sheet_key": key, **e.to_dict()} for e in r.errors)
        return cls(
            run_id=run_id,
            mode=mode,
            started_at=started_at,
            finished_at=utcnow(),
            success=all(r.success for r in results.values()),
            totals=totals,
            errors=errors,
            results={k: r.to_dict() for k, r in results.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "success": self.success,
            "totals": self.totals,
            "errors": self.errors[:50],
            "results": self.results,
        }


class RunLog(Protocol):
    def record(self, summary: SyncRunSummary) -> None:
        ...

    def last(self) -> SyncRunSummary | None:
        ...


class MemoryRunLog:
    """Keeps the most recent summary for the lifetime of this object."""

    def __init__(self) -> None:
        self._last: SyncRunSummary | None = None

    def record(self, summary: SyncRunSummary) -> None:
        self._last = summary

    def last(self) -> SyncRunSummary | None:
        return self._last


class PgRunLog:
    """Durable run history in sync_run (one row per run) and sync_log (one per sheet)."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def record(self, summary: SyncRunSummary) -> None:
        with self._conn.transaction():
            self._conn.execute(
                """
                INSERT INTO sync_run
                    (run_id, mode, started_at, finished_at, success, totals, errors)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (run_id) DO UPDATE
                  SET finished_at = EXCLUDED.finished_at,
                      success     = EXCLUDED.success,
                      totals      = EXCLUDED.totals,
                      errors      = EXCLUDED.errors
                """,
                (
                    summary.run_id, summary.mode, summary.started_at,
                    summary.finished_at, summary.success,
                    Jsonb(summary.totals), Jsonb(summary.errors[:50]),
                ),
            )
            for sheet_key, r in summary.results.items():
                self._conn.execute(
                    """
                    INSERT INTO sync_log
                        (run_id, sheet_key, sheet_name, sync_type, success,
                         created, updated, deleted, skipped, error_count,
                         error_details, duration_ms)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        summary.run_id, sheet_key, r["sheet_name"], r["sync_type"],
                        r["success"], r["created"], r["updated"], r["deleted"],
                        r["skipped"], len(r["errors"]), Jsonb(r["errors"][:50]),
                        r["duration_ms"],
                    ),
                )

    def last(self) -> SyncRunSummary | None:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT run_id, mode, started_at, finished_at, success, totals, errors
                FROM sync_run
                ORDER BY finished_at DESC
                LIMIT 1
                """
            )
            row = cur.fetchone()
        if row is None:
            return None
        return SyncRunSummary(
            run_id=row["run_id"],
            mode=row["mode"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            success=row["success"],
            totals=row["totals"],
            errors=row["errors"] or [],
        )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    payload: dict[str, Any],
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {"run_id": run_id, "written_at": utcnow().isoformat(), **payload}
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str, ensure_ascii=False))
    return report_path


def _warning_lines(warnings: list[str]) -> list[str]:
    lines: list[str] = []
    if warnings:
        lines.append(f"\nWarnings ({len(warnings)}):")
        for w in warnings[:20]:
            lines.append(f"  {w}")
        if len(warnings) > 20:
            lines.append(f"  ... and {len(warnings) - 20} more")
    return lines


def build_sync_report(results: dict[str, SyncResult], mode: str) -> str:
    lines = [
        "=" * 60,
        "Sheet Sync Report",
        f"  mode: {mode}",
        "=" * 60,
    ]
    warnings: list[str] = []
    for key, r in results.items():
        status = "ok" if r.success else "FAILED"
        lines.extend([
            f"{key} ({r.sheet_name or '-'}) [{r.sync_type}] {status}",
            f"  created:   {r.created}",
            f"  updated:   {r.updated}",
            f"  deleted:   {r.deleted}",
            f"  skipped:   {r.skipped}",
            f"  errors:    {len(r.errors)}",
            f"  duration:  {r.duration_ms} ms",
        ])
        warnings.extend(f"{key}: {w}" for w in r.metadata.get("warnings", []))
        warnings.extend(
            f"{key}: {e.type} {e.row_id or ''} {e.message}".replace("  ", " ")
            for e in r.errors
        )
    lines.extend(_warning_lines(warnings))
    lines.append("=" * 60)
    return "\n".join(lines)


def build_validation_report(result: ValidationResult) -> str:
    s = result.summary
    lines = [
        "=" * 60,
        "Sheet vs. Store Validation Report",
        f"  sheet: {result.sheet_name}",
        f"  ok:    {result.ok}",
        "=" * 60,
    ]
    if result.error:
        lines.append(f"  error: {result.error}")
        lines.extend(f"  {d}" for d in result.details)
    lines.extend([
        f"  sheet rows (total):      {s.total_sheet_rows}",
        f"  sheet rows (effective):  {s.effective_sheet_rows}",
        f"  store rows checked:      {s.db_rows_checked}",
        f"  missing in store:        {s.missing_in_db_count}",
        f"  extra in store:          {s.extra_in_db_count}",
        f"  mismatched:              {s.mismatched_count}",
        f"    critical:              {s.critical_mismatch_count}",
        f"  skipped by status:       {s.skipped_by_status_count}",
        f"  invalid rows:            {s.invalid_row_count}",
    ])
    if result.mismatch_by_field:
        lines.append("\nMismatches by field:")
        for name, n in sorted(result.mismatch_by_field.items(), key=lambda kv: -kv[1]):
            lines.append(f"  {name:<16} {n}")
    lines.append("=" * 60)
    return "\n".join(lines)
