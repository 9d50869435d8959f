"""marina_sync.cli

Command-line entry point for scheduled and manual sheet syncs.

Modes:
  incremental     write rows that differ from the store            exit 0 | 1
  full_reset      wipe + recreate (requires --confirm)             exit 0 | 1
  validate        read-only drift report                           exit 0 | 1 | 2 (--strict)
  reconcile       validate → full reset if drifted → re-validate   exit 0 | 1 | 2 (--dry-run) | 3
  detect_changes  list bidirectional changes                       exit 0 | 1
  push            apply store-side changes to the sheet            exit 0 | 1
  pull            apply sheet-side changes to the store            exit 0 | 1
  status          show the last recorded run                       exit 0

Usage:
    marina-sync --mode incremental --db-dsn "$DB_DSN" --spreadsheet-id "$GOOGLE_SPREADSHEET_ID"
    marina-sync --mode validate --strict --source csv --csv-dir ./exports --out report.json
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from pathlib import Path

import click
import psycopg

from marina_sync.change_detector import (
    ORIGIN_SHEET,
    ORIGIN_STORE,
    ChangeDetector,
    ColumnShiftError,
)
from marina_sync.columns import format_header_report
from marina_sync.shared import (
    MODE_FULL_RESET,
    MODE_INCREMENTAL,
    PgRunLog,
    RejectWriter,
    ValidationResult,
    build_sync_report,
    build_validation_report,
    utcnow,
    write_run_report,
)
from marina_sync.sheet_config import SheetConfig, load_sheet_configs
from marina_sync.sources import (
    CsvDirSheetSource,
    GspreadSheetSource,
    PublishedCsvSheetSource,
    SheetSource,
)
from marina_sync.store import PgRecordStore
from marina_sync.sync_manager import DEFAULT_SAMPLE_LIMIT, SyncManager

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DRIFT = 2
EXIT_STILL_DRIFTED = 3


# ---------------------------------------------------------------------------
# Flag validation and wiring
# ---------------------------------------------------------------------------

def _build_source(
    source_kind: str,
    spreadsheet_id: str | None,
    service_account_file: str | None,
    csv_dir: str | None,
    run_id: str,
) -> SheetSource:
    if source_kind == "csv":
        if not csv_dir:
            click.echo(f"[{run_id}] FATAL: --source csv requires: --csv-dir", err=True)
            sys.exit(EXIT_FAILED)
        return CsvDirSheetSource(Path(csv_dir))
    if not spreadsheet_id:
        click.echo(
            f"[{run_id}] FATAL: --source {source_kind} requires: --spreadsheet-id "
            "(or GOOGLE_SPREADSHEET_ID)",
            err=True,
        )
        sys.exit(EXIT_FAILED)
    if source_kind == "published_csv":
        return PublishedCsvSheetSource(spreadsheet_id)
    if service_account_file:
        return GspreadSheetSource.from_service_account_file(spreadsheet_id, Path(service_account_file))
    try:
        return GspreadSheetSource.from_env(spreadsheet_id)
    except RuntimeError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(EXIT_FAILED)


def _sheet_keys(configs: dict[str, SheetConfig], sheet_key: str, run_id: str) -> list[str]:
    if sheet_key == "all":
        return list(configs)
    if sheet_key not in configs:
        click.echo(
            f"[{run_id}] FATAL: unknown --sheet {sheet_key!r}; "
            f"expected one of: all, {', '.join(configs)}",
            err=True,
        )
        sys.exit(EXIT_FAILED)
    return [sheet_key]


def _schedule_key(configs: dict[str, SheetConfig]) -> str | None:
    return next((k for k, c in configs.items() if c.is_schedule), None)


def _echo_validation(result: ValidationResult, run_id: str, out: str | None) -> None:
    click.echo(build_validation_report(result))
    if result.header_report:
        click.echo(format_header_report(result.header_report))
    if out:
        out_path = Path(out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(result.to_dict(), indent=2, default=str, ensure_ascii=False))
        click.echo(f"[{run_id}] Validation report: {out_path}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default=MODE_INCREMENTAL,
    type=click.Choice([
        MODE_INCREMENTAL, MODE_FULL_RESET, "validate", "reconcile",
        "detect_changes", "push", "pull", "status",
    ]),
    show_default=True,
    help="Sync mode",
)
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN (env DB_DSN)")
@click.option(
    "--source",
    "source_kind",
    default="gspread",
    type=click.Choice(["gspread", "csv", "published_csv"]),
    show_default=True,
    help="Where sheet rows are read from",
)
@click.option("--spreadsheet-id", default=None, envvar="GOOGLE_SPREADSHEET_ID", help="[gspread|published_csv] Spreadsheet key")
@click.option(
    "--service-account-file",
    default=None,
    type=click.Path(),
    envvar="GOOGLE_APPLICATION_CREDENTIALS",
    help="[gspread] Service account JSON; falls back to GOOGLE_SERVICE_ACCOUNT_EMAIL + GOOGLE_PRIVATE_KEY",
)
@click.option("--csv-dir", default=None, type=click.Path(), help="[csv] Directory holding <sheet_name>.csv files")
@click.option("--sheet", "sheet_key", default="all", show_default=True, help="Sheet key from sheets.yml, or 'all'")
@click.option("--sheet-config", default=None, type=click.Path(), help="Path to sheets.yml (default: config/sheets.yml)")
@click.option("--confirm", is_flag=True, default=False, help="[full_reset] Required acknowledgement for destructive runs")
@click.option("--sample-limit", default=DEFAULT_SAMPLE_LIMIT, type=int, show_default=True, help="[validate|reconcile] Max samples per list (1-500)")
@click.option("--all-samples", is_flag=True, default=False, help="[validate|reconcile] Include every sample")
@click.option("--strict", is_flag=True, default=False, help="[validate] Exit 2 on missing, extra or critical mismatches")
@click.option("--out", default=None, type=click.Path(), help="[validate|reconcile|detect_changes] Write JSON output here")
@click.option("--dry-run", is_flag=True, default=False, help="Roll back all store writes; reconcile stops after validation")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/sheet_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str,
    source_kind: str,
    spreadsheet_id: str | None,
    service_account_file: str | None,
    csv_dir: str | None,
    sheet_key: str,
    sheet_config: str | None,
    confirm: bool,
    sample_limit: int,
    all_samples: bool,
    strict: bool,
    out: str | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Spreadsheet ↔ PostgreSQL sync CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = utcnow()
    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})", err=True)

    if mode == MODE_FULL_RESET and not confirm:
        click.echo(f"[{run_id}] FATAL: full_reset deletes stored records; pass --confirm", err=True)
        sys.exit(EXIT_FAILED)

    conn = psycopg.connect(db_dsn, autocommit=not dry_run)
    try:
        if mode == "status":
            summary = PgRunLog(conn).last()
            if summary is None:
                click.echo("No sync runs recorded.")
            else:
                click.echo(json.dumps(summary.to_dict(), indent=2, default=str))
            return

        configs = load_sheet_configs(Path(sheet_config) if sheet_config else None)
        source = _build_source(source_kind, spreadsheet_id, service_account_file, csv_dir, run_id)
        store = PgRecordStore(conn)
        exit_code = EXIT_OK

        if mode in (MODE_INCREMENTAL, MODE_FULL_RESET):
            keys = _sheet_keys(configs, sheet_key, run_id)
            rejects = RejectWriter(Path(rejects_path))
            manager = SyncManager(source, store, configs, run_log=PgRunLog(conn), rejects=rejects)
            try:
                if sheet_key == "all":
                    results = manager.sync_all(mode, run_id)
                else:
                    results = {keys[0]: manager.sync(keys[0], mode, run_id)}
            finally:
                rejects.close()
            click.echo(build_sync_report(results, mode))
            for key, r in results.items():
                for err in r.errors:
                    if err.data and err.data.get("header_report"):
                        click.echo(f"[{run_id}] {key}: expected vs. found headers", err=True)
                        click.echo(format_header_report(err.data["header_report"]), err=True)
            report_path = write_run_report(run_id, {
                "mode": mode,
                "dry_run": dry_run,
                "started_at": started_at.isoformat(),
                "results": {k: r.to_dict() for k, r in results.items()},
            })
            click.echo(f"[{run_id}] Run report: {report_path}", err=True)
            if not all(r.success for r in results.values()):
                exit_code = EXIT_FAILED

        elif mode == "validate":
            manager = SyncManager(source, store, configs)
            result = manager.validate(sample_limit, all_samples)
            _echo_validation(result, run_id, out)
            if result.error:
                exit_code = EXIT_FAILED
            elif strict and result.has_critical_drift:
                exit_code = EXIT_DRIFT

        elif mode == "reconcile":
            exit_code = _reconcile(
                SyncManager(source, store, configs, run_log=PgRunLog(conn)),
                configs, sample_limit, all_samples, out, dry_run, run_id,
            )

        else:
            exit_code = _run_change_mode(
                ChangeDetector(source, store, configs),
                _sheet_keys(configs, sheet_key, run_id), mode, out, dry_run, run_id,
            )
    finally:
        if dry_run and not conn.closed:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All store changes rolled back.", err=True)
        if not conn.closed:
            conn.close()

    sys.exit(exit_code)


def _reconcile(
    manager: SyncManager,
    configs: dict[str, SheetConfig],
    sample_limit: int,
    all_samples: bool,
    out: str | None,
    dry_run: bool,
    run_id: str,
) -> int:
    key = _schedule_key(configs)
    if key is None:
        click.echo(f"[{run_id}] FATAL: no sheet uses the schedule pipeline", err=True)
        return EXIT_FAILED

    before = manager.validate(sample_limit, all_samples)
    _echo_validation(before, run_id, out)
    if before.error:
        return EXIT_FAILED
    if before.ok:
        click.echo(f"[{run_id}] Sheet and store agree; nothing to reconcile.")
        return EXIT_OK
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] Drift found; full reset skipped.")
        return EXIT_DRIFT

    click.echo(f"[{run_id}] Drift found; running full reset of {key}.", err=True)
    result = manager.sync(key, MODE_FULL_RESET, run_id)
    click.echo(build_sync_report({key: result}, MODE_FULL_RESET))
    if not result.success:
        return EXIT_FAILED

    after = manager.validate(sample_limit, all_samples)
    _echo_validation(after, run_id, out)
    if after.error:
        return EXIT_FAILED
    return EXIT_OK if after.ok else EXIT_STILL_DRIFTED


def _run_change_mode(
    detector: ChangeDetector,
    keys: list[str],
    mode: str,
    out: str | None,
    dry_run: bool,
    run_id: str,
) -> int:
    exit_code = EXIT_OK
    output: dict[str, dict] = {}
    for key in keys:
        try:
            changes = detector.detect_changes(key)
        except ColumnShiftError as exc:
            click.echo(f"[{run_id}] {key}: column shift detected: {exc}", err=True)
            click.echo(format_header_report(exc.header_report), err=True)
            exit_code = EXIT_FAILED
            continue

        by_kind: dict[str, int] = {}
        for c in changes:
            label = f"{c.type}/{c.origin}"
            by_kind[label] = by_kind.get(label, 0) + 1
        click.echo(f"[{run_id}] {key}: {len(changes)} changes {by_kind}")
        entry: dict = {"changes": [c.to_dict() for c in changes]}

        if mode in ("push", "pull") and not dry_run:
            origin = ORIGIN_STORE if mode == "push" else ORIGIN_SHEET
            applied = detector.apply_changes(key, changes, origin)
            click.echo(
                f"[{run_id}] {key}: {mode} applied={applied.applied} "
                f"failed={applied.failed} ignored={applied.ignored}"
            )
            entry["apply"] = applied.to_dict()
            if applied.failed:
                exit_code = EXIT_FAILED
        output[key] = entry

    if out:
        out_path = Path(out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(output, indent=2, default=str, ensure_ascii=False))
        click.echo(f"[{run_id}] Changes written: {out_path}")
    return exit_code


if __name__ == "__main__":
    main()
