"""Integration tests for the sheet → PostgreSQL pipeline and the CLI."""

from __future__ import annotations

import json

from click.testing import CliRunner

from marina_sync.cli import main
from marina_sync.shared import MODE_FULL_RESET, PgRunLog
from marina_sync.sources import CsvDirSheetSource
from marina_sync.store import PgRecordStore
from marina_sync.sync_manager import SyncManager


def _manager(conn, sheet_dir):
    return SyncManager(CsvDirSheetSource(sheet_dir), PgRecordStore(conn), run_log=PgRunLog(conn))


def _count(conn, table):
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Test: SyncManager against PostgreSQL
# ---------------------------------------------------------------------------

class TestScheduleSync:
    def test_incremental_is_idempotent(self, db_conn, sheet_dir, write_schedule, schedule_row):
        conn, _ = db_conn
        write_schedule([schedule_row(), schedule_row(vessel="Mavi Rüya")])
        manager = _manager(conn, sheet_dir)

        first = manager.sync("SCHEDULE", run_id="run-1")
        assert first.success, first.errors
        assert first.created == 2

        second = manager.sync("SCHEDULE", run_id="run-2")
        assert (second.created, second.updated, second.skipped) == (0, 0, 2)
        assert _count(conn, "service") == 2
        assert _count(conn, "vessel") == 2

    def test_exempt_status_preserved(self, db_conn, sheet_dir, write_schedule, schedule_row):
        conn, _ = db_conn
        write_schedule([schedule_row()])
        manager = _manager(conn, sheet_dir)
        manager.sync("SCHEDULE")
        conn.execute("UPDATE service SET status = 'COMPLETED'")

        write_schedule([schedule_row(status="Devam ediyor")])
        result = manager.sync("SCHEDULE")
        assert result.updated == 0
        assert conn.execute("SELECT status FROM service").fetchone()[0] == "COMPLETED"

    def test_full_reset_keeps_vessels_referenced(self, db_conn, sheet_dir, write_schedule, schedule_row):
        conn, _ = db_conn
        write_schedule([schedule_row(), schedule_row(vessel="Mavi Rüya")])
        manager = _manager(conn, sheet_dir)
        manager.sync("SCHEDULE")

        write_schedule([schedule_row()])
        result = manager.sync("SCHEDULE", MODE_FULL_RESET)
        assert result.success, result.errors
        assert (result.deleted, result.created) == (2, 1)
        active = dict(conn.execute("SELECT id, active FROM vessel").fetchall())
        assert active == {
            "sheet-vessel-deniz-yildizi": True,
            "sheet-vessel-mavi-ruya": False,
        }

    def test_validate_after_sync_is_clean(self, db_conn, sheet_dir, write_schedule, schedule_row):
        conn, _ = db_conn
        write_schedule([schedule_row(), schedule_row(status="Tamamlandı", vessel="X")])
        manager = _manager(conn, sheet_dir)
        manager.sync("SCHEDULE")
        result = manager.validate()
        assert result.ok, result.to_dict()
        assert result.summary.skipped_by_status_count == 1

    def test_run_log_persisted(self, db_conn, sheet_dir, write_schedule, schedule_row):
        conn, _ = db_conn
        write_schedule([schedule_row()])
        _manager(conn, sheet_dir).sync_all(run_id="run-all")
        assert _count(conn, "sync_run") == 1
        assert _count(conn, "sync_log") == 3
        assert PgRunLog(conn).last().run_id == "run-all"


# ---------------------------------------------------------------------------
# Test: CLI
# ---------------------------------------------------------------------------

class TestCli:
    def _invoke(self, dsn, sheet_dir, tmp_path, *args):
        return CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--source", "csv",
            "--csv-dir", str(sheet_dir),
            "--rejects-path", str(tmp_path / "rejects.csv"),
            *args,
        ])

    def test_dry_run_produces_no_db_rows(self, db_conn, sheet_dir, write_schedule, schedule_row, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        write_schedule([schedule_row()])
        result = self._invoke(dsn, sheet_dir, tmp_path, "--mode", "incremental", "--dry-run", "--run-id", "dry")
        assert result.exit_code == 0, result.output
        for table in ("service", "vessel", "sync_run", "sync_log"):
            assert _count(conn, table) == 0, f"Expected 0 rows in {table} after dry-run"

    def test_real_run_then_status(self, db_conn, sheet_dir, write_schedule, schedule_row, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        write_schedule([schedule_row(), schedule_row(vessel="")])
        result = self._invoke(dsn, sheet_dir, tmp_path, "--mode", "incremental", "--run-id", "real")
        assert result.exit_code == 0, result.output
        assert _count(conn, "service") == 1
        assert "MISSING_REQUIRED" in (tmp_path / "rejects.csv").read_text(encoding="utf-8")

        status = CliRunner().invoke(main, ["--db-dsn", dsn, "--mode", "status"])
        assert status.exit_code == 0
        assert json.loads(status.output[status.output.index("{"):])["run_id"] == "real"

    def test_reconcile_repairs_drift(self, db_conn, sheet_dir, write_schedule, schedule_row, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        conn.execute("INSERT INTO service (id, status) VALUES ('sheet-svc-orphan', 'SCHEDULED')")
        write_schedule([schedule_row()])
        result = self._invoke(dsn, sheet_dir, tmp_path, "--mode", "reconcile")
        assert result.exit_code == 0, result.output
        assert conn.execute("SELECT count(*) FROM service WHERE id = 'sheet-svc-orphan'").fetchone()[0] == 0
