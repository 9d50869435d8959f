"""Integration test fixtures.

Applies migrations/ against an ephemeral PostgreSQL database provided by
pytest-postgresql.  Tests are skipped when no PostgreSQL binaries are on PATH.
"""

from __future__ import annotations

import csv
import shutil
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_core_entities.sql",
    PROJECT_ROOT / "migrations" / "0002_sync_log.sql",
]

SCHEDULE_HEADER = [
    "Tarih", "Saat", "Tekne Adı", "Adres", "Yer", "Servis Açıklaması",
    "İrtibat Kişi", "Telefon", "Durum", "WhatsApp Randevu Bildirimi Gönder",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations for every test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(request):
    """Return (autocommit connection, dsn) with the schema applied.

    Function scope gives every test a fresh database.
    """
    if not (shutil.which("pg_ctl") or shutil.which("pg_config")):
        pytest.skip("PostgreSQL binaries not available")
    postgresql = request.getfixturevalue("postgresql")
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def sheet_dir(tmp_path):
    return tmp_path / "sheets"


@pytest.fixture
def write_schedule(sheet_dir):
    def write(rows: list[list[str]]) -> None:
        sheet_dir.mkdir(parents=True, exist_ok=True)
        with (sheet_dir / "DB_Planlama.csv").open("w", newline="", encoding="utf-8") as fh:
            csv.writer(fh).writerows([SCHEDULE_HEADER, *rows])

    return write


@pytest.fixture
def schedule_row():
    def build(vessel="Deniz Yıldızı", description="Engine service", status="Randevu verildi",
              date="03.02.2026", address="Yalıkavak Marina") -> list[str]:
        return [date, "09:30", vessel, address, "Pontoon C", description,
                "Ali Kaya", "0532 111 22 33", status, ""]

    return build
