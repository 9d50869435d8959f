"""Unit test fixtures: sheet CSV writers and an in-memory store."""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path

import pytest

from marina_sync.sheet_config import load_sheet_configs
from marina_sync.sources import CsvDirSheetSource
from marina_sync.store import MemoryRecordStore

SCHEDULE_HEADER = [
    "Tarih", "Saat", "Tekne Adı", "Adres", "Yer", "Servis Açıklaması",
    "İrtibat Kişi", "Telefon", "Durum", "WhatsApp Randevu Bildirimi Gönder",
]

PERSONNEL_HEADER = [
    "id", "name", "title", "role", "active", "start_year", "phone", "email",
    "address", "notes", "created_at", "updated_at", "deleted",
]

FIXED_NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _write_csv(path: Path, rows: list[list[str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fh:
        csv.writer(fh).writerows(rows)


@pytest.fixture
def configs():
    return load_sheet_configs()


@pytest.fixture
def sheet_dir(tmp_path):
    return tmp_path / "sheets"


@pytest.fixture
def source(sheet_dir):
    return CsvDirSheetSource(sheet_dir)


@pytest.fixture
def store():
    return MemoryRecordStore(clock=lambda: FIXED_NOW)


@pytest.fixture
def schedule_row():
    """Build one DB_Planlama row; keyword overrides replace single cells."""

    def build(**overrides) -> list[str]:
        cells = {
            "date": "03.02.2026",
            "time": "09:30",
            "vessel": "Deniz Yıldızı",
            "address": "Yalıkavak Marina",
            "location": "Pontoon C",
            "description": "Engine service",
            "contact": "Ali Kaya",
            "phone": "0532 111 22 33",
            "status": "Randevu verildi",
            "whatsapp": "",
        }
        cells.update(overrides)
        return list(cells.values())

    return build


@pytest.fixture
def write_schedule(sheet_dir):
    def write(rows: list[list[str]], header: list[str] | None = None) -> None:
        _write_csv(sheet_dir / "DB_Planlama.csv", [header or SCHEDULE_HEADER, *rows])

    return write


@pytest.fixture
def write_personnel(sheet_dir):
    def write(rows: list[list[str]]) -> None:
        _write_csv(sheet_dir / "Personel_Listesi.csv", [PERSONNEL_HEADER, *rows])

    return write


@pytest.fixture
def personnel_row():
    def build(**overrides) -> list[str]:
        cells = {
            "id": "p-001",
            "name": "Mehmet Usta",
            "title": "Usta",
            "role": "Teknisyen",
            "active": "TRUE",
            "start_year": "2019",
            "phone": "0532 000 00 01",
            "email": "mehmet@example.com",
            "address": "",
            "notes": "",
            "created_at": "2026-01-01T00:00:00+00:00",
            "updated_at": "2026-01-01T00:00:00+00:00",
            "deleted": "",
        }
        cells.update(overrides)
        return list(cells.values())

    return build


@pytest.fixture
def schedule_header():
    return list(SCHEDULE_HEADER)


@pytest.fixture
def write_vessels(sheet_dir):
    """Write Tekneler.csv; each row is (id, name, active) laid out over A:S."""

    def write(rows: list[tuple[str, str, str]]) -> None:
        header = [
            "id", "name", "serial_no", "brand", "model", "length_m", "engine_type",
            "engine_serial_no", "build_year", "color", "ownership", "address",
            "phone", "email", "notes", "active", "created_at", "updated_at", "deleted",
        ]
        body = [[vid, name] + [""] * 13 + [active, "", "", ""] for vid, name, active in rows]
        _write_csv(sheet_dir / "Tekneler.csv", [header, *body])

    return write
