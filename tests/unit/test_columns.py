"""Unit tests for marina_sync.columns."""

from marina_sync.columns import (
    ColumnSpec,
    build_header_report,
    format_header_report,
    resolve_columns,
)

SPECS = [
    ColumnSpec("service_date", "A", type="date", aliases=("tarih", "date")),
    ColumnSpec("vessel_name", "B", required=True, aliases=("tekne adi", "vessel")),
    ColumnSpec("address", "C", aliases=("adres",)),
    ColumnSpec("location", "D", aliases=("yer", "lokasyon")),
    ColumnSpec("notes", "E"),
]

HEADER = ["Tarih", "Tekne Adı", "Adres", "Yer", "Notlar"]


class TestResolveColumns:
    def test_exact_layout(self):
        res = resolve_columns(SPECS, HEADER)
        assert res.ok
        assert res.index_map == {
            "service_date": 0, "vessel_name": 1, "address": 2, "location": 3, "notes": 4,
        }
        assert res.warnings == []

    def test_header_matching_ignores_case_and_accents(self):
        res = resolve_columns(SPECS, ["TARİH", "tekne   adı", "ADRES", "yer", ""])
        assert res.ok
        assert res.index_map["vessel_name"] == 1

    def test_reordered_aliased_columns_resolve_with_warning(self):
        res = resolve_columns(SPECS, ["Tarih", "Tekne Adı", "Yer", "Adres", "Notlar"])
        assert res.ok
        assert res.index_map["address"] == 3
        assert res.index_map["location"] == 2
        assert len(res.warnings) == 2
        assert any("'address'" in w and "at D" in w for w in res.warnings)

    def test_inserted_column_shifts_aliased_fields(self):
        res = resolve_columns(SPECS, ["Tarih", "Yeni", "Tekne Adı", "Adres", "Yer", "Notlar"])
        assert res.ok
        assert res.index_map["vessel_name"] == 2
        assert res.index_map["location"] == 4
        # un-aliased columns keep their fixed position
        assert res.index_map["notes"] == 4

    def test_missing_alias_is_error(self):
        res = resolve_columns(SPECS, ["Tarih", "Tekne Adı", "Adres", "Konum", "Notlar"])
        assert not res.ok
        assert len(res.errors) == 1
        assert "Header not found for 'location'" in res.errors[0]
        assert "'Konum'" in res.errors[0]
        assert "location" not in res.index_map

    def test_fixed_column_beyond_header_is_error(self):
        res = resolve_columns(SPECS, ["Tarih", "Tekne Adı", "Adres", "Yer"])
        assert not res.ok
        assert res.errors == ["Invalid column index for 'notes': 5 (sheet has 4 columns)"]

    def test_alias_found_in_short_header_no_warning(self):
        specs = [ColumnSpec("vessel_name", "F", aliases=("vessel",))]
        res = resolve_columns(specs, ["Vessel"])
        assert res.ok
        assert res.index_map == {"vessel_name": 0}
        assert res.warnings == []


class TestHeaderReport:
    def test_rows_per_field(self):
        header = ["Tarih", "Tekne Adı", "Adres", "Konum", "Notlar"]
        res = resolve_columns(SPECS, header)
        report = build_header_report(SPECS, header, res)
        assert [r["field"] for r in report] == [s.field for s in SPECS]
        location = report[3]
        assert location["expected_column"] == "D"
        assert location["expected_header"] == "yer"
        assert location["fallback_header"] == "Konum"
        assert location["resolved_column"] is None
        vessel = report[1]
        assert vessel["resolved_column"] == 2
        assert vessel["resolved_header"] == "Tekne Adı"

    def test_format_marks_not_found(self):
        header = ["Tarih", "Tekne Adı", "Adres", "Konum", "Notlar"]
        res = resolve_columns(SPECS, header)
        text = format_header_report(build_header_report(SPECS, header, res))
        lines = text.splitlines()
        assert lines[0].startswith("FIELD")
        assert len(lines) == len(SPECS) + 1
        assert "NOT FOUND" in lines[4]
        assert "B (Tekne Adı)" in lines[2]
