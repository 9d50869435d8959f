"""marina_sync.columns

Column resolver: maps logical fields to spreadsheet column positions.

Field staff insert, drop and reorder sheet columns.  Each ColumnSpec carries a
fallback column letter and optional header aliases; aliased fields are located
by header text, un-aliased fields trust their fixed position.  The resulting
field → index map is computed once per run and reused for every data row.

Resolution failure is fatal for the sheet: callers must not ingest any row
when ColumnResolution.ok is False, and should surface build_header_report()
so the spreadsheet can be fixed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from marina_sync.normalize import (
    column_letter_to_index,
    index_to_column_letter,
    normalize_header,
)

VALID_COLUMN_TYPES = ("string", "number", "boolean", "date", "datetime", "enum")


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnSpec:
    field: str
    column: str
    type: str = "string"
    required: bool = False
    aliases: tuple[str, ...] = ()
    enum_values: dict[str, str] | None = None
    transform: str | None = None

    @property
    def fallback_index(self) -> int:
        return column_letter_to_index(self.column)

    @property
    def normalized_aliases(self) -> tuple[str, ...]:
        return tuple(a for a in (normalize_header(x) for x in self.aliases) if a)


@dataclass
class ColumnResolution:
    index_map: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

def resolve_columns(specs: list[ColumnSpec], header_row: list[Any]) -> ColumnResolution:
    """Build the field → 0-based column index map for one sheet snapshot."""
    headers = ["" if h is None else str(h) for h in header_row]
    normalized = [normalize_header(h) for h in headers]
    upper_bound = max(len(headers), 1)
    result = ColumnResolution()

    for spec in specs:
        fallback = spec.fallback_index
        chosen = fallback
        aliases = spec.normalized_aliases

        if aliases and normalized:
            found = next((i for i, h in enumerate(normalized) if h in aliases), -1)
            if found < 0:
                actual = headers[fallback] if 0 <= fallback < len(headers) and headers[fallback] else "(missing)"
                result.errors.append(
                    f"Header not found for '{spec.field}': expected one of "
                    f"[{', '.join(spec.aliases)}], column {spec.column} has '{actual}'"
                )
                continue
            chosen = found

        if chosen < 0 or chosen >= upper_bound:
            result.errors.append(
                f"Invalid column index for '{spec.field}': {chosen + 1} "
                f"(sheet has {len(headers)} columns)"
            )
            continue

        if aliases and chosen != fallback and 0 <= fallback < len(headers):
            result.warnings.append(
                f"Column '{spec.field}' resolved by header at "
                f"{index_to_column_letter(chosen)} (expected {spec.column})"
            )
        result.index_map[spec.field] = chosen

    return result


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def build_header_report(
    specs: list[ColumnSpec],
    header_row: list[Any],
    resolution: ColumnResolution,
) -> list[dict[str, Any]]:
    """Per-field expected vs. resolved header rows (columns are 1-based)."""
    headers = ["" if h is None else str(h) for h in header_row]
    report: list[dict[str, Any]] = []
    for spec in specs:
        resolved = resolution.index_map.get(spec.field)
        fallback = spec.fallback_index
        report.append({
            "field": spec.field,
            "expected_column": spec.column,
            "expected_header": spec.aliases[0] if spec.aliases else None,
            "fallback_header": headers[fallback] if fallback < len(headers) else None,
            "resolved_column": resolved + 1 if resolved is not None else None,
            "resolved_header": headers[resolved] if resolved is not None else None,
        })
    return report


def format_header_report(report: list[dict[str, Any]]) -> str:
    """Render a header report as a plain-text table for sheet editors."""
    rows = [("FIELD", "EXPECTED", "FOUND AT EXPECTED", "RESOLVED")]
    for r in report:
        expected = f"{r['expected_column']} ({r['expected_header'] or '-'})"
        if r["resolved_column"] is None:
            resolved = "NOT FOUND"
        else:
            letter = index_to_column_letter(r["resolved_column"] - 1)
            resolved = f"{letter} ({r['resolved_header'] or '-'})"
        rows.append((r["field"], expected, r["fallback_header"] or "(missing)", resolved))
    widths = [max(len(row[i]) for row in rows) for i in range(4)]
    return "\n".join(
        "  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip()
        for row in rows
    )
