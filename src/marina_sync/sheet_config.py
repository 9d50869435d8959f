"""marina_sync.sheet_config

YAML-based sheet definitions and per-column type coercion.

Responsibilities:
  - Load and validate config/sheets.yml into SheetConfig objects
  - Coerce raw sheet cells to typed values per ColumnSpec (type tag, enum
    synonyms, named transform hooks)

Usage:
    from marina_sync.sheet_config import load_sheet_configs, coerce_row

    configs = load_sheet_configs()
    cfg = configs["SCHEDULE"]
    record = coerce_row(cfg, row, resolution.index_map)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from marina_sync.columns import VALID_COLUMN_TYPES, ColumnSpec
from marina_sync.dates import parse_datetime, parse_smart_date
from marina_sync.normalize import (
    column_letter_to_index,
    fold_locale_letters,
    normalize_header,
    parse_numeric,
    trim,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "sheets.yml"

VALID_PIPELINES = ("schedule", "generic")
VALID_RESET_STRATEGIES = ("delete_all", "upsert")
VALID_ENTITIES = ("service", "vessel", "personnel")

REQUIRED_SHEET_KEYS = frozenset({"sheet_name", "range", "entity", "pipeline", "columns"})

_TRUE_TOKENS = frozenset({"TRUE", "1", "YES", "Y", "EVET", "E", "X", "AKTIF", "VAR"})
_FALSE_TOKENS = frozenset({"FALSE", "0", "NO", "N", "HAYIR", "H", "PASIF", "YOK"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SheetConfigValidationError(ValueError):
    """Raised when sheets.yml fails schema validation."""


# ---------------------------------------------------------------------------
# SheetConfig dataclass
# ---------------------------------------------------------------------------

@dataclass
class SheetConfig:
    """One spreadsheet tab and how its rows map onto a stored entity."""

    key: str
    sheet_name: str
    cell_range: str
    entity: str
    pipeline: str
    columns: list[ColumnSpec]
    primary_key: str = "id"
    reset_strategy: str = "upsert"
    updated_at_field: str | None = None
    soft_delete_field: str | None = None
    description: str = ""

    @property
    def is_schedule(self) -> bool:
        return self.pipeline == "schedule"

    def column(self, field_name: str) -> ColumnSpec | None:
        return next((c for c in self.columns if c.field == field_name), None)


# ---------------------------------------------------------------------------
# Coercion helpers and transforms
# ---------------------------------------------------------------------------

def to_boolean(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    v = trim(value)
    if v is None:
        return None
    token = normalize_header(v)
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def to_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    number = parse_numeric(value)
    if number is None:
        return None
    return int(number) if number == number.to_integral_value() else float(number)


def to_date(value: Any):
    return parse_smart_date(value).date


def to_enum(value: Any, enum_values: dict[str, str] | None) -> str | None:
    v = trim(value)
    if v is None:
        return None
    if not enum_values:
        return v
    token = normalize_header(v)
    for synonym, canonical in enum_values.items():
        if normalize_header(synonym) == token:
            return canonical
    return None


def personnel_role(value: Any) -> str | None:
    """Map a free-text role to 'technician' or 'supervisor'."""
    v = trim(value)
    if v is None:
        return None
    token = fold_locale_letters(v).lower()
    if any(k in token for k in ("yetkili", "yonetici", "supervisor", "manager")):
        return "supervisor"
    if any(k in token for k in ("teknisyen", "usta", "technician")):
        return "technician"
    return None


_PERSONNEL_TITLES = {
    "USTA": "MASTER",
    "USTABASI": "MASTER",
    "TEKNISYEN": "MASTER",
    "MASTER": "MASTER",
    "CIRAK": "APPRENTICE",
    "APPRENTICE": "APPRENTICE",
    "YONETICI": "MANAGER",
    "MANAGER": "MANAGER",
    "OFIS": "OFFICE",
    "OFFICE": "OFFICE",
}


def personnel_title(value: Any) -> str | None:
    v = trim(value)
    if v is None:
        return None
    return _PERSONNEL_TITLES.get(normalize_header(v))


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "date": to_date,
    "datetime": parse_datetime,
    "number": to_number,
    "boolean": to_boolean,
    "personnel_role": personnel_role,
    "personnel_title": personnel_title,
}

_TYPE_DEFAULTS: dict[str, Any] = {
    "string": "",
    "number": 0,
    "boolean": False,
}


def coerce_value(spec: ColumnSpec, raw: Any) -> Any:
    """Coerce one cell per its ColumnSpec.

    Blank cells become the type default for required columns and None
    otherwise.  A transform that returns None falls back to the raw text.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return _TYPE_DEFAULTS.get(spec.type) if spec.required else None

    if spec.transform:
        transformed = TRANSFORMS[spec.transform](raw)
        return transformed if transformed is not None else raw

    if spec.type == "number":
        return to_number(raw)
    if spec.type == "boolean":
        return to_boolean(raw)
    if spec.type == "date":
        return to_date(raw) or raw
    if spec.type == "datetime":
        return parse_datetime(raw)
    if spec.type == "enum":
        mapped = to_enum(raw, spec.enum_values)
        return mapped if mapped is not None else raw
    return str(raw).strip()


def coerce_row(
    config: SheetConfig,
    row: list[Any],
    index_map: dict[str, int],
) -> dict[str, Any]:
    """Typed field dict for one data row using a precomputed index map."""
    record: dict[str, Any] = {}
    for spec in config.columns:
        idx = index_map.get(spec.field)
        raw = row[idx] if idx is not None and idx < len(row) else None
        record[spec.field] = coerce_value(spec, raw)
    return record


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_sheet_configs(yaml_path: Path | None = None) -> dict[str, SheetConfig]:
    """Load, validate, and return SheetConfigs keyed by sheet key.

    Raises:
        SheetConfigValidationError: If any sheet or column is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    path = yaml_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8"))
    validate_sheet_config_data(data)
    return {
        key: _build_sheet_config(key, sheet)
        for key, sheet in data["sheets"].items()
    }


def validate_sheet_config_data(data: Any) -> None:
    """Raise SheetConfigValidationError for structural problems in sheets.yml."""
    if not isinstance(data, dict) or not isinstance(data.get("sheets"), dict):
        raise SheetConfigValidationError("top-level 'sheets' mapping is required")
    if not data["sheets"]:
        raise SheetConfigValidationError("'sheets' must define at least one sheet")

    schedule_count = 0
    for key, sheet in data["sheets"].items():
        if not isinstance(sheet, dict):
            raise SheetConfigValidationError(f"{key}: sheet definition must be a mapping")
        missing = REQUIRED_SHEET_KEYS - set(sheet.keys())
        if missing:
            raise SheetConfigValidationError(f"{key}: missing keys {sorted(missing)}")
        if sheet["pipeline"] not in VALID_PIPELINES:
            raise SheetConfigValidationError(
                f"{key}: pipeline must be one of {VALID_PIPELINES}, got {sheet['pipeline']!r}"
            )
        if sheet["pipeline"] == "schedule":
            schedule_count += 1
        if sheet["entity"] not in VALID_ENTITIES:
            raise SheetConfigValidationError(
                f"{key}: entity must be one of {VALID_ENTITIES}, got {sheet['entity']!r}"
            )
        strategy = sheet.get("reset_strategy", "upsert")
        if strategy not in VALID_RESET_STRATEGIES:
            raise SheetConfigValidationError(
                f"{key}: reset_strategy must be one of {VALID_RESET_STRATEGIES}"
            )
        _validate_range(key, sheet["range"])
        _validate_columns(key, sheet["columns"])

        fields = {c["field"] for c in sheet["columns"]}
        for opt in ("updated_at_field", "soft_delete_field"):
            if sheet.get(opt) and sheet[opt] not in fields:
                raise SheetConfigValidationError(f"{key}: {opt} '{sheet[opt]}' is not a column field")
        if sheet["pipeline"] == "generic" and sheet.get("primary_key", "id") not in fields:
            raise SheetConfigValidationError(f"{key}: primary_key must be a column field")

    if schedule_count > 1:
        raise SheetConfigValidationError("at most one sheet may use the schedule pipeline")


def _validate_range(key: str, cell_range: Any) -> None:
    if not isinstance(cell_range, str) or ":" not in cell_range:
        raise SheetConfigValidationError(f"{key}: range must look like 'A:J', got {cell_range!r}")
    start, end = cell_range.split(":", 1)
    try:
        start_idx, end_idx = column_letter_to_index(start), column_letter_to_index(end)
    except ValueError as exc:
        raise SheetConfigValidationError(f"{key}: {exc}") from exc
    if start_idx > end_idx:
        raise SheetConfigValidationError(f"{key}: range start is after range end")


def _validate_columns(key: str, columns: Any) -> None:
    if not isinstance(columns, list) or not columns:
        raise SheetConfigValidationError(f"{key}: 'columns' must be a non-empty list")
    seen: set[str] = set()
    for col in columns:
        if not isinstance(col, dict) or "field" not in col or "column" not in col:
            raise SheetConfigValidationError(f"{key}: every column needs 'field' and 'column'")
        name = col["field"]
        if name in seen:
            raise SheetConfigValidationError(f"{key}: duplicate field '{name}'")
        seen.add(name)
        try:
            column_letter_to_index(str(col["column"]))
        except ValueError as exc:
            raise SheetConfigValidationError(f"{key}.{name}: {exc}") from exc
        col_type = col.get("type", "string")
        if col_type not in VALID_COLUMN_TYPES:
            raise SheetConfigValidationError(
                f"{key}.{name}: type must be one of {VALID_COLUMN_TYPES}, got {col_type!r}"
            )
        transform = col.get("transform")
        if transform is not None and transform not in TRANSFORMS:
            raise SheetConfigValidationError(f"{key}.{name}: unknown transform {transform!r}")
        aliases = col.get("aliases", [])
        if not isinstance(aliases, list):
            raise SheetConfigValidationError(f"{key}.{name}: aliases must be a list")


def _build_sheet_config(key: str, sheet: dict[str, Any]) -> SheetConfig:
    columns = [
        ColumnSpec(
            field=c["field"],
            column=str(c["column"]).upper(),
            type=c.get("type", "string"),
            required=bool(c.get("required", False)),
            aliases=tuple(str(a) for a in c.get("aliases", [])),
            enum_values={str(k): str(v) for k, v in c["enum_values"].items()} if c.get("enum_values") else None,
            transform=c.get("transform"),
        )
        for c in sheet["columns"]
    ]
    return SheetConfig(
        key=key,
        sheet_name=str(sheet["sheet_name"]),
        cell_range=str(sheet["range"]).upper(),
        entity=sheet["entity"],
        pipeline=sheet["pipeline"],
        columns=columns,
        primary_key=sheet.get("primary_key", "id"),
        reset_strategy=sheet.get("reset_strategy", "upsert"),
        updated_at_field=sheet.get("updated_at_field"),
        soft_delete_field=sheet.get("soft_delete_field"),
        description=sheet.get("description", ""),
    )
