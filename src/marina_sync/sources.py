"""marina_sync.sources

Spreadsheet access behind a small protocol.

  GspreadSheetSource       Google Sheets API via gspread (read + write)
  CsvDirSheetSource        one <sheet_name>.csv per tab in a directory (tests, offline runs)
  PublishedCsvSheetSource  read-only CSV export of a published spreadsheet via requests

Rows are returned as lists of strings; row 0 is the header.  Row numbers
passed to write_row() are 1-based sheet rows, so the header is row 1 and the
first data row is row 2.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import requests

from marina_sync.normalize import column_letter_to_index, index_to_column_letter

log = logging.getLogger(__name__)

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)
PUBLISHED_CSV_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq"
REQUEST_TIMEOUT_SECONDS = 30


class ReadOnlySourceError(RuntimeError):
    """Raised when writing to a source that only supports reads."""


# ---------------------------------------------------------------------------
# Range helpers
# ---------------------------------------------------------------------------

def range_bounds(cell_range: str) -> tuple[int, int]:
    """'A:J' → (0, 9)."""
    start, _, end = cell_range.partition(":")
    start_idx = column_letter_to_index(start)
    end_idx = column_letter_to_index(end or start)
    return start_idx, end_idx


def slice_range(rows: list[list[Any]], cell_range: str) -> list[list[str]]:
    """Cut raw rows down to the column range; cells become stripped strings.

    Trailing all-blank rows are dropped, the way the Sheets API omits them.
    """
    start, end = range_bounds(cell_range)
    out = [
        ["" if cell is None else str(cell).strip() for cell in row[start:end + 1]]
        for row in rows
    ]
    while out and not any(out[-1]):
        out.pop()
    return out


def _cell_values(values: list[Any]) -> list[str]:
    return ["" if v is None else str(v) for v in values]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class SheetSource(Protocol):
    def read_rows(self, sheet_name: str, cell_range: str) -> list[list[str]]:
        """Return the header row followed by data rows within the range."""
        ...

    def write_row(self, sheet_name: str, row_number: int, values: list[Any]) -> None:
        """Overwrite the cells of one 1-based sheet row starting at column A."""
        ...

    def append_row(self, sheet_name: str, values: list[Any]) -> None:
        ...


# ---------------------------------------------------------------------------
# gspread
# ---------------------------------------------------------------------------

class GspreadSheetSource:
    """Google Sheets over the v4 API using a service account."""

    def __init__(self, spreadsheet: Any) -> None:
        self._spreadsheet = spreadsheet
        self._worksheets: dict[str, Any] = {}

    @classmethod
    def from_service_account_file(cls, spreadsheet_id: str, key_path: Path) -> GspreadSheetSource:
        import gspread

        client = gspread.service_account(filename=str(key_path), scopes=list(SHEETS_SCOPES))
        return cls(client.open_by_key(spreadsheet_id))

    @classmethod
    def from_env(
        cls,
        spreadsheet_id: str,
        email_env: str = "GOOGLE_SERVICE_ACCOUNT_EMAIL",
        key_env: str = "GOOGLE_PRIVATE_KEY",
    ) -> GspreadSheetSource:
        """Build credentials from an email + PEM key held in environment variables."""
        import gspread

        email = os.environ.get(email_env, "")
        private_key = os.environ.get(key_env, "").replace("\\n", "\n")
        if not email or not private_key:
            raise RuntimeError(f"{email_env} and {key_env} must both be set")
        info = {
            "type": "service_account",
            "client_email": email,
            "private_key": private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        client = gspread.service_account_from_dict(info, scopes=list(SHEETS_SCOPES))
        return cls(client.open_by_key(spreadsheet_id))

    def _worksheet(self, sheet_name: str) -> Any:
        if sheet_name not in self._worksheets:
            self._worksheets[sheet_name] = self._spreadsheet.worksheet(sheet_name)
        return self._worksheets[sheet_name]

    def read_rows(self, sheet_name: str, cell_range: str) -> list[list[str]]:
        response = self._spreadsheet.values_get(f"'{sheet_name}'!{cell_range}")
        return slice_range(response.get("values", []), "A:" + _range_width_letter(cell_range))

    def write_row(self, sheet_name: str, row_number: int, values: list[Any]) -> None:
        cells = _cell_values(values)
        end = index_to_column_letter(max(len(cells), 1) - 1)
        self._worksheet(sheet_name).update(
            range_name=f"A{row_number}:{end}{row_number}",
            values=[cells],
            value_input_option="USER_ENTERED",
        )

    def append_row(self, sheet_name: str, values: list[Any]) -> None:
        self._worksheet(sheet_name).append_row(
            _cell_values(values), value_input_option="USER_ENTERED"
        )


def _range_width_letter(cell_range: str) -> str:
    # values_get already returns only the requested columns, re-based at A.
    start, end = range_bounds(cell_range)
    return index_to_column_letter(end - start)


# ---------------------------------------------------------------------------
# Local CSV directory
# ---------------------------------------------------------------------------

@dataclass
class CsvDirSheetSource:
    """Each tab is <base_dir>/<sheet_name>.csv (UTF-8, optional BOM)."""

    base_dir: Path

    def _path(self, sheet_name: str) -> Path:
        return self.base_dir / f"{sheet_name}.csv"

    def _load(self, sheet_name: str) -> list[list[str]]:
        path = self._path(sheet_name)
        if not path.exists():
            return []
        with path.open(newline="", encoding="utf-8-sig") as fh:
            return [list(r) for r in csv.reader(fh)]

    def _save(self, sheet_name: str, rows: list[list[str]]) -> None:
        path = self._path(sheet_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as fh:
            csv.writer(fh).writerows(rows)

    def read_rows(self, sheet_name: str, cell_range: str) -> list[list[str]]:
        return slice_range(self._load(sheet_name), cell_range)

    def write_row(self, sheet_name: str, row_number: int, values: list[Any]) -> None:
        rows = self._load(sheet_name)
        cells = _cell_values(values)
        while len(rows) < row_number:
            rows.append([])
        existing = rows[row_number - 1]
        merged = cells + existing[len(cells):]
        rows[row_number - 1] = merged
        self._save(sheet_name, rows)

    def append_row(self, sheet_name: str, values: list[Any]) -> None:
        rows = self._load(sheet_name)
        cells = _cell_values(values)
        rows.append(cells)
        self._save(sheet_name, rows)


# ---------------------------------------------------------------------------
# Published CSV export
# ---------------------------------------------------------------------------

@dataclass
class PublishedCsvSheetSource:
    """Read-only access to a spreadsheet shared as 'anyone with the link'."""

    spreadsheet_id: str
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def read_rows(self, sheet_name: str, cell_range: str) -> list[list[str]]:
        url = PUBLISHED_CSV_URL.format(spreadsheet_id=self.spreadsheet_id)
        resp = self.session.get(
            url,
            params={"tqx": "out:csv", "sheet": sheet_name},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        log.info("fetched %s (%d bytes)", sheet_name, len(resp.content))
        text = resp.content.decode("utf-8-sig")
        return slice_range([list(r) for r in csv.reader(io.StringIO(text))], cell_range)

    def write_row(self, sheet_name: str, row_number: int, values: list[Any]) -> None:
        raise ReadOnlySourceError("published CSV exports cannot be written")

    def append_row(self, sheet_name: str, values: list[Any]) -> None:
        raise ReadOnlySourceError("published CSV exports cannot be written")
