"""marina_sync.dates

Smart date parser for hand-edited spreadsheet cells.

A date cell may hold a typed date, a spreadsheet serial number, '03.02.2026',
'2026-02-03', '3 Şubat 2026', 'February 3 2026' or anything a person typed.
parse_smart_date() tries each encoding in a fixed order and never raises:
an unparseable cell yields ParsedDate(date=None, used_fallback=True) and the
caller treats the row as unscheduled.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from marina_sync.normalize import fold_locale_letters

EXCEL_EPOCH = date(1899, 12, 30)
MIN_SERIAL = 20000
MAX_SERIAL = 100000
MIN_YEAR = 1900
MAX_YEAR = 2200
TWO_DIGIT_YEAR_PIVOT = 70

_DMY_RE = re.compile(r"^(\d{1,2})[.\-/](\d{1,2})[.\-/](\d{2,4})$")
_YMD_RE = re.compile(r"^(\d{4})[.\-/](\d{1,2})[.\-/](\d{1,2})$")
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2}) ([a-z]+) (\d{2,4})$")
_MONTH_FIRST_RE = re.compile(r"^([a-z]+) (\d{1,2}) (\d{2,4})$")

MONTHS = {
    "ocak": 1, "january": 1,
    "subat": 2, "february": 2,
    "mart": 3, "march": 3,
    "nisan": 4, "april": 4,
    "mayis": 5, "may": 5,
    "haziran": 6, "june": 6,
    "temmuz": 7, "july": 7,
    "agustos": 8, "august": 8,
    "eylul": 9, "september": 9,
    "ekim": 10, "october": 10,
    "kasim": 11, "november": 11,
    "aralik": 12, "december": 12,
}

_NATIVE_FORMATS = (
    "%b %d, %Y",
    "%d %b %Y",
    "%Y-%m-%d %H:%M:%S",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%m/%d/%Y %H:%M:%S",
)

# Source tags
SOURCE_EMPTY = "empty"
SOURCE_DATE_OBJECT = "date_object"
SOURCE_EXCEL_SERIAL = "excel_serial"
SOURCE_DD_MM_YYYY = "dd_mm_yyyy"
SOURCE_YYYY_MM_DD = "yyyy_mm_dd"
SOURCE_TEXT_MONTH = "text_month"
SOURCE_NATIVE = "native"
SOURCE_INVALID = "invalid"


@dataclass(frozen=True)
class ParsedDate:
    date: date | None
    source: str
    raw: str
    used_fallback: bool = False

    @property
    def utc_noon(self) -> datetime | None:
        """The calendar date anchored at 12:00 UTC, or None."""
        if self.date is None:
            return None
        return datetime.combine(self.date, time(12, 0), tzinfo=timezone.utc)

    @property
    def iso(self) -> str | None:
        return self.date.isoformat() if self.date is not None else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _expand_year(year: int) -> int:
    if year >= 100:
        return year
    return 2000 + year if year < TWO_DIGIT_YEAR_PIVOT else 1900 + year


def build_date(year: int, month: int, day: int) -> date | None:
    """Return date(year, month, day) only for a real calendar day in range."""
    if not MIN_YEAR <= year <= MAX_YEAR:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _from_serial(serial: float) -> date | None:
    if not math.isfinite(serial) or not MIN_SERIAL <= serial <= MAX_SERIAL:
        return None
    return EXCEL_EPOCH + timedelta(days=math.floor(serial))


def _from_datetime(value: datetime) -> date | None:
    if value.tzinfo is not None:
        try:
            value = value.astimezone(timezone.utc)
        except OverflowError:
            return None
    return value.date()


def _normalize_text_token(value: str) -> str:
    v = fold_locale_letters(value).lower()
    v = re.sub(r"[^a-z0-9]+", " ", v)
    return v.strip()


def _parse_text_month(raw: str) -> date | None:
    token = _normalize_text_token(raw)
    m = _DAY_FIRST_RE.match(token)
    if m:
        day, month_name, year = m.groups()
    else:
        m = _MONTH_FIRST_RE.match(token)
        if not m:
            return None
        month_name, day, year = m.groups()
    month = MONTHS.get(month_name)
    if month is None:
        return None
    return build_date(_expand_year(int(year)), month, int(day))


def _parse_native(raw: str) -> date | None:
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in _NATIVE_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    d = _from_datetime(parsed)
    if d is None:
        return None
    return d if MIN_YEAR <= d.year <= MAX_YEAR else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_smart_date(value: Any) -> ParsedDate:
    """Normalize a sheet cell to a calendar date.

    Order: date/datetime value, spreadsheet serial, DD.MM.YYYY, YYYY-MM-DD,
    Turkish/English month name, native ISO/strptime parsing.
    """
    if value is None:
        return ParsedDate(None, SOURCE_EMPTY, "", True)

    if isinstance(value, datetime):
        d = _from_datetime(value)
        if d is None:
            return ParsedDate(None, SOURCE_INVALID, value.isoformat(), True)
        return ParsedDate(d, SOURCE_DATE_OBJECT, value.isoformat())
    if isinstance(value, date):
        return ParsedDate(value, SOURCE_DATE_OBJECT, value.isoformat())

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        d = _from_serial(float(value))
        if d is not None:
            return ParsedDate(d, SOURCE_EXCEL_SERIAL, str(value))
        return ParsedDate(None, SOURCE_INVALID, str(value), True)

    raw = str(value).strip()
    if not raw:
        return ParsedDate(None, SOURCE_EMPTY, "", True)

    if _NUMERIC_RE.match(raw):
        d = _from_serial(float(raw))
        if d is not None:
            return ParsedDate(d, SOURCE_EXCEL_SERIAL, raw)

    m = _DMY_RE.match(raw)
    if m:
        day, month, year = (int(g) for g in m.groups())
        d = build_date(_expand_year(year), month, day)
        if d is not None:
            return ParsedDate(d, SOURCE_DD_MM_YYYY, raw)

    m = _YMD_RE.match(raw)
    if m:
        year, month, day = (int(g) for g in m.groups())
        d = build_date(year, month, day)
        if d is not None:
            return ParsedDate(d, SOURCE_YYYY_MM_DD, raw)

    d = _parse_text_month(raw)
    if d is not None:
        return ParsedDate(d, SOURCE_TEXT_MONTH, raw)

    d = _parse_native(raw)
    if d is not None:
        return ParsedDate(d, SOURCE_NATIVE, raw)

    return ParsedDate(None, SOURCE_INVALID, raw, True)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a timestamp cell to an aware UTC datetime, or None.

    Naive values are taken as UTC.  Date-only cells map to midnight UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time(0, 0))
    else:
        raw = str(value).strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = parse_smart_date(raw)
            if parsed.date is None:
                return None
            dt = datetime.combine(parsed.date, time(0, 0))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        return None
