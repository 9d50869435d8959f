"""Normalization functions for spreadsheet ingestion.

Text helpers accept str | None and return the appropriate type or None,
except where a sheet value must stay a (possibly empty) string.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

# Turkish letters that NFKD does not reduce to ASCII on its own.
_LOCALE_LETTERS = str.maketrans({
    "İ": "I", "ı": "i",
    "Ç": "C", "ç": "c",
    "Ğ": "G", "ğ": "g",
    "Ö": "O", "ö": "o",
    "Ş": "S", "ş": "s",
    "Ü": "U", "ü": "u",
})


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: fold_locale_letters
# ---------------------------------------------------------------------------

def fold_locale_letters(value: str) -> str:
    """Replace Turkish letters with ASCII and drop remaining combining marks.

    Case is preserved: 'Şubat' → 'Subat', 'İPTAL' → 'IPTAL'.
    """
    v = value.translate(_LOCALE_LETTERS)
    v = unicodedata.normalize("NFKD", v)
    return "".join(c for c in v if not unicodedata.combining(c))


# ---------------------------------------------------------------------------
# Rule 4: normalize_header
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str:
    """Uppercase alnum-only form used to compare header cells and aliases.

    'Tekne Adı' → 'TEKNEADI', ' Servis  Açıklaması ' → 'SERVISACIKLAMASI'.
    """
    if value is None:
        return ""
    v = fold_locale_letters(str(value)).upper()
    return re.sub(r"[^A-Z0-9]", "", v)


# ---------------------------------------------------------------------------
# Rule 5: column letters
# ---------------------------------------------------------------------------

def column_letter_to_index(letter: str) -> int:
    """'A' → 0, 'Z' → 25, 'AA' → 26.  Raises ValueError on bad input."""
    v = (letter or "").strip().upper()
    if not v or not v.isascii() or not v.isalpha():
        raise ValueError(f"invalid column letter: {letter!r}")
    index = 0
    for ch in v:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def index_to_column_letter(index: int) -> str:
    """0 → 'A', 25 → 'Z', 26 → 'AA'."""
    if index < 0:
        raise ValueError(f"invalid column index: {index}")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


# ---------------------------------------------------------------------------
# Rule 6: location / phone cleanup
# ---------------------------------------------------------------------------

def normalize_location_text(value: str | None) -> str:
    """Collapse whitespace and drop a dangling ' -' separator.

    'Yalıkavak   Marina -' → 'Yalıkavak Marina'.  Never returns None.
    """
    v = normalize_space(value)
    if v is None:
        return ""
    v = re.sub(r"\s+-$", "", v)
    return v.strip()


def compact_phone(value: str | None) -> str | None:
    """Collapse whitespace inside a phone number; empty → None.

    Numbers are otherwise kept as typed.
    """
    return normalize_space(value)


# ---------------------------------------------------------------------------
# Rule 7: slug_name
# ---------------------------------------------------------------------------

def slug_name(value: str | None) -> str | None:
    """Lowercase alnum with '-' separators.

    Used to derive parent vessel ids from free-text vessel names.
    """
    v = trim(value)
    if v is None:
        return None
    v = fold_locale_letters(v).lower()
    v = re.sub(r"[^a-z0-9]+", "-", v)
    v = v.strip("-")
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 8: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number, accepting a comma decimal separator."""
    v = trim(value)
    if v is None:
        return None
    v = v.replace(" ", "")
    if "," in v and "." not in v:
        v = v.replace(",", ".")
    try:
        number = Decimal(v)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


# ---------------------------------------------------------------------------
# Helper: content_hash_id
# ---------------------------------------------------------------------------

def content_hash_id(prefix: str, parts: Iterable[str | None], length: int = 16) -> str:
    """Return '<prefix><first `length` hex chars of sha1('|'.join(parts))>'.

    None parts hash as empty strings so a blank cell and a missing cell
    produce the same id.
    """
    key = "|".join("" if p is None else str(p) for p in parts)
    return prefix + hashlib.sha1(key.encode("utf-8")).hexdigest()[:length]
