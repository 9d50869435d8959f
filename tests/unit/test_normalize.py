"""Unit tests for marina_sync.normalize."""

import pytest
from decimal import Decimal

from marina_sync.normalize import (
    trim,
    normalize_space,
    fold_locale_letters,
    normalize_header,
    column_letter_to_index,
    index_to_column_letter,
    normalize_location_text,
    compact_phone,
    slug_name,
    parse_numeric,
    content_hash_id,
)


# ---------------------------------------------------------------------------
# trim
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None


# ---------------------------------------------------------------------------
# normalize_space
# ---------------------------------------------------------------------------

class TestNormalizeSpace:
    def test_collapses_internal_spaces(self):
        assert normalize_space("Yalıkavak   Marina") == "Yalıkavak Marina"

    def test_collapses_tabs_and_newlines(self):
        assert normalize_space("a\t\tb\nc") == "a b c"

    def test_none(self):
        assert normalize_space(None) is None


# ---------------------------------------------------------------------------
# fold_locale_letters / normalize_header
# ---------------------------------------------------------------------------

class TestFoldLocaleLetters:
    def test_turkish_letters(self):
        assert fold_locale_letters("Şubat") == "Subat"
        assert fold_locale_letters("İPTAL") == "IPTAL"
        assert fold_locale_letters("ığüşöç") == "igusoc"

    def test_other_accents_stripped(self):
        assert fold_locale_letters("café") == "cafe"

    def test_case_preserved(self):
        assert fold_locale_letters("Güneş") == "Gunes"


class TestNormalizeHeader:
    def test_turkish_header(self):
        assert normalize_header("Tekne Adı") == "TEKNEADI"

    def test_spacing_and_punctuation_ignored(self):
        assert normalize_header(" Servis  Açıklaması ") == "SERVISACIKLAMASI"
        assert normalize_header("Tekne-Adı:") == "TEKNEADI"

    def test_none(self):
        assert normalize_header(None) == ""


# ---------------------------------------------------------------------------
# column letters
# ---------------------------------------------------------------------------

class TestColumnLetters:
    @pytest.mark.parametrize("letter,index", [("A", 0), ("J", 9), ("Z", 25), ("AA", 26), ("AZ", 51)])
    def test_letter_to_index(self, letter, index):
        assert column_letter_to_index(letter) == index
        assert index_to_column_letter(index) == letter

    def test_lowercase_accepted(self):
        assert column_letter_to_index("c") == 2

    @pytest.mark.parametrize("bad", ["", "1", "A1", "Ç"])
    def test_invalid_letter_raises(self, bad):
        with pytest.raises(ValueError):
            column_letter_to_index(bad)

    def test_negative_index_raises(self):
        with pytest.raises(ValueError):
            index_to_column_letter(-1)


# ---------------------------------------------------------------------------
# location / phone
# ---------------------------------------------------------------------------

class TestNormalizeLocationText:
    def test_drops_trailing_dash(self):
        assert normalize_location_text("Yalıkavak   Marina -") == "Yalıkavak Marina"

    def test_keeps_inner_dash(self):
        assert normalize_location_text("Bodrum - Turgutreis") == "Bodrum - Turgutreis"

    def test_none_is_empty_string(self):
        assert normalize_location_text(None) == ""


class TestCompactPhone:
    def test_collapses_whitespace(self):
        assert compact_phone(" 0532  123 45 67 ") == "0532 123 45 67"

    def test_blank(self):
        assert compact_phone("  ") is None


# ---------------------------------------------------------------------------
# slug_name
# ---------------------------------------------------------------------------

class TestSlugName:
    def test_basic(self):
        assert slug_name("Deniz Yıldızı II") == "deniz-yildizi-ii"

    def test_punctuation_collapsed(self):
        assert slug_name("  M/Y  Blue -- Star! ") == "m-y-blue-star"

    def test_only_punctuation(self):
        assert slug_name("---") is None

    def test_none(self):
        assert slug_name(None) is None


# ---------------------------------------------------------------------------
# parse_numeric
# ---------------------------------------------------------------------------

class TestParseNumeric:
    def test_integer(self):
        assert parse_numeric("42") == Decimal("42")

    def test_comma_decimal(self):
        assert parse_numeric("12,5") == Decimal("12.5")

    def test_dot_decimal(self):
        assert parse_numeric("12.5") == Decimal("12.5")

    def test_garbage(self):
        assert parse_numeric("about ten") is None

    def test_infinity_rejected(self):
        assert parse_numeric("Infinity") is None

    def test_blank(self):
        assert parse_numeric("") is None


# ---------------------------------------------------------------------------
# content_hash_id
# ---------------------------------------------------------------------------

class TestContentHashId:
    def test_prefix_and_length(self):
        value = content_hash_id("sheet-svc-", ["a", "b"])
        assert value.startswith("sheet-svc-")
        assert len(value) == len("sheet-svc-") + 16

    def test_deterministic(self):
        assert content_hash_id("p-", ["a", "b"]) == content_hash_id("p-", ["a", "b"])

    def test_order_matters(self):
        assert content_hash_id("p-", ["a", "b"]) != content_hash_id("p-", ["b", "a"])

    def test_none_hashes_like_empty(self):
        assert content_hash_id("p-", ["a", None]) == content_hash_id("p-", ["a", ""])
