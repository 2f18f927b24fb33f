from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from statement_import.ingest.text import (
    capitalize_words,
    fix_corrupted_encoding,
    normalize_header_text,
    parse_date,
    parse_european_number,
    parse_sheet_datetime,
    parse_sheet_number,
    serial_to_datetime,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("01.03.2024", "2024-03-01"),
        ("1.3.2024", "2024-03-01"),
        ("15 mar. 2024", "2024-03-15"),
        ("15 März 2024", "2024-03-15"),
        ("02 January 2024", "2024-01-02"),
        ("2024-03-01", "2024-03-01"),
        ("2024-03-01 14:22:05", "2024-03-01"),
        ("01/03/2024", "2024-03-01"),
    ],
)
def test_parse_date_supported_formats(raw, expected):
    assert parse_date(raw) == expected


@pytest.mark.parametrize("raw", ["31.02.2024", "", None, "yesterday", "15 foo 2024"])
def test_parse_date_rejects_invalid(raw):
    assert parse_date(raw) is None


def test_parse_european_number():
    assert parse_european_number("1.234,56 €") == Decimal("1234.56")
    assert parse_european_number("4,50 €") == Decimal("4.50")
    assert parse_european_number("-12,00") == Decimal("-12.00")
    assert parse_european_number("") is None
    assert parse_european_number("n/a") is None


def test_parse_sheet_number_accepts_both_separators():
    assert parse_sheet_number("-4,50") == Decimal("-4.50")
    assert parse_sheet_number("1.234,56") == Decimal("1234.56")
    assert parse_sheet_number("1,234.56") == Decimal("1234.56")
    assert parse_sheet_number(-4.5) == Decimal("-4.5")
    assert parse_sheet_number(None) is None
    assert parse_sheet_number("abc") is None


def test_serial_dates_in_range_only():
    assert serial_to_datetime(45352) == datetime(2024, 3, 1)
    assert serial_to_datetime(45352.5) == datetime(2024, 3, 1, 12, 0)
    assert serial_to_datetime(39999) is None
    assert serial_to_datetime(60001) is None


def test_parse_sheet_datetime_variants():
    assert parse_sheet_datetime(datetime(2024, 3, 1, 9, 30)) == datetime(2024, 3, 1, 9, 30)
    assert parse_sheet_datetime(45352) == datetime(2024, 3, 1)
    assert parse_sheet_datetime("45352") == datetime(2024, 3, 1)
    assert parse_sheet_datetime("2024-03-01 10:00:00") == datetime(2024, 3, 1, 10, 0)
    assert parse_sheet_datetime("01.03.2024") == datetime(2024, 3, 1)
    # A small number is an amount, not a date.
    assert parse_sheet_datetime(12) is None
    assert parse_sheet_datetime("") is None


def test_parse_sheet_datetime_drops_utc_offsets():
    parsed = parse_sheet_datetime("2024-03-01T10:00:00+01:00")
    assert parsed == datetime(2024, 3, 1, 10, 0)
    assert parsed.tzinfo is None

    aware = datetime(2024, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert parse_sheet_datetime(aware) == datetime(2024, 3, 1, 23, 30)


def test_fix_corrupted_encoding_repairs_mojibake():
    broken = "Depósito".encode().decode("latin-1")
    assert broken != "Depósito"
    assert fix_corrupted_encoding(broken) == "Depósito"


def test_fix_corrupted_encoding_keeps_clean_and_unrepairable_text():
    assert fix_corrupted_encoding("Depósito") == "Depósito"
    # \xc2 followed by a non-continuation char cannot be decoded as UTF-8.
    assert fix_corrupted_encoding("Precio \xc2 fijo") == "Precio \xc2 fijo"
    assert fix_corrupted_encoding("  a   b ") == "a b"


def test_header_and_word_helpers():
    assert normalize_header_text("  Fecha de finalización ") == "fecha de finalizacion"
    assert normalize_header_text("Comisión (EUR)") == "comision eur"
    assert capitalize_words("COFFEE   shop") == "Coffee Shop"
