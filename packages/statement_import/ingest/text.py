"""Locale-aware text, number and date helpers shared by the extractors.

All parsers here are total: malformed input yields ``None`` rather than an
exception, because callers drop the row and keep going.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

# Spreadsheet day zero (Lotus 1-2-3 leap-year bug included).
_SERIAL_EPOCH = datetime(1899, 12, 30)
# Serials in this window are 2009-07-06 .. 2064-04-09; anything else is not a date.
SERIAL_MIN = 40000
SERIAL_MAX = 60000

_WS_RE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Whitespace / casing
# ---------------------------------------------------------------------------


def collapse_whitespace(s: str | None) -> str:
    if not s:
        return ""
    return _WS_RE.sub(" ", s).strip()


def capitalize_words(s: str | None) -> str:
    """Title-case each whitespace-separated word (``"COFFEE shop"`` -> ``"Coffee Shop"``)."""

    text = collapse_whitespace(s)
    return " ".join(w[:1].upper() + w[1:].lower() for w in text.split(" ") if w)


def strip_accents(s: str) -> str:
    decomposed = unicodedata.normalize("NFD", s)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_header_text(s: str | None) -> str:
    """Lower-case, accent-strip, punctuation-strip and whitespace-collapse a header cell."""

    text = strip_accents((s or "").lower())
    text = re.sub(r"[^\w\s]", "", text)
    return collapse_whitespace(text)


# ---------------------------------------------------------------------------
# Encoding repair
# ---------------------------------------------------------------------------

# UTF-8 lead/continuation byte pairs as they look after a Latin-1 decode.
_MOJIBAKE_RE = re.compile(
    r"[\xc2-\xdf][\x80-\xbf]"
    r"|[\xe0-\xef][\x80-\xbf]{2}"
    r"|\xc3[\xb3\xa9\xa1\xad\xba\xb1\xbc\"]"
    r"|\xc2"
)


def fix_corrupted_encoding(s: str | None) -> str:
    """Undo UTF-8-read-as-Latin-1 damage (``"DepÃ³sito"`` -> ``"Depósito"``).

    The repair is only accepted when it decodes cleanly; otherwise the input is
    kept as-is. The result is whitespace-collapsed either way.
    """

    if not s:
        return ""
    text = s
    if _MOJIBAKE_RE.search(text):
        raw = bytes(ord(ch) & 0xFF for ch in text)
        repaired = raw.decode("utf-8", errors="replace")
        if "\ufffd" not in repaired:
            text = repaired
    return collapse_whitespace(text)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


def quantize_cents(d: Decimal) -> Decimal:
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_european_number(raw: str | None) -> Decimal | None:
    """Parse ``"1.234,56 €"`` style amounts; thousands dots, decimal comma."""

    if raw is None:
        return None
    s = raw.replace("€", "")
    s = re.sub(r"\s", "", s)
    s = s.replace(".", "").replace(",", ".")
    if not s or s in {"-", "+", "."}:
        return None
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def parse_sheet_number(raw: object) -> Decimal | None:
    """Parse a spreadsheet cell into a ``Decimal``.

    Numeric cells pass through. Text cells accept either decimal separator;
    when both ``.`` and ``,`` appear, the later one is the decimal separator.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int | float | Decimal):
        try:
            d = Decimal(str(raw))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None
    s = re.sub(r"[\s€$£]", "", str(raw))
    if not s:
        return None
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    else:
        s = s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

MONTHS: dict[str, int] = {
    # es
    "ene": 1, "enero": 1, "feb": 2, "febrero": 2, "mar": 3, "marzo": 3,
    "abr": 4, "abril": 4, "may": 5, "mayo": 5, "jun": 6, "junio": 6,
    "jul": 7, "julio": 7, "ago": 8, "agosto": 8, "sep": 9, "sept": 9,
    "septiembre": 9, "oct": 10, "octubre": 10, "nov": 11, "noviembre": 11,
    "dic": 12, "diciembre": 12,
    # de
    "jan": 1, "januar": 1, "februar": 2, "mär": 3, "märz": 3, "apr": 4,
    "mai": 5, "juni": 6, "juli": 7, "aug": 8, "august": 8, "okt": 10,
    "oktober": 10, "dez": 12, "dezember": 12,
    # en
    "january": 1, "february": 2, "march": 3, "april": 4, "june": 6,
    "july": 7, "september": 9, "october": 10, "dec": 12, "november": 11,
    "december": 12,
}  # fmt: skip

_DOTTED_RE = re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4})")
_MONTH_NAME_RE = re.compile(r"(?<!\d)(\d{1,2})\s+([^\W\d_]+)\.?\s+(\d{4})")
_ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_SLASHED_RE = re.compile(r"(?<!\d)(\d{1,2})/(\d{1,2})/(\d{4})")


def _iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_date(raw: str | None) -> str | None:
    """Return ``YYYY-MM-DD`` for any supported statement date, else ``None``.

    Supported: ``DD.MM.YYYY``, ``DD mon[.] YYYY`` (Spanish, German and English
    month names), ``YYYY-MM-DD`` with an optional time part, ``DD/MM/YYYY``.
    Impossible calendar dates (``31.02.2024``) return ``None``.
    """

    s = collapse_whitespace(raw)
    if not s:
        return None

    if m := _DOTTED_RE.search(s):
        return _iso(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = _MONTH_NAME_RE.search(s)
    if m and (month := MONTHS.get(m.group(2).lower())) is not None:
        return _iso(int(m.group(3)), month, int(m.group(1)))

    if m := _ISO_RE.search(s):
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    if m := _SLASHED_RE.search(s):
        return _iso(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    return None


def serial_to_datetime(serial: float | int | Decimal) -> datetime | None:
    """Convert a spreadsheet serial day number to a naive ``datetime``.

    Only values in ``[SERIAL_MIN, SERIAL_MAX]`` are treated as dates.
    """

    value = float(serial)
    if not (SERIAL_MIN <= value <= SERIAL_MAX):
        return None
    return _SERIAL_EPOCH + timedelta(days=value)


def parse_sheet_datetime(raw: object) -> datetime | None:
    """Parse a spreadsheet date cell: ``datetime``, serial number or text.

    The result is always naive: an ISO offset is dropped and the wall-clock
    time of the export is kept.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return raw.replace(tzinfo=None)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)
    if isinstance(raw, int | float | Decimal):
        return serial_to_datetime(raw)

    s = collapse_whitespace(str(raw))
    if not s:
        return None
    number = parse_sheet_number(s) if re.fullmatch(r"\d+(?:[.,]\d+)?", s) else None
    if number is not None:
        return serial_to_datetime(number)
    try:
        return datetime.fromisoformat(s).replace(tzinfo=None)
    except ValueError:
        pass
    iso = parse_date(s)
    return datetime.fromisoformat(iso) if iso else None


__all__ = [
    "CENT",
    "MONTHS",
    "SERIAL_MAX",
    "SERIAL_MIN",
    "capitalize_words",
    "collapse_whitespace",
    "fix_corrupted_encoding",
    "normalize_header_text",
    "parse_date",
    "parse_european_number",
    "parse_sheet_datetime",
    "parse_sheet_number",
    "quantize_cents",
    "serial_to_datetime",
    "strip_accents",
]
