"""Adapter for Revolut account statement exports (CSV or XLSX).

Both formats carry the same columns, localized to the app language (``Type``
or ``Tipo``, ``Started Date`` or ``Fecha de inicio`` ...). The header is
resolved by :func:`statement_import.ingest.delimited.map_headers`.

- CSV is decoded as UTF-8 (a BOM is tolerated), falling back to Latin-1, and
  split by the stdlib :mod:`csv` module (quoted fields, embedded commas).
- XLSX is read with openpyxl: first worksheet, cached cell values. Dates may
  arrive as ``datetime`` cells or as serial numbers.

Progress is reported in three phases: read, process, done.
"""

from __future__ import annotations

import csv
import zipfile
from io import BytesIO, StringIO

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ...errors import StatementParseError
from ...models import DelimitedExtraction, ProgressCallback, StatusCallback
from ..delimited import DelimitedTableExtractor, map_headers


def decode_csv_bytes(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def read_csv_rows(data: bytes) -> list[list[str]]:
    with StringIO(decode_csv_bytes(data), newline="") as f:
        return [row for row in csv.reader(f) if any(cell.strip() for cell in row)]


def read_xlsx_rows(data: bytes) -> list[list[object]]:
    try:
        wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise StatementParseError("unsupported_format", f"not a readable workbook ({exc})") from exc
    try:
        ws = wb.worksheets[0]
        rows = [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()
    return [r for r in rows if any(v is not None and str(v).strip() for v in r)]


def extract_revolut(
    data: bytes,
    *,
    fmt: str,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
) -> DelimitedExtraction:
    """Parse a Revolut export; ``fmt`` is ``"csv"`` or ``"xlsx"``."""

    if on_status is not None:
        on_status("Reading Excel file..." if fmt == "xlsx" else "Reading CSV file...")
    if on_progress is not None:
        on_progress(1, 3)

    if fmt == "csv":
        rows: list[list[object]] = list(read_csv_rows(data))
    elif fmt == "xlsx":
        rows = read_xlsx_rows(data)
    else:
        raise StatementParseError("unsupported_format", fmt)

    if not rows:
        raise StatementParseError("empty_file")
    if len(rows) == 1:
        # An unrecognizable header is reported as such even without data rows.
        map_headers(rows[0])
        raise StatementParseError("empty_file")

    if on_status is not None:
        on_status("Processing transactions...")
    if on_progress is not None:
        on_progress(2, 3)

    result = DelimitedTableExtractor().extract(rows[0], rows[1:])

    if on_progress is not None:
        on_progress(3, 3)
    if on_status is not None:
        on_status(f"Found {len(result.rows)} transactions")
    return result


__all__ = [
    "decode_csv_bytes",
    "extract_revolut",
    "read_csv_rows",
    "read_xlsx_rows",
]
