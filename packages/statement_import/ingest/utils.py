"""Ingest utilities shared by CLI commands and workflows.

Format detection prefers the file extension and falls back to magic bytes
for extension-less uploads.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

from ..errors import StatementParseError

_BY_EXTENSION = {
    ".pdf": "pdf",
    ".csv": "csv",
    ".xlsx": "xlsx",
}


def detect_format(filename: str | PathLike[str] | None, data: bytes) -> str:
    """Return ``"pdf"``, ``"csv"`` or ``"xlsx"`` for a statement file.

    Legacy binary ``.xls`` workbooks are rejected with
    ``StatementParseError("unsupported_format")``.
    """

    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix in _BY_EXTENSION:
        return _BY_EXTENSION[suffix]
    if suffix == ".xls":
        raise StatementParseError("unsupported_format", "legacy .xls workbooks are not supported")

    if data.startswith(b"%PDF"):
        return "pdf"
    if data.startswith(b"PK\x03\x04"):
        return "xlsx"
    if suffix in {"", ".txt"}:
        return "csv"
    raise StatementParseError("unsupported_format", suffix)


def read_statement_file(path: str | PathLike[str]) -> tuple[bytes, str]:
    """Read a statement from disk; returns ``(data, format)``."""

    p = Path(path)
    data = p.read_bytes()
    return data, detect_format(p.name, data)


__all__ = ["detect_format", "read_statement_file"]
