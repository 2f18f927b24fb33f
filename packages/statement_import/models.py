"""Data models for the statement import pipeline.

Parse-time structures (fragments, table rows, column boundaries) are frozen
``dataclass`` instances that live for a single parse call. Records that cross
the JSON boundary to the ledger or the UI (``ImportedTransaction``,
``PossibleDuplicate``, ``ImportResult``) are validated pydantic models.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from .config import DEFAULT_FOOTER_BAND

type ProgressCallback = Callable[[int, int], None]
"""``on_progress(current, total)``: page or chunk index, 1-based."""

type StatusCallback = Callable[[str], None]
"""``on_status(message)``: human-readable phase label."""


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


# ---------------------------------------------------------------------------
# PDF path: positioned text and the cash table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PositionedTextFragment:
    """A glyph run in PDF user space: origin bottom-left, ``y`` grows upward."""

    text: str
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True, slots=True)
class Page:
    """One page of fragments plus the height of its running-footer band.

    Fragments whose ``y`` is at or below ``footer_band`` are ignored by the
    table extractor.
    """

    fragments: tuple[PositionedTextFragment, ...]
    footer_band: float = DEFAULT_FOOTER_BAND


@dataclass(frozen=True, slots=True)
class ColumnSpan:
    start: float
    end: float

    def __contains__(self, x: object) -> bool:
        return isinstance(x, int | float) and self.start <= x < self.end


@dataclass(frozen=True, slots=True)
class ColumnBoundaries:
    """x-intervals of the cash table columns and the y of its header line.

    ``type`` collapses to an empty span when the statement has no type
    column (five-column layout).
    """

    date: ColumnSpan
    type: ColumnSpan
    description: ColumnSpan
    incoming: ColumnSpan
    outgoing: ColumnSpan
    balance: ColumnSpan
    header_y: float


@dataclass(frozen=True, slots=True)
class CashRow:
    """One logical row of the PDF cash table; raw cell text, whitespace-collapsed."""

    date: str = ""
    type: str = ""
    description: str = ""
    incoming: str = ""
    outgoing: str = ""
    balance: str = ""

    def is_empty(self) -> bool:
        return not any(
            (self.date, self.type, self.description, self.incoming, self.outgoing, self.balance)
        )


@dataclass(frozen=True, slots=True)
class LayoutExtraction:
    rows: list[CashRow]
    final_balance: Decimal | None
    pages_with_header: int = 0


# ---------------------------------------------------------------------------
# Spreadsheet path: header mapping and typed rows
# ---------------------------------------------------------------------------


class CanonicalField(StrEnum):
    TYPE = "type"
    PRODUCT = "product"
    START_DATE = "startDate"
    END_DATE = "endDate"
    DESCRIPTION = "description"
    AMOUNT = "amount"
    FEE = "fee"
    CURRENCY = "currency"
    STATUS = "status"
    BALANCE = "balance"


type HeaderMapping = dict[int, CanonicalField]
"""Spreadsheet column index -> canonical field."""


@dataclass(frozen=True, slots=True)
class SheetRow:
    """A typed spreadsheet row; ``amount`` keeps the export's sign."""

    started_at: datetime
    amount: Decimal
    type: str = ""
    product: str = ""
    completed_at: datetime | None = None
    description: str = ""
    fee: Decimal = Decimal("0")
    currency: str = ""
    status: str = ""
    balance: Decimal | None = None


class StreamKind(StrEnum):
    PRIMARY = "primary"
    SAVINGS = "savings"


@dataclass(frozen=True, slots=True)
class SheetStream:
    """Rows of one product, ascending by start date, with its trailing balance."""

    product: str
    kind: StreamKind
    rows: list[SheetRow]
    trailing_balance: Decimal | None


@dataclass(frozen=True, slots=True)
class DelimitedExtraction:
    mapping: HeaderMapping
    rows: list[SheetRow]
    streams: list[SheetStream]
    dropped_rows: int = 0
    # Completed-status and product filters; not parse failures.
    excluded_rows: int = 0


type TableRow = CashRow | SheetRow


# ---------------------------------------------------------------------------
# Canonical records (JSON boundary)
# ---------------------------------------------------------------------------

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def _check_iso_date(v: str) -> str:
    try:
        parsed = date.fromisoformat(v)
    except ValueError as exc:
        raise ValueError(f"date must be YYYY-MM-DD, got {v!r}") from exc
    if parsed.isoformat() != v:
        raise ValueError(f"date must be YYYY-MM-DD, got {v!r}")
    return v


class ImportedTransaction(BaseModel):
    """The canonical unit handed to the ledger.

    ``amount`` is strictly positive (direction lives in ``type``) and
    ``external_hash`` is the SHA-256 content address computed by
    :func:`statement_import.persistence.compute_hash`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    date: str
    amount: Decimal
    type: TransactionType
    description: str
    external_hash: str

    @field_validator("date")
    @classmethod
    def _valid_date(cls, v: str) -> str:
        return _check_iso_date(v)

    @field_validator("amount")
    @classmethod
    def _positive_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("amount must be > 0")
        return v

    @field_validator("description")
    @classmethod
    def _non_empty_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description must be non-empty")
        return v

    @field_validator("external_hash")
    @classmethod
    def _hex_digest(cls, v: str) -> str:
        if not _HEX64.match(v):
            raise ValueError("external_hash must be 64 lowercase hex characters")
        return v


class IncomingSide(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    date: str
    amount: Decimal
    description: str
    external_hash: str


class ExistingSide(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    date: str
    amount: Decimal
    description: str


class PossibleDuplicate(BaseModel):
    """A freshly inserted row and a pre-existing row that may be the same event.

    Transient: lives only for the UI session that triggered the import.
    """

    model_config = ConfigDict(frozen=True)

    incoming: IncomingSide
    existing: ExistingSide

    @property
    def key(self) -> tuple[int, int]:
        return (self.incoming.id, self.existing.id)


class ResolutionAction(StrEnum):
    UNDO = "undo"
    REMOVE_EXISTING = "remove_existing"
    KEEP_BOTH = "keep_both"


class ImportResult(BaseModel):
    imported: int
    skipped: int
    total: int
    new_balance: Decimal
    possible_duplicates: list[PossibleDuplicate] = []
    dropped_rows: int = 0
    account_id: str | None = None


@dataclass(slots=True)
class BulkResolutionReport:
    applied: list[PossibleDuplicate] = field(default_factory=list)
    skipped: list[PossibleDuplicate] = field(default_factory=list)
    failures: list[tuple[PossibleDuplicate, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


__all__ = [
    "BulkResolutionReport",
    "CanonicalField",
    "CashRow",
    "ColumnBoundaries",
    "ColumnSpan",
    "DelimitedExtraction",
    "ExistingSide",
    "HeaderMapping",
    "ImportResult",
    "ImportedTransaction",
    "IncomingSide",
    "LayoutExtraction",
    "Page",
    "PositionedTextFragment",
    "PossibleDuplicate",
    "ProgressCallback",
    "ResolutionAction",
    "SheetRow",
    "SheetStream",
    "StatusCallback",
    "StreamKind",
    "TableRow",
    "TransactionType",
]
