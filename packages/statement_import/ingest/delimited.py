"""Header-mapped extraction for delimited and spreadsheet exports.

Input is already split into cells (by :mod:`csv` or openpyxl); this module
maps the header row onto :class:`~statement_import.models.CanonicalField`,
types each body row, keeps completed rows only and partitions them into
per-product streams (a current account and its savings pot share one export).
A file without a status or product column yields no streams.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal

from ..errors import StatementParseError
from ..logging_setup import get_logger
from ..models import (
    CanonicalField,
    DelimitedExtraction,
    HeaderMapping,
    SheetRow,
    SheetStream,
    StreamKind,
)
from .text import (
    fix_corrupted_encoding,
    normalize_header_text,
    parse_sheet_datetime,
    parse_sheet_number,
    strip_accents,
)

logger = get_logger(__name__)

MIN_MAPPED_FIELDS = 3

# Keys are already in ``normalize_header_text`` form (checked at import).
HEADER_ALIASES: Mapping[str, CanonicalField] = {
    "tipo": CanonicalField.TYPE,
    "type": CanonicalField.TYPE,
    "producto": CanonicalField.PRODUCT,
    "product": CanonicalField.PRODUCT,
    "deposito": CanonicalField.PRODUCT,
    "fecha de inicio": CanonicalField.START_DATE,
    "started date": CanonicalField.START_DATE,
    "fecha de finalizacion": CanonicalField.END_DATE,
    "completed date": CanonicalField.END_DATE,
    "descripcion": CanonicalField.DESCRIPTION,
    "description": CanonicalField.DESCRIPTION,
    "importe": CanonicalField.AMOUNT,
    "amount": CanonicalField.AMOUNT,
    "comision": CanonicalField.FEE,
    "fee": CanonicalField.FEE,
    "divisa": CanonicalField.CURRENCY,
    "currency": CanonicalField.CURRENCY,
    "state": CanonicalField.STATUS,
    "estado": CanonicalField.STATUS,
    "status": CanonicalField.STATUS,
    "saldo": CanonicalField.BALANCE,
    "balance": CanonicalField.BALANCE,
}

COMPLETED_STATUSES = frozenset({"completed", "completado", "abgeschlossen", "completato", "concluido"})
PRIMARY_PRODUCTS = frozenset({"actual", "current"})
SAVINGS_PRODUCTS = frozenset({"deposito", "deposit", "savings"})


def _check_aliases() -> None:
    bad = [k for k in HEADER_ALIASES if normalize_header_text(k) != k]
    if bad:
        raise ValueError(f"HEADER_ALIASES keys must be normalized: {bad}")


_check_aliases()


def map_headers(header_row: Sequence[object]) -> HeaderMapping:
    """Map column indexes to canonical fields; the first column wins on repeats.

    Raises ``StatementParseError("unmapped_columns")`` when fewer than
    ``MIN_MAPPED_FIELDS`` distinct fields resolve.
    """

    mapping: HeaderMapping = {}
    seen: set[CanonicalField] = set()
    for idx, cell in enumerate(header_row):
        key = normalize_header_text(fix_corrupted_encoding(str(cell or "")))
        canonical = HEADER_ALIASES.get(key)
        if canonical is None or canonical in seen:
            continue
        mapping[idx] = canonical
        seen.add(canonical)

    if len(seen) < MIN_MAPPED_FIELDS:
        raise StatementParseError(
            "unmapped_columns",
            ", ".join(str(c) for c in header_row if str(c or "").strip()) or None,
        )
    return mapping


def _product_key(product: str) -> str:
    return strip_accents(product).casefold().strip()


def _cell(row: Sequence[object], idx: int) -> object:
    value = row[idx] if idx < len(row) else None
    if isinstance(value, str):
        return fix_corrupted_encoding(value)
    return value


def _text(value: object) -> str:
    # String cells were already repaired by ``_cell``.
    return "" if value is None else str(value)


def _is_blank(row: Sequence[object]) -> bool:
    return all(v is None or (isinstance(v, str) and not v.strip()) for v in row)


class DelimitedTableExtractor:
    """Turn a header row plus body rows into typed, partitioned ``SheetRow``s.

    Usage
    -----
    result = DelimitedTableExtractor().extract(header_row, body_rows)
    for stream in result.streams:
        ...
    """

    def extract(
        self, header_row: Sequence[object], body_rows: Sequence[Sequence[object]]
    ) -> DelimitedExtraction:
        mapping = map_headers(header_row)
        by_field = {f: i for i, f in mapping.items()}
        has_status = CanonicalField.STATUS in by_field
        has_product = CanonicalField.PRODUCT in by_field
        # Without these columns no row can be confirmed completed or assigned
        # to an account, so nothing is imported.
        if not has_status:
            logger.warning("no status column; no row can be confirmed completed")
        if not has_product:
            logger.warning("no product column; rows cannot be assigned to an account")

        kept: list[SheetRow] = []
        dropped = 0
        excluded = 0
        for raw in body_rows:
            if _is_blank(raw):
                continue
            row = self._type_row(raw, by_field)
            if row is None:
                dropped += 1
                continue
            if not has_status or row.status.casefold() not in COMPLETED_STATUSES:
                excluded += 1
                continue
            kept.append(row)

        # Stable: rows sharing a timestamp keep file order.
        kept.sort(key=lambda r: r.started_at)

        streams, unknown = self._partition(kept, has_product=has_product)
        excluded += unknown

        if dropped:
            logger.info("dropped %d unparseable spreadsheet rows", dropped)
        if excluded:
            logger.debug("excluded %d rows (status/product filter)", excluded)

        return DelimitedExtraction(
            mapping=mapping,
            rows=kept,
            streams=streams,
            dropped_rows=dropped,
            excluded_rows=excluded,
        )

    @staticmethod
    def _type_row(
        raw: Sequence[object], by_field: Mapping[CanonicalField, int]
    ) -> SheetRow | None:
        def get(field: CanonicalField) -> object:
            idx = by_field.get(field)
            return None if idx is None else _cell(raw, idx)

        started_at = parse_sheet_datetime(get(CanonicalField.START_DATE))
        amount = parse_sheet_number(get(CanonicalField.AMOUNT))
        if started_at is None or amount is None:
            return None

        completed_at: datetime | None = parse_sheet_datetime(get(CanonicalField.END_DATE))
        fee = parse_sheet_number(get(CanonicalField.FEE))
        return SheetRow(
            started_at=started_at,
            amount=amount,
            type=_text(get(CanonicalField.TYPE)),
            product=_text(get(CanonicalField.PRODUCT)),
            completed_at=completed_at,
            description=_text(get(CanonicalField.DESCRIPTION)),
            fee=fee if fee is not None else Decimal("0"),
            currency=_text(get(CanonicalField.CURRENCY)),
            status=_text(get(CanonicalField.STATUS)),
            balance=parse_sheet_number(get(CanonicalField.BALANCE)),
        )

    @staticmethod
    def _partition(
        rows: list[SheetRow], *, has_product: bool
    ) -> tuple[list[SheetStream], int]:
        if not has_product:
            return [], len(rows)

        primary: list[SheetRow] = []
        savings: list[SheetRow] = []
        unknown: dict[str, int] = {}
        for row in rows:
            key = _product_key(row.product)
            if key in PRIMARY_PRODUCTS:
                primary.append(row)
            elif key in SAVINGS_PRODUCTS:
                savings.append(row)
            else:
                unknown[row.product] = unknown.get(row.product, 0) + 1

        for product, count in unknown.items():
            logger.warning("skipping %d rows of unsupported product %r", count, product)

        streams: list[SheetStream] = []
        if primary:
            streams.append(_stream(primary[0].product, StreamKind.PRIMARY, primary))
        if savings:
            streams.append(_stream(savings[0].product, StreamKind.SAVINGS, savings))
        return streams, sum(unknown.values())


def _stream(product: str, kind: StreamKind, rows: list[SheetRow]) -> SheetStream:
    # ``rows`` is ascending by start date, so the last row is the most recent.
    return SheetStream(product=product, kind=kind, rows=rows, trailing_balance=rows[-1].balance)


__all__ = [
    "COMPLETED_STATUSES",
    "HEADER_ALIASES",
    "MIN_MAPPED_FIELDS",
    "PRIMARY_PRODUCTS",
    "SAVINGS_PRODUCTS",
    "DelimitedTableExtractor",
    "map_headers",
]
