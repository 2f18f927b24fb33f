"""Geometric table extraction from positioned PDF text.

A broker statement's cash table is not a real table in the PDF: it is a cloud
of glyph runs with (x, y) origins. This module rebuilds it:

1. group fragments into visual lines (``LINE_TOLERANCE``);
2. find the header line (date/description/balance tokens in any supported
   locale) and derive column x-intervals from the header positions;
3. split the body into logical rows on vertical gaps larger than
   ``ROW_GAP_FACTOR`` times the mean fragment height, so wrapped descriptions
   stay in one row;
4. bucket each row's fragments into columns; the rightmost token right of the
   description column is the running balance, the rest split into
   incoming/outgoing by x.

Extraction is gated to the cash-transactions section by start/end marker
phrases. Column boundaries and the gate are carried from page to page in a
:class:`LayoutExtractorState`, so one extractor instance must see the pages
of a document in order. Independent documents use independent instances.

Coordinates are PDF user space: origin at the bottom-left, ``y`` grows up the
page, so "below the header" means a smaller ``y``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from ..errors import StatementParseError
from ..logging_setup import get_logger
from ..models import (
    CashRow,
    ColumnBoundaries,
    ColumnSpan,
    LayoutExtraction,
    Page,
    PositionedTextFragment,
    ProgressCallback,
    StatusCallback,
)
from .text import collapse_whitespace, parse_european_number

logger = get_logger(__name__)

# Fragments whose y differ by at most this much sit on the same visual line.
LINE_TOLERANCE = 3.0
# A vertical gap above this multiple of the mean fragment height starts a new row.
ROW_GAP_FACTOR = 1.5
# Mean height used when every body fragment reports a zero height.
DEFAULT_FRAGMENT_HEIGHT = 10.0
# Column intervals start this far left of their header token.
COLUMN_PADDING = 5.0
# Body fragments must sit at least this far below the header baseline.
HEADER_BODY_MARGIN = 5.0

DATE_TOKENS = ("FECHA", "DATUM", "DATE", "DATA")
TYPE_TOKENS = ("TIPO", "TYP", "TYPE")
DESCRIPTION_TOKENS = ("DESCRIPCIÓN", "DESCRIPCION", "BESCHREIBUNG", "DESCRIPTION", "DESCRIZIONE")
BALANCE_TOKENS = ("BALANCE", "SALDO")
INCOMING_PREFIXES = ("ENTRADA", "ZAHLUNGSEINGANG", "MONEY IN", "IN ENTRATA")
OUTGOING_PREFIXES = ("SALIDA", "ZAHLUNGSAUSGANG", "MONEY OUT", "IN USCITA")
# A single header spanning both money columns.
PAYMENTS_TOKENS = frozenset({"ZAHLUNGEN", "PAGOS", "PAYMENTS", "PAGAMENTI"})

SECTION_START_MARKERS = (
    "UMSATZÜBERSICHT",
    "TRANSAZIONI SUL CONTO",
    "ACCOUNT TRANSACTIONS",
    "TRANSACCIONES DE CUENTA",
    "TRANSACCIONES",
    "MOVIMIENTOS",
)
SECTION_END_MARKERS = (
    "BARMITTELÜBERSICHT",
    "CASH SUMMARY",
    "BALANCE OVERVIEW",
    "RESUMEN DE EFECTIVO",
    "RESUMEN DE SALDO",
    "SALDO DISPONIBLE",
)
BALANCE_OVERVIEW_MARKERS = ("RESUMEN DEL BALANCE", "BALANCE OVERVIEW", "KONTOÜBERSICHT")

_OVERVIEW_AMOUNT_RE = re.compile(r"(\d{1,3}(?:\.\d{3})*,\d{2})\s*€")


def _upper(text: str) -> str:
    return text.strip().upper()


def _contains_any(text: str, needles: Iterable[str]) -> bool:
    return any(n in text for n in needles)


# ---------------------------------------------------------------------------
# Line grouping and header detection
# ---------------------------------------------------------------------------


def group_lines(
    fragments: Iterable[PositionedTextFragment], tolerance: float = LINE_TOLERANCE
) -> list[list[PositionedTextFragment]]:
    """Group fragments into visual lines, top of the page first.

    Fragments are sorted by descending ``y`` then ascending ``x``; a fragment
    joins the current line when its ``y`` is within ``tolerance`` (inclusive)
    of the previous fragment's. Each line is returned left to right.
    """

    ordered = sorted(fragments, key=lambda f: (-f.y, f.x))
    if not ordered:
        return []
    lines: list[list[PositionedTextFragment]] = []
    current = [ordered[0]]
    for prev, frag in zip(ordered, ordered[1:], strict=False):
        if abs(frag.y - prev.y) <= tolerance:
            current.append(frag)
        else:
            lines.append(sorted(current, key=lambda f: f.x))
            current = [frag]
    lines.append(sorted(current, key=lambda f: f.x))
    return lines


@dataclass(frozen=True, slots=True)
class HeaderLine:
    date: PositionedTextFragment
    description: PositionedTextFragment
    balance: PositionedTextFragment
    type: PositionedTextFragment | None = None
    incoming: PositionedTextFragment | None = None
    outgoing: PositionedTextFragment | None = None
    payments: PositionedTextFragment | None = None


def _first(
    line: Sequence[PositionedTextFragment], match
) -> PositionedTextFragment | None:
    return next((f for f in line if match(_upper(f.text))), None)


def _header_from_line(line: Sequence[PositionedTextFragment]) -> HeaderLine | None:
    date = _first(line, lambda t: _contains_any(t, DATE_TOKENS))
    description = _first(line, lambda t: _contains_any(t, DESCRIPTION_TOKENS))
    balance = _first(line, lambda t: _contains_any(t, BALANCE_TOKENS))
    if date is None or description is None or balance is None:
        return None
    if date is description or date is balance or description is balance:
        return None

    typ = _first(line, lambda t: _contains_any(t, TYPE_TOKENS))
    if typ is date or typ is description or typ is balance:
        typ = None
    incoming = _first(line, lambda t: t.startswith(INCOMING_PREFIXES))
    outgoing = _first(line, lambda t: t.startswith(OUTGOING_PREFIXES))
    payments = _first(line, lambda t: t in PAYMENTS_TOKENS)

    if payments is None and (incoming is None or outgoing is None):
        # Unrecognized money headers: take the two leftmost unclaimed tokens
        # between the description and balance headers.
        claimed = (date, typ, description, balance)
        remaining = sorted(
            (
                f
                for f in line
                if all(f is not c for c in claimed) and description.x < f.x < balance.x
            ),
            key=lambda f: f.x,
        )
        if len(remaining) < 2:
            return None
        incoming, outgoing = remaining[0], remaining[1]

    return HeaderLine(
        date=date,
        description=description,
        balance=balance,
        type=typ,
        incoming=incoming,
        outgoing=outgoing,
        payments=payments,
    )


def find_header(fragments: Iterable[PositionedTextFragment]) -> HeaderLine | None:
    """Return the first line carrying date, description and balance headers."""

    for line in group_lines(fragments):
        line_text = " ".join(_upper(f.text) for f in line)
        if not (
            _contains_any(line_text, DATE_TOKENS)
            and _contains_any(line_text, DESCRIPTION_TOKENS)
            and _contains_any(line_text, BALANCE_TOKENS)
        ):
            continue
        header = _header_from_line(line)
        if header is not None:
            return header
    return None


def compute_boundaries(header: HeaderLine) -> ColumnBoundaries:
    pad = COLUMN_PADDING
    if header.payments is not None:
        midpoint = header.payments.x + header.payments.width / 2
        money_start = header.payments.x - pad
        incoming_end = midpoint
    else:
        assert header.incoming is not None and header.outgoing is not None
        money_start = header.incoming.x - pad
        incoming_end = header.outgoing.x - pad

    desc_start = header.description.x - pad
    if header.type is not None:
        type_span = ColumnSpan(header.type.x - pad, desc_start)
    else:
        type_span = ColumnSpan(desc_start, desc_start)
    balance_start = header.balance.x - pad

    return ColumnBoundaries(
        date=ColumnSpan(float("-inf"), type_span.start),
        type=type_span,
        description=ColumnSpan(desc_start, money_start),
        incoming=ColumnSpan(money_start, incoming_end),
        outgoing=ColumnSpan(incoming_end, balance_start),
        balance=ColumnSpan(balance_start, float("inf")),
        header_y=header.date.y,
    )


# ---------------------------------------------------------------------------
# Row extraction
# ---------------------------------------------------------------------------


def split_rows(fragments: Sequence[PositionedTextFragment]) -> list[list[PositionedTextFragment]]:
    """Split body fragments into logical rows on large vertical gaps."""

    ordered = sorted((f for f in fragments if f.text.strip()), key=lambda f: (-f.y, f.x))
    if not ordered:
        return []
    mean_height = sum(f.height for f in ordered) / len(ordered)
    threshold = (mean_height or DEFAULT_FRAGMENT_HEIGHT) * ROW_GAP_FACTOR

    rows: list[list[PositionedTextFragment]] = []
    current = [ordered[0]]
    for prev, frag in zip(ordered, ordered[1:], strict=False):
        if prev.y - frag.y > threshold:
            rows.append(current)
            current = []
        current.append(frag)
    rows.append(current)
    return rows


def build_row(fragments: Sequence[PositionedTextFragment], bounds: ColumnBoundaries) -> CashRow:
    cells: dict[str, list[str]] = {
        "date": [],
        "type": [],
        "description": [],
        "incoming": [],
        "outgoing": [],
        "balance": [],
    }
    financial: list[PositionedTextFragment] = []
    for frag in fragments:
        if frag.x < bounds.date.end:
            cells["date"].append(frag.text)
        elif frag.x < bounds.type.end:
            cells["type"].append(frag.text)
        elif frag.x < bounds.description.end:
            cells["description"].append(frag.text)
        else:
            financial.append(frag)

    financial.sort(key=lambda f: f.x)
    if financial:
        cells["balance"].append(financial.pop().text)
    for frag in financial:
        if frag.x in bounds.incoming:
            cells["incoming"].append(frag.text)
        elif frag.x in bounds.outgoing:
            cells["outgoing"].append(frag.text)

    return CashRow(**{k: collapse_whitespace(" ".join(v)) for k, v in cells.items()})


def extract_rows(
    fragments: Sequence[PositionedTextFragment],
    bounds: ColumnBoundaries,
    *,
    header_on_page: bool,
) -> list[CashRow]:
    """Rows of one page's gated fragments.

    On the page that carries the header only fragments below it count; on a
    continuation page the whole gated body does.
    """

    if header_on_page:
        limit = bounds.header_y - HEADER_BODY_MARGIN
        body = [f for f in fragments if f.y < limit]
    else:
        body = list(fragments)
    rows = (build_row(r, bounds) for r in split_rows(body))
    return [r for r in rows if not r.is_empty()]


def overview_balance(fragments: Iterable[PositionedTextFragment]) -> Decimal | None:
    """Last euro amount on a balance-overview page, if this is one."""

    page_text = " ".join(f.text for f in fragments)
    if not _contains_any(page_text.upper(), BALANCE_OVERVIEW_MARKERS):
        return None
    matches = _OVERVIEW_AMOUNT_RE.findall(page_text)
    if not matches:
        return None
    return parse_european_number(matches[-1])


# ---------------------------------------------------------------------------
# Stateful page loop
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class LayoutExtractorState:
    boundaries: ColumnBoundaries | None = None
    inside_section: bool = False
    pages_seen: int = 0
    pages_with_header: int = 0
    rows: list[CashRow] = field(default_factory=list)
    # Balance from the most recent page that looked like a balance overview.
    overview_balance: Decimal | None = None


def _find_marker(
    fragments: Iterable[PositionedTextFragment], markers: Sequence[str]
) -> PositionedTextFragment | None:
    return next((f for f in fragments if _contains_any(_upper(f.text), markers)), None)


class LayoutTableExtractor:
    """Extract the cash table from a statement, one page at a time.

    Usage
    -----
    extractor = LayoutTableExtractor()
    for page in pages:
        extractor.feed_page(page)
    result = extractor.finish()  # -> LayoutExtraction
    """

    def __init__(self) -> None:
        self.state = LayoutExtractorState()

    def feed_page(self, page: Page) -> list[CashRow]:
        state = self.state
        state.pages_seen += 1
        page_no = state.pages_seen

        balance = overview_balance(page.fragments)
        if balance is not None:
            state.overview_balance = balance

        fragments = [f for f in page.fragments if f.y > page.footer_band]
        start = _find_marker(fragments, SECTION_START_MARKERS)
        end = _find_marker(fragments, SECTION_END_MARKERS)
        should_process = state.inside_section or start is not None

        page_rows: list[CashRow] = []
        if should_process:
            gated = fragments
            if start is not None:
                gated = [f for f in gated if f.y <= start.y]
            if end is not None:
                gated = [f for f in gated if f.y > end.y]

            header = find_header(gated)
            if header is not None:
                state.boundaries = compute_boundaries(header)
                state.pages_with_header += 1
            else:
                logger.debug("page %d: no table header", page_no)

            if state.boundaries is not None:
                page_rows = extract_rows(
                    gated, state.boundaries, header_on_page=header is not None
                )
                state.rows.extend(page_rows)
        else:
            logger.debug("page %d: outside the cash section", page_no)

        if end is not None:
            state.inside_section = False
        elif should_process:
            state.inside_section = True
        return page_rows

    def finish(self, *, require_header: bool = True) -> LayoutExtraction:
        """Close the document and resolve its trailing balance.

        Raises ``StatementParseError("no_header")`` when no page carried a
        table header. A header with zero rows is a valid, empty result.
        """

        state = self.state
        if require_header and state.pages_with_header == 0:
            raise StatementParseError("no_header")

        final_balance = state.overview_balance
        if final_balance is None and state.rows and state.rows[-1].balance:
            final_balance = parse_european_number(state.rows[-1].balance)
        return LayoutExtraction(
            rows=list(state.rows),
            final_balance=final_balance,
            pages_with_header=state.pages_with_header,
        )

    def extract(
        self,
        pages: Sequence[Page],
        *,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> LayoutExtraction:
        total = len(pages)
        for i, page in enumerate(pages, start=1):
            if on_progress is not None:
                on_progress(i, total)
            if on_status is not None:
                on_status(f"Processing page {i} of {total}")
            self.feed_page(page)
        result = self.finish()
        if on_status is not None:
            on_status(f"Found {len(result.rows)} transactions")
        return result


__all__ = [
    "BALANCE_OVERVIEW_MARKERS",
    "COLUMN_PADDING",
    "DEFAULT_FRAGMENT_HEIGHT",
    "HEADER_BODY_MARGIN",
    "LINE_TOLERANCE",
    "ROW_GAP_FACTOR",
    "SECTION_END_MARKERS",
    "SECTION_START_MARKERS",
    "HeaderLine",
    "LayoutExtractorState",
    "LayoutTableExtractor",
    "build_row",
    "compute_boundaries",
    "extract_rows",
    "find_header",
    "group_lines",
    "overview_balance",
    "split_rows",
]
