from decimal import Decimal

import pytest

from statement_import.errors import StatementParseError
from statement_import.ingest.layout import (
    LINE_TOLERANCE,
    LayoutTableExtractor,
    build_row,
    compute_boundaries,
    find_header,
    group_lines,
    split_rows,
)
from statement_import.models import CashRow, Page, PositionedTextFragment


def frag(text: str, x: float, y: float, *, width: float = 40.0, height: float = 8.0):
    return PositionedTextFragment(text=text, x=x, y=y, width=width, height=height)


def header_line(y: float) -> list[PositionedTextFragment]:
    return [
        frag("FECHA", 50, y),
        frag("TIPO", 110, y),
        frag("DESCRIPCIÓN", 180, y),
        frag("ENTRADA DE DINERO", 380, y),
        frag("SALIDA DE DINERO", 450, y),
        frag("BALANCE", 520, y),
    ]


def cash_row(y, day, typ, desc, *, incoming=None, outgoing=None, balance=None):
    out = [frag(day, 50, y), frag(typ, 110, y), frag(desc, 180, y)]
    if incoming:
        out.append(frag(incoming, 385, y))
    if outgoing:
        out.append(frag(outgoing, 455, y))
    if balance:
        out.append(frag(balance, 520, y))
    return out


def page(*groups, footer_band: float = 120.0) -> Page:
    fragments = tuple(f for g in groups for f in g)
    return Page(fragments=fragments, footer_band=footer_band)


# ---- line grouping / row splitting boundaries ----------------------------


def test_line_tolerance_is_inclusive_at_exactly_three_units():
    assert LINE_TOLERANCE == 3.0
    same = group_lines([frag("a", 10, 100), frag("b", 60, 97)])
    assert [[f.text for f in line] for line in same] == [["a", "b"]]

    split = group_lines([frag("a", 10, 100), frag("b", 60, 96.99)])
    assert [[f.text for f in line] for line in split] == [["a"], ["b"]]


def test_lines_are_ordered_top_down_and_left_to_right():
    lines = group_lines([frag("z", 90, 50), frag("b", 60, 100), frag("a", 10, 101)])
    assert [[f.text for f in line] for line in lines] == [["a", "b"], ["z"]]


def test_row_gap_threshold_is_one_and_a_half_mean_heights():
    # Mean height 10 -> threshold 15; a gap of exactly 15 stays in the row.
    joined = split_rows([frag("a", 10, 100, height=10), frag("b", 10, 85, height=10)])
    assert len(joined) == 1
    apart = split_rows([frag("a", 10, 100, height=10), frag("b", 10, 84.5, height=10)])
    assert len(apart) == 2


def test_zero_height_fragments_fall_back_to_default_height():
    rows = split_rows([frag("a", 10, 100, height=0), frag("b", 10, 86, height=0)])
    assert len(rows) == 1


# ---- header detection and column boundaries --------------------------------


def test_header_with_explicit_money_columns():
    header = find_header(header_line(680))
    assert header is not None
    bounds = compute_boundaries(header)
    assert bounds.header_y == 680
    assert bounds.type.start == 105 and bounds.type.end == 175
    assert bounds.description.start == 175
    assert bounds.incoming.start == 375 and bounds.incoming.end == 445
    assert bounds.outgoing.end == 515
    assert 600 in bounds.balance


def test_build_row_buckets_money_tokens_by_column_span():
    bounds = compute_boundaries(find_header(header_line(680)))
    common = [frag("01 mar 2024", 50, 660), frag("Transfer", 110, 660), frag("Jane", 180, 660)]

    incoming = build_row([*common, frag("10,00 €", 380, 660), frag("110,00 €", 520, 660)], bounds)
    assert (incoming.incoming, incoming.outgoing, incoming.balance) == ("10,00 €", "", "110,00 €")

    outgoing = build_row([*common, frag("4,50 €", 450, 660), frag("105,50 €", 520, 660)], bounds)
    assert (outgoing.incoming, outgoing.outgoing, outgoing.balance) == ("", "4,50 €", "105,50 €")
    assert outgoing.description == "Jane"


def test_payments_header_splits_money_columns_at_its_midpoint():
    line = [
        frag("DATUM", 50, 680),
        frag("TYP", 110, 680),
        frag("BESCHREIBUNG", 180, 680),
        frag("ZAHLUNGEN", 400, 680, width=100),
        frag("SALDO", 520, 680),
    ]
    bounds = compute_boundaries(find_header(line))
    assert bounds.incoming.start == 395
    assert bounds.incoming.end == 450
    assert bounds.outgoing.start == 450


def test_five_column_header_without_type():
    line = [
        frag("DATE", 50, 680),
        frag("DESCRIPTION", 120, 680),
        frag("MONEY IN", 380, 680),
        frag("MONEY OUT", 450, 680),
        frag("BALANCE", 520, 680),
    ]
    bounds = compute_boundaries(find_header(line))
    assert bounds.type.start == bounds.type.end == 115
    assert bounds.date.end == 115


def test_line_without_balance_is_not_a_header():
    assert find_header([frag("FECHA", 50, 680), frag("DESCRIPCIÓN", 180, 680)]) is None


# ---- full extraction -------------------------------------------------------


def _statement_page() -> Page:
    return page(
        # Portfolio table above the cash section must be ignored.
        [frag("DATE", 50, 760), frag("DESCRIPTION", 180, 760), frag("BALANCE", 520, 760)],
        [frag("01.01.2024", 50, 740), frag("ETF", 180, 740), frag("9.999,00 €", 520, 740)],
        [frag("TRANSACCIONES DE CUENTA", 50, 700, width=200)],
        header_line(680),
        cash_row(
            660, "01 mar 2024", "Transacción con tarjeta", "Coffee Shop",
            outgoing="4,50 €", balance="95,50 €",
        ),
        cash_row(
            630, "02 mar 2024", "Transferencia", "Incoming transfer from Ana Lopez",
            incoming="100,00 €", balance="195,50 €",
        ),
        # Wrapped description continues 9 units below.
        cash_row(600, "03 mar 2024", "Transacción con tarjeta", "Bakery", outgoing="2,00 €", balance="193,50 €"),
        [frag("Madrid", 180, 591)],
        [frag("RESUMEN DE SALDO", 50, 560, width=200)],
        [frag("99.999,99 €", 520, 540)],
    )


def test_extracts_gated_rows_with_columns():
    result = LayoutTableExtractor().extract([_statement_page()])

    assert result.rows == [
        CashRow(
            date="01 mar 2024",
            type="Transacción con tarjeta",
            description="Coffee Shop",
            outgoing="4,50 €",
            balance="95,50 €",
        ),
        CashRow(
            date="02 mar 2024",
            type="Transferencia",
            description="Incoming transfer from Ana Lopez",
            incoming="100,00 €",
            balance="195,50 €",
        ),
        CashRow(
            date="03 mar 2024",
            type="Transacción con tarjeta",
            description="Bakery Madrid",
            outgoing="2,00 €",
            balance="193,50 €",
        ),
    ]
    # No overview page: falls back to the last row's balance.
    assert result.final_balance == Decimal("193.50")
    assert result.pages_with_header == 1


def test_footer_band_fragments_are_ignored():
    p = page(
        [frag("TRANSACCIONES", 50, 700)],
        header_line(680),
        cash_row(660, "01 mar 2024", "Tipo", "Coffee", outgoing="4,50 €", balance="95,50 €"),
        [frag("02 mar 2024", 50, 100), frag("Footer", 180, 100)],
    )
    rows = LayoutTableExtractor().extract([p]).rows
    assert [r.date for r in rows] == ["01 mar 2024"]


def test_section_and_boundaries_carry_over_to_continuation_pages():
    first = page(
        [frag("MOVIMIENTOS", 50, 700)],
        header_line(680),
        cash_row(660, "01 mar 2024", "Tipo", "Coffee", outgoing="4,50 €", balance="95,50 €"),
    )
    # No marker and no header: still inside the section, still same columns.
    second = page(
        cash_row(760, "04 mar 2024", "Tipo", "Market", outgoing="10,00 €", balance="85,50 €"),
    )
    third = page(
        cash_row(760, "05 mar 2024", "Tipo", "Salary", incoming="1.000,00 €", balance="1.085,50 €"),
        [frag("CASH SUMMARY", 50, 700)],
        cash_row(650, "06 mar 2024", "Tipo", "Portfolio", outgoing="1,00 €", balance="1,00 €"),
    )
    fourth = page(
        cash_row(760, "07 mar 2024", "Tipo", "Outside", outgoing="1,00 €", balance="1,00 €"),
    )

    extractor = LayoutTableExtractor()
    per_page = [len(extractor.feed_page(p)) for p in (first, second, third, fourth)]
    result = extractor.finish()

    assert per_page == [1, 1, 1, 0]
    assert [r.date for r in result.rows] == ["01 mar 2024", "04 mar 2024", "05 mar 2024"]
    assert result.rows[2].incoming == "1.000,00 €"
    assert result.final_balance == Decimal("1085.50")


def test_balance_overview_page_sets_final_balance():
    overview = page(
        [frag("RESUMEN DEL BALANCE", 50, 700, width=200)],
        [frag("Cuenta corriente", 50, 650), frag("1.234,56 €", 400, 650)],
    )
    result = LayoutTableExtractor().extract([_statement_page(), overview])
    assert result.final_balance == Decimal("1234.56")


def test_no_header_anywhere_is_a_parse_error():
    p = page([frag("MOVIMIENTOS", 50, 700)], [frag("Nothing here", 50, 650)])
    with pytest.raises(StatementParseError) as excinfo:
        LayoutTableExtractor().extract([p])
    assert excinfo.value.code == "no_header"


def test_header_without_rows_is_an_empty_result():
    p = page([frag("MOVIMIENTOS", 50, 700)], header_line(680))
    result = LayoutTableExtractor().extract([p])
    assert result.rows == []
    assert result.final_balance is None


def test_progress_and_status_callbacks():
    progress: list[tuple[int, int]] = []
    status: list[str] = []
    LayoutTableExtractor().extract(
        [_statement_page(), page([frag("blank", 50, 700)])],
        on_progress=lambda cur, total: progress.append((cur, total)),
        on_status=status.append,
    )
    assert progress == [(1, 2), (2, 2)]
    assert status[0] == "Processing page 1 of 2"
    assert status[-1] == "Found 3 transactions"


def test_independent_extractors_do_not_share_state():
    a, b = LayoutTableExtractor(), LayoutTableExtractor()
    a.feed_page(_statement_page())
    assert b.state.boundaries is None
    assert b.state.rows == []
