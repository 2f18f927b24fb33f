"""Adapter for Trade Republic account statements (PDF).

pdfplumber reports words in top-left-origin page space (``top``/``bottom``
grow downward). The layout extractor works in PDF user space, so each word is
flipped: ``y = page.height - bottom``. Words are extracted with
``keep_blank_chars`` so multi-word headers such as ``MONEY IN`` stay one
fragment.

Pages are streamed into a single :class:`LayoutTableExtractor`; progress is
reported per page.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from io import BytesIO
from typing import Any

import pdfplumber

from ...config import DEFAULT_FOOTER_BAND
from ...errors import StatementParseError
from ...models import LayoutExtraction, Page, PositionedTextFragment, ProgressCallback, StatusCallback
from ..layout import LayoutTableExtractor


def _page_from_words(
    words: Iterable[Mapping[str, Any]],
    page_height: float,
    *,
    footer_band: float = DEFAULT_FOOTER_BAND,
) -> Page:
    fragments = []
    for w in words:
        text = str(w.get("text") or "")
        if not text.strip():
            continue
        x0, x1 = float(w["x0"]), float(w["x1"])
        top, bottom = float(w["top"]), float(w["bottom"])
        fragments.append(
            PositionedTextFragment(
                text=text,
                x=x0,
                y=float(page_height) - bottom,
                width=x1 - x0,
                height=bottom - top,
            )
        )
    return Page(fragments=tuple(fragments), footer_band=footer_band)


def extract_trade_republic(
    data: bytes,
    *,
    footer_band: float = DEFAULT_FOOTER_BAND,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
) -> LayoutExtraction:
    """Run the layout extractor over every page of a statement PDF."""

    if on_status is not None:
        on_status("Reading PDF file...")
    try:
        pdf = pdfplumber.open(BytesIO(data))
    except Exception as exc:  # pdfminer raises several unrelated types
        raise StatementParseError("unsupported_format", f"not a readable PDF ({exc})") from exc

    extractor = LayoutTableExtractor()
    with pdf:
        total = len(pdf.pages)
        if total == 0:
            raise StatementParseError("empty_file")
        if on_status is not None:
            on_status("Parsing transactions...")
        for i, pdf_page in enumerate(pdf.pages, start=1):
            if on_progress is not None:
                on_progress(i, total)
            if on_status is not None:
                on_status(f"Processing page {i} of {total}")
            words = pdf_page.extract_words(keep_blank_chars=True)
            extractor.feed_page(_page_from_words(words, pdf_page.height, footer_band=footer_band))

    result = extractor.finish()
    if on_status is not None:
        on_status(f"Found {len(result.rows)} transactions")
    return result


__all__ = ["extract_trade_republic"]
