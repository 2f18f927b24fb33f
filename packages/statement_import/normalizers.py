"""Extractor rows -> canonical :class:`ImportedTransaction` records.

Each provider contributes an ordered list of description rules; the first rule
returning a label wins. Direction comes from which money column is populated
(PDF) or from the amount's sign (spreadsheet export), never from free text.
Every row that survives normalization is hashed right away, so a normalized
transaction is always addressable.

Rows with an unparseable date or a zero/unparseable amount are dropped and
counted, not raised.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from .ingest.text import (
    capitalize_words,
    collapse_whitespace,
    parse_date,
    parse_european_number,
    quantize_cents,
)
from .logging_setup import get_logger
from .models import CashRow, ImportedTransaction, SheetRow, TableRow, TransactionType
from .persistence import compute_hash

logger = get_logger(__name__)

FALLBACK_DESCRIPTION = "Transaction"


@dataclass(frozen=True, slots=True)
class RowText:
    """The free-text parts of a row that description rules look at."""

    description: str
    type: str

    @property
    def combined(self) -> str:
        text = f"{self.type} {self.description}"
        text = re.sub(r"null$", "", text.strip())
        return collapse_whitespace(text)


type DescriptionRule = Callable[[RowText], str | None]


def clean_merchant_name(name: str) -> str:
    """Drop terminal/reference suffixes (``"AMAZON* 1A2B3C"``, ``"SHOP 123456"``)."""

    cleaned = collapse_whitespace(re.sub(r"null$", "", name.strip()))
    cleaned = re.sub(r"\*\s*[A-Z0-9]+$", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+\d{4,}$", "", cleaned).strip()
    return capitalize_words(cleaned)


# ---------------------------------------------------------------------------
# Trade Republic (PDF cash table)
# ---------------------------------------------------------------------------

_TR_PHONE = re.compile(r"\(\+34[-.]?\d{9}\)|\+34[-.]?\d{9}")
_TR_BIZUM = re.compile(r"(?:outgoing\s+transfer\s+for|incoming\s+transfer\s+from)\s+([^(+]+)", re.I)
_TR_INCOMING = re.compile(
    r"(?:transferencia\s+)?incoming\s+transfer\s+from\s+([^(]+?)(?:\s*\([^)]+\))?$", re.I
)
_TR_OUTGOING = re.compile(r"(?:transferencia\s+)?outgoing\s+transfer\s+for\s+([^(+]+)", re.I)
_TR_CARD = re.compile(
    r"^(?:transacci[oó]n\s+con\s+tarjeta|card\s+transaction|kartentransaktion)(?:\s+|$)", re.I
)
_TR_ISIN = re.compile(r"[A-Z]{2}[A-Z0-9]{10}")


def _tr_bizum(t: RowText) -> str | None:
    text = t.combined
    if not _TR_PHONE.search(text):
        return None
    m = _TR_BIZUM.search(text)
    return f"Bizum - {capitalize_words(m.group(1))}" if m else None


def _tr_transfer(t: RowText) -> str | None:
    m = _TR_INCOMING.search(t.combined) or _TR_OUTGOING.search(t.combined)
    return f"Transfer - {capitalize_words(m.group(1))}" if m else None


def _tr_card(t: RowText) -> str | None:
    text = t.combined
    if not _TR_CARD.search(text):
        return None
    merchant = _TR_CARD.sub("", text).strip()
    return clean_merchant_name(merchant) if merchant else "Card payment"


def _tr_interest(t: RowText) -> str | None:
    text = t.combined
    if re.search(r"interest\s+payment", text, re.I) or re.match(r"inter[eé]s\s+interest", text, re.I):
        return "Interest"
    return None


def _tr_bonus(t: RowText) -> str | None:
    text = t.combined
    if not re.match(r"bonificaci[oó]n|bonus", text, re.I):
        return None
    if re.search(r"saveback", text, re.I):
        return "Saveback"
    if re.search(r"cash\s+reward", text, re.I):
        return "Reward"
    return "Bonus"


def _tr_savings_plan(t: RowText) -> str | None:
    text = t.combined
    if not (re.search(r"savings\s+plan\s+execution", text, re.I) or re.match(r"operar\s+savings", text, re.I)):
        return None
    m = _TR_ISIN.search(text)
    return f"ETF investment - {m.group(0)}" if m else "ETF investment"


def _tr_merchant(t: RowText) -> str | None:
    raw = t.description.strip()
    if raw and not re.match(r"(interest|incoming|outgoing|savings)", raw, re.I):
        return clean_merchant_name(raw) or None
    return None


def _tr_type_label(t: RowText) -> str | None:
    typ = t.type.strip()
    if typ and not re.match(r"(transferencia|transacci[oó]n|operar|inter[eé]s|bonificaci[oó]n)", typ, re.I):
        return capitalize_words(typ.replace("_", " "))
    return None


TRADE_REPUBLIC_RULES: tuple[DescriptionRule, ...] = (
    _tr_bizum,
    _tr_transfer,
    _tr_card,
    _tr_interest,
    _tr_bonus,
    _tr_savings_plan,
    _tr_merchant,
    _tr_type_label,
)


# ---------------------------------------------------------------------------
# Revolut (CSV / XLSX export)
# ---------------------------------------------------------------------------


def _rv_transfer_from(t: RowText) -> str | None:
    m = re.match(r"(?:transferencia\s+de|transfer\s+from)\s+(.+)$", t.description.strip(), re.I)
    return f"Transfer - {capitalize_words(m.group(1))}" if m else None


def _rv_savings_account(t: RowText) -> str | None:
    desc = t.description.strip()
    if not re.search(r"cuenta\s+remunerada|savings\s+account", desc, re.I):
        return None
    if re.match(r"(?:a|to)\s+", desc, re.I):
        return "To savings account"
    if re.match(r"(?:desde|from)\b", desc, re.I):
        return "From savings account"
    return "Savings account"


def _rv_transfer_to(t: RowText) -> str | None:
    m = re.match(r"to\s+(.+)$", t.description.strip(), re.I)
    return f"Transfer - {capitalize_words(m.group(1))}" if m else None


def _rv_interest(t: RowText) -> str | None:
    if re.search(r"interest\s+earned", t.description, re.I) or t.type.strip().lower() in {
        "intereses",
        "interest",
    }:
        return "Interest"
    return None


def _rv_top_up(t: RowText) -> str | None:
    if re.search(r"recarga|top-?up", t.description, re.I) or t.type.strip().lower() in {
        "recargas",
        "topup",
        "top-up",
    }:
        return "Top-up"
    return None


def _rv_card_payment(t: RowText) -> str | None:
    desc = t.description.strip()
    typ = t.type.strip().lower().replace("_", " ")
    if not (re.match(r"pago\s+", desc, re.I) or typ in {"pago con tarjeta", "card payment"}):
        return None
    merchant = re.sub(r"^pago\s+(?:con\s+tarjeta\s+)?", "", desc, flags=re.I).strip()
    return capitalize_words(merchant) if merchant else "Card payment"


def _rv_plain(t: RowText) -> str | None:
    return capitalize_words(t.description) or capitalize_words(t.type.replace("_", " ")) or None


REVOLUT_RULES: tuple[DescriptionRule, ...] = (
    _rv_transfer_from,
    _rv_savings_account,
    _rv_transfer_to,
    _rv_interest,
    _rv_top_up,
    _rv_card_payment,
    _rv_plain,
)


def describe(text: RowText, rules: Sequence[DescriptionRule]) -> str:
    """Apply ``rules`` in order; fall back to title-cased text, then a placeholder."""

    for rule in rules:
        label = rule(text)
        if label:
            return label
    return capitalize_words(text.combined) or FALLBACK_DESCRIPTION


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

_RULES_BY_PROVIDER: dict[str, tuple[DescriptionRule, ...]] = {
    "trade_republic": TRADE_REPUBLIC_RULES,
    "revolut": REVOLUT_RULES,
}


@dataclass(frozen=True, slots=True)
class NormalizedBatch:
    transactions: list[ImportedTransaction]
    dropped: int


class TransactionNormalizer:
    """Normalize one provider's extractor rows for a given account.

    Usage
    -----
    normalizer = TransactionNormalizer("revolut")
    tx = normalizer.normalize(row, account_id)  # -> ImportedTransaction | None
    """

    def __init__(self, provider: str) -> None:
        try:
            self.rules = _RULES_BY_PROVIDER[provider]
        except KeyError:
            raise ValueError(f"unknown provider: {provider!r}") from None
        self.provider = provider

    def normalize(self, row: TableRow, account_id: str) -> ImportedTransaction | None:
        if isinstance(row, CashRow):
            parsed = _from_cash_row(row)
        elif isinstance(row, SheetRow):
            parsed = _from_sheet_row(row)
        else:
            raise TypeError(f"unsupported row type: {type(row).__name__}")
        if parsed is None:
            return None

        iso_date, amount, direction, text = parsed
        description = describe(text, self.rules)
        return ImportedTransaction(
            date=iso_date,
            amount=amount,
            type=direction,
            description=description,
            external_hash=compute_hash(account_id, iso_date, amount, description),
        )

    def normalize_all(self, rows: Iterable[TableRow], account_id: str) -> NormalizedBatch:
        out: list[ImportedTransaction] = []
        dropped = 0
        for row in rows:
            tx = self.normalize(row, account_id)
            if tx is None:
                dropped += 1
            else:
                out.append(tx)
        if dropped:
            logger.info("%s: dropped %d rows without a valid date or amount", self.provider, dropped)
        return NormalizedBatch(transactions=out, dropped=dropped)


def _from_cash_row(
    row: CashRow,
) -> tuple[str, Decimal, TransactionType, RowText] | None:
    iso_date = parse_date(row.date)
    if iso_date is None:
        return None
    incoming = abs(parse_european_number(row.incoming) or Decimal("0"))
    outgoing = abs(parse_european_number(row.outgoing) or Decimal("0"))
    if incoming > 0:
        amount, direction = quantize_cents(incoming), TransactionType.INCOME
    else:
        amount, direction = quantize_cents(outgoing), TransactionType.EXPENSE
    if amount == 0:
        return None
    return iso_date, amount, direction, RowText(description=row.description, type=row.type)


def _from_sheet_row(
    row: SheetRow,
) -> tuple[str, Decimal, TransactionType, RowText] | None:
    amount = quantize_cents(abs(row.amount))
    if amount == 0:
        return None
    direction = TransactionType.INCOME if row.amount > 0 else TransactionType.EXPENSE
    return (
        row.started_at.date().isoformat(),
        amount,
        direction,
        RowText(description=row.description, type=row.type),
    )


__all__ = [
    "FALLBACK_DESCRIPTION",
    "REVOLUT_RULES",
    "TRADE_REPUBLIC_RULES",
    "DescriptionRule",
    "NormalizedBatch",
    "RowText",
    "TransactionNormalizer",
    "clean_merchant_name",
    "describe",
]
