"""Content addressing and pre-insert deduplication.

The hash of a transaction is a pure function of ``(account, date, amount,
description)``, never of import time or source file, so importing the same
statement twice is a no-op.

Known limitation: when a provider varies the description of the *same* event
between exports (truncated merchant names, for instance) the hashes differ and
the row is not filtered here. The reconciliation pass in
:mod:`statement_import.duplicates` is what catches those.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from .logging_setup import get_logger

if TYPE_CHECKING:
    from .ledger import Ledger
    from .models import ImportedTransaction

logger = get_logger(__name__)


def compute_hash(account_id: str, date: str, amount: Decimal, description: str) -> str:
    """SHA-256 hex digest of ``account_id|date|amount(2dp)|description``."""

    amt = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    payload = f"{account_id}|{date}|{amt:.2f}|{description}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class DedupResult:
    new: list[ImportedTransaction]
    # Rows already in the ledger, plus repeats of a hash earlier in the batch.
    skipped: int


def filter_new(
    ledger: Ledger, account_id: str, candidates: Sequence[ImportedTransaction]
) -> DedupResult:
    """Drop candidates whose hash the account already holds.

    One batched existence query for the whole hash set. A hash repeated inside
    the batch keeps its first occurrence only; the ledger's unique
    ``(account_id, external_hash)`` index would reject the repeat anyway.
    """

    if not candidates:
        return DedupResult(new=[], skipped=0)

    hashes = [c.external_hash for c in candidates]
    existing = {
        t.external_hash
        for t in ledger.list_transactions_by_account_and_hashes(account_id, hashes)
        if t.external_hash
    }

    seen: set[str] = set()
    fresh: list[ImportedTransaction] = []
    repeats = 0
    for c in candidates:
        if c.external_hash in existing:
            continue
        if c.external_hash in seen:
            repeats += 1
            continue
        seen.add(c.external_hash)
        fresh.append(c)

    if repeats:
        logger.warning(
            "%d rows share a hash with an earlier row of the same batch "
            "(same date, amount and description); kept the first",
            repeats,
        )
    return DedupResult(new=fresh, skipped=len(candidates) - len(fresh))


def order_for_insert(transactions: Iterable[ImportedTransaction]) -> list[ImportedTransaction]:
    """Ascending by date; ties keep statement order."""

    return sorted(transactions, key=lambda t: t.date)


def signed_total(transactions: Iterable[ImportedTransaction]) -> Decimal:
    total = Decimal("0")
    for t in transactions:
        total += t.amount if t.type == "income" else -t.amount
    return total


__all__ = [
    "DedupResult",
    "compute_hash",
    "filter_new",
    "order_for_insert",
    "signed_total",
]
