"""Post-insert reconciliation: near-duplicates the content hash cannot see.

After a batch is inserted, every new row is compared with the account's
pre-existing rows on the same dates. Same date and an amount difference below
the tolerance (two cents by default, exclusive) makes a
:class:`~statement_import.models.PossibleDuplicate`. Nothing is merged
automatically; a human picks a :class:`~statement_import.models.ResolutionAction`.

Public surface:
- ``is_possible_duplicate``: the pairwise predicate.
- ``find_possible_duplicates``: one same-date query, then pairwise matching.
- ``DuplicateResolver``: session-scoped resolution state with per-pair and
  bulk actions.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

from .config import DEFAULT_DUPLICATE_TOLERANCE
from .errors import LedgerError, ResolutionError
from .ledger import Ledger, LedgerTransactionView
from .logging_setup import get_logger
from .models import (
    BulkResolutionReport,
    ExistingSide,
    IncomingSide,
    PossibleDuplicate,
    ResolutionAction,
)

logger = get_logger(__name__)


def is_possible_duplicate(
    incoming: LedgerTransactionView,
    existing: LedgerTransactionView,
    tolerance: Decimal = DEFAULT_DUPLICATE_TOLERANCE,
) -> bool:
    return incoming.date == existing.date and abs(existing.amount - incoming.amount) < tolerance


def _pair(incoming: LedgerTransactionView, existing: LedgerTransactionView) -> PossibleDuplicate:
    return PossibleDuplicate(
        incoming=IncomingSide(
            id=incoming.id,
            date=incoming.date,
            amount=incoming.amount,
            description=incoming.description,
            external_hash=incoming.external_hash or "",
        ),
        existing=ExistingSide(
            id=existing.id,
            date=existing.date,
            amount=existing.amount,
            description=existing.description,
        ),
    )


def find_possible_duplicates(
    ledger: Ledger,
    account_id: str,
    inserted: Sequence[LedgerTransactionView],
    *,
    tolerance: Decimal = DEFAULT_DUPLICATE_TOLERANCE,
) -> list[PossibleDuplicate]:
    """Pair freshly inserted rows with same-date, near-equal pre-existing rows.

    Must run after ``inserted`` is persisted. Rows of the batch itself are
    excluded from the existing side by id and by hash membership.
    """

    if not inserted:
        return []

    dates = sorted({t.date for t in inserted})
    inserted_ids = {t.id for t in inserted}
    inserted_hashes = {t.external_hash for t in inserted if t.external_hash}

    existing_by_date: dict[str, list[LedgerTransactionView]] = defaultdict(list)
    for row in ledger.list_transactions_by_account_and_dates(account_id, dates):
        if row.id in inserted_ids:
            continue
        if row.external_hash is not None and row.external_hash in inserted_hashes:
            continue
        existing_by_date[row.date].append(row)

    pairs = [
        _pair(incoming, existing)
        for incoming in inserted
        for existing in existing_by_date.get(incoming.date, ())
        if is_possible_duplicate(incoming, existing, tolerance)
    ]
    if pairs:
        logger.info("%d possible duplicates in account %s", len(pairs), account_id)
    return pairs


class DuplicateResolver:
    """Resolution state for one review session.

    A pair is outstanding until it is resolved, or until either of its rows
    has been deleted by resolving another pair. Dismissals live only as long
    as the resolver.
    """

    def __init__(self, ledger: Ledger, pairs: Iterable[PossibleDuplicate] = ()) -> None:
        self.ledger = ledger
        self.pairs: list[PossibleDuplicate] = list(pairs)
        self._dismissed: set[tuple[int, int]] = set()
        self._deleted: set[int] = set()

    def is_outstanding(self, pair: PossibleDuplicate) -> bool:
        return (
            pair.key not in self._dismissed
            and pair.incoming.id not in self._deleted
            and pair.existing.id not in self._deleted
        )

    @property
    def outstanding(self) -> list[PossibleDuplicate]:
        return [p for p in self.pairs if self.is_outstanding(p)]

    def _delete(self, transaction_id: int) -> None:
        # ``False`` means already gone; the outcome is the same.
        self.ledger.delete_transaction(transaction_id)
        self._deleted.add(transaction_id)

    def resolve_pair(self, action: ResolutionAction, pair: PossibleDuplicate) -> bool:
        """Apply ``action`` to ``pair``; returns ``False`` when it was no longer outstanding.

        Raises :class:`ResolutionError` when the ledger call fails; the pair
        then stays outstanding.
        """

        if not self.is_outstanding(pair):
            return False
        try:
            if action is ResolutionAction.UNDO:
                self._delete(pair.incoming.id)
            elif action is ResolutionAction.REMOVE_EXISTING:
                self._delete(pair.existing.id)
        except LedgerError as exc:
            raise ResolutionError(action, pair, exc) from exc
        self._dismissed.add(pair.key)
        logger.debug("resolved pair %s with %s", pair.key, action.value)
        return True

    def resolve_bulk(
        self, action: ResolutionAction, pairs: Iterable[PossibleDuplicate] | None = None
    ) -> BulkResolutionReport:
        """Apply ``action`` to each outstanding pair in order.

        Pairs that stop being outstanding along the way are skipped. A failed
        pair is recorded and the run continues; earlier actions stay applied.
        """

        report = BulkResolutionReport()
        for pair in list(self.pairs if pairs is None else pairs):
            if not self.is_outstanding(pair):
                report.skipped.append(pair)
                continue
            try:
                self.resolve_pair(action, pair)
            except ResolutionError as exc:
                logger.error("%s", exc)
                report.failures.append((pair, str(exc.cause)))
            else:
                report.applied.append(pair)
        return report


__all__ = [
    "DuplicateResolver",
    "find_possible_duplicates",
    "is_possible_duplicate",
]
