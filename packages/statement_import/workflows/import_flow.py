"""Workflow orchestrators for statement import.

Composes extraction, normalization, deduplication, insertion and
reconciliation behind three entry points:

- ``parse_statement``: bytes -> one or two raw row streams (no ledger access);
- ``import_transactions``: normalized rows -> one account, with dedup,
  balance update and possible-duplicate detection;
- ``import_statement``: both, including the savings sub-account stream of a
  mixed export.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from ..config import DEFAULT_DUPLICATE_TOLERANCE, ImportSettings
from ..duplicates import find_possible_duplicates
from ..errors import AccountNotFoundError, StatementParseError
from ..ingest.adapters.revolut_statement import extract_revolut
from ..ingest.adapters.trade_republic_pdf import extract_trade_republic
from ..ingest.text import quantize_cents
from ..ingest.utils import detect_format
from ..ledger import Ledger
from ..logging_setup import get_logger
from ..models import (
    ImportedTransaction,
    ImportResult,
    PossibleDuplicate,
    ProgressCallback,
    StatusCallback,
    StreamKind,
    TableRow,
)
from ..normalizers import NormalizedBatch, TransactionNormalizer
from ..persistence import filter_new, order_for_insert, signed_total
from ..providers import ProviderSpec, get_provider

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class StatementStream:
    """Raw rows bound for one ledger account."""

    kind: StreamKind
    product: str
    rows: list[TableRow]
    final_balance: Decimal | None


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    provider: ProviderSpec
    fmt: str
    streams: list[StatementStream]
    dropped_rows: int = 0

    def stream(self, kind: StreamKind) -> StatementStream | None:
        return next((s for s in self.streams if s.kind is kind), None)


@dataclass(slots=True)
class StatementImportReport:
    """Outcome of ``import_statement``: one ``ImportResult`` per imported stream."""

    results: dict[StreamKind, ImportResult] = field(default_factory=dict)
    dropped_rows: int = 0

    @property
    def nothing_to_import(self) -> bool:
        return not self.results

    @property
    def possible_duplicates(self) -> list[PossibleDuplicate]:
        return [p for r in self.results.values() for p in r.possible_duplicates]


def parse_statement(
    data: bytes,
    provider: str | ProviderSpec,
    *,
    filename: str | None = None,
    settings: ImportSettings | None = None,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
) -> ParsedStatement:
    """Extract raw row streams from a statement file.

    Parameters
    ----------
    data:
        Raw file bytes.
    provider:
        Provider key (``"trade_republic"``, ``"revolut"``) or spec.
    filename:
        Used for format detection; magic bytes decide when it is missing.
    on_progress / on_status:
        Invoked synchronously from inside the page/row loop.

    Raises
    ------
    StatementParseError
        Unsupported format for the provider, empty file, no table header,
        or fewer than three recognizable spreadsheet columns.
    """

    spec = provider if isinstance(provider, ProviderSpec) else get_provider(provider)
    settings = settings or ImportSettings()
    fmt = detect_format(filename, data)
    if fmt not in spec.formats:
        raise StatementParseError(
            "unsupported_format", f"{spec.display_name} does not export {fmt} files"
        )

    if fmt == "pdf":
        layout = extract_trade_republic(
            data,
            footer_band=settings.footer_band,
            on_progress=on_progress,
            on_status=on_status,
        )
        streams = [
            StatementStream(
                kind=StreamKind.PRIMARY,
                product="",
                rows=list(layout.rows),
                final_balance=layout.final_balance,
            )
        ]
        return ParsedStatement(provider=spec, fmt=fmt, streams=streams)

    sheet = extract_revolut(data, fmt=fmt, on_progress=on_progress, on_status=on_status)
    streams = [
        StatementStream(
            kind=s.kind,
            product=s.product,
            rows=list(s.rows),
            final_balance=s.trailing_balance,
        )
        for s in sheet.streams
    ]
    return ParsedStatement(provider=spec, fmt=fmt, streams=streams, dropped_rows=sheet.dropped_rows)


def normalize_stream(
    parsed: ParsedStatement, stream: StatementStream, account_id: str
) -> NormalizedBatch:
    return TransactionNormalizer(parsed.provider.key).normalize_all(stream.rows, account_id)


def import_transactions(
    ledger: Ledger,
    account_id: str,
    transactions: Sequence[ImportedTransaction],
    *,
    final_balance: Decimal | None = None,
    tolerance: Decimal = DEFAULT_DUPLICATE_TOLERANCE,
    dropped_rows: int = 0,
) -> ImportResult:
    """Merge normalized transactions into one ledger account.

    Steps: account check, newest pre-existing date, batched hash dedup,
    category carry-over, insert in date order, balance update, then
    reconciliation against same-date rows.

    The statement's ``final_balance`` is written only when the statement is
    not older than what the account already holds; otherwise (or without a
    final balance) the signed sum of the inserted rows is applied.

    Ledger failures propagate as :class:`~statement_import.errors.LedgerError`;
    rows inserted before the failure stay inserted and a retry skips them.
    """

    account = ledger.get_account(account_id)
    if account is None:
        raise AccountNotFoundError(account_id)

    total = len(transactions)
    latest_existing = ledger.latest_transaction_date(account_id)
    dedup = filter_new(ledger, account_id, transactions)
    ordered = order_for_insert(dedup.new)

    inserted = []
    if ordered:
        categories = ledger.latest_categories_for_descriptions(
            account.owner_id, [t.description for t in ordered]
        )
        inserted = ledger.insert_transactions(account_id, ordered, categories)

    newest_in_file = max((t.date for t in transactions), default=None)
    statement_is_current = newest_in_file is not None and (
        latest_existing is None or newest_in_file >= latest_existing
    )

    new_balance = account.balance
    if final_balance is not None and statement_is_current:
        new_balance = quantize_cents(Decimal(final_balance))
        ledger.update_account_balance(account_id, new_balance)
    elif ordered:
        new_balance = quantize_cents(account.balance + signed_total(ordered))
        ledger.update_account_balance(account_id, new_balance)

    pairs = find_possible_duplicates(ledger, account_id, inserted, tolerance=tolerance)

    logger.info(
        "account %s: imported %d, skipped %d of %d (balance %s)",
        account_id,
        len(inserted),
        dedup.skipped,
        total,
        new_balance,
    )
    return ImportResult(
        imported=len(inserted),
        skipped=total - len(inserted),
        total=total,
        new_balance=new_balance,
        possible_duplicates=pairs,
        dropped_rows=dropped_rows,
        account_id=account_id,
    )


def _savings_account_id(ledger: Ledger, spec: ProviderSpec, owner_id: str | None) -> str:
    name = spec.savings_account_name or f"{spec.display_name} Savings"
    existing = ledger.find_account_by_name(owner_id, name)
    if existing is not None:
        return existing.id
    return ledger.create_account(name=name, owner_id=owner_id, bank_provider=spec.key).id


def import_statement(
    ledger: Ledger,
    data: bytes,
    provider: str | ProviderSpec,
    account_id: str,
    *,
    filename: str | None = None,
    settings: ImportSettings | None = None,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
    on_message: Callable[[str], None] | None = None,
) -> StatementImportReport:
    """End-to-end: bytes -> parse -> normalize -> import, per stream.

    The primary stream goes to ``account_id``. A savings stream (mixed
    spreadsheet exports) goes to the owner's savings sub-account, found by
    name or created once the primary import has completed; its rows are hashed
    against that sub-account.

    Parse errors are raised before any ledger call. When no row survives
    normalization the report is empty and the ledger is not touched.
    """

    settings = settings or ImportSettings()
    parsed = parse_statement(
        data,
        provider,
        filename=filename,
        settings=settings,
        on_progress=on_progress,
        on_status=on_status,
    )
    report = StatementImportReport(dropped_rows=parsed.dropped_rows)

    primary = parsed.stream(StreamKind.PRIMARY)
    savings = parsed.stream(StreamKind.SAVINGS)

    primary_batch = normalize_stream(parsed, primary, account_id) if primary else None
    # Savings rows are re-hashed against the sub-account once its id is known.
    savings_preview = normalize_stream(parsed, savings, account_id) if savings else None
    report.dropped_rows += sum(
        b.dropped for b in (primary_batch, savings_preview) if b is not None
    )

    has_primary = bool(primary_batch and primary_batch.transactions)
    has_savings = bool(savings_preview and savings_preview.transactions)
    if not has_primary and not has_savings:
        if on_message:
            on_message("Nothing to import.")
        return report

    if has_primary:
        assert primary is not None and primary_batch is not None
        report.results[StreamKind.PRIMARY] = import_transactions(
            ledger,
            account_id,
            primary_batch.transactions,
            final_balance=primary.final_balance,
            tolerance=settings.duplicate_tolerance,
            dropped_rows=primary_batch.dropped,
        )

    if has_savings:
        assert savings is not None
        account = ledger.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        savings_id = _savings_account_id(ledger, parsed.provider, account.owner_id)
        batch = normalize_stream(parsed, savings, savings_id)
        report.results[StreamKind.SAVINGS] = import_transactions(
            ledger,
            savings_id,
            batch.transactions,
            final_balance=savings.final_balance,
            tolerance=settings.duplicate_tolerance,
            dropped_rows=batch.dropped,
        )

    if on_message:
        for kind, result in report.results.items():
            on_message(
                f"{kind.value}: imported {result.imported}, skipped {result.skipped}, "
                f"balance {result.new_balance}"
            )
    return report


__all__ = [
    "ParsedStatement",
    "StatementImportReport",
    "StatementStream",
    "import_statement",
    "import_transactions",
    "normalize_stream",
    "parse_statement",
]
