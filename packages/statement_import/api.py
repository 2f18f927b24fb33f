"""Public API for the ``statement_import`` package.

This module is a stable import surface for host applications (a web upload
handler, the CLI, tests). The implementations live in
``statement_import.workflows.import_flow`` (parse/import),
``statement_import.duplicates`` (reconciliation) and ``statement_import.ledger``
(the storage collaborator) and are re-exported here.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

from .config import ImportSettings, load_settings
from .duplicates import DuplicateResolver, find_possible_duplicates, is_possible_duplicate
from .errors import (
    AccountNotFoundError,
    LedgerError,
    ResolutionError,
    StatementImportError,
    StatementParseError,
)
from .ingest.utils import read_statement_file
from .ledger import Ledger, SqlLedger
from .models import (
    BulkResolutionReport,
    ImportedTransaction,
    ImportResult,
    PossibleDuplicate,
    ProgressCallback,
    ResolutionAction,
    StatusCallback,
)
from .persistence import compute_hash
from .workflows.import_flow import (
    ParsedStatement,
    StatementImportReport,
    import_statement,
    import_transactions,
    parse_statement,
)


def import_statement_file(
    ledger: Ledger,
    path: str | PathLike[str],
    provider: str,
    account_id: str,
    *,
    settings: ImportSettings | None = None,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
) -> StatementImportReport:
    """Read ``path`` from disk and run :func:`import_statement` on it."""

    data, _fmt = read_statement_file(path)
    return import_statement(
        ledger,
        data,
        provider,
        account_id,
        filename=Path(path).name,
        settings=settings,
        on_progress=on_progress,
        on_status=on_status,
    )


__all__ = [
    "AccountNotFoundError",
    "BulkResolutionReport",
    "DuplicateResolver",
    "ImportResult",
    "ImportSettings",
    "ImportedTransaction",
    "Ledger",
    "LedgerError",
    "ParsedStatement",
    "PossibleDuplicate",
    "ResolutionAction",
    "ResolutionError",
    "SqlLedger",
    "StatementImportError",
    "StatementImportReport",
    "StatementParseError",
    "compute_hash",
    "find_possible_duplicates",
    "import_statement",
    "import_statement_file",
    "import_transactions",
    "is_possible_duplicate",
    "load_settings",
    "parse_statement",
]
