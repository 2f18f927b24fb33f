"""CLI for the ``statement_import`` package.

This module exposes callable command handlers (``cmd_parse_statement``,
``cmd_import_statement``) and a Typer-based console interface around them.
Environment variables (notably ``DATABASE_URL``) are loaded from a local
``.env`` using ``python-dotenv`` in the root callback. Business logic lives in
:mod:`statement_import.workflows.import_flow` and related modules.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import load_settings
from .errors import AccountNotFoundError, LedgerError, StatementParseError
from .logging_setup import configure_logging, get_logger

logger = get_logger(__name__)


def _print_error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))


def cmd_parse_statement(
    file_path: str,
    *,
    provider: str,
    account_id: str = "preview",
    locale: str = "en",
) -> int:
    """Parse and normalize a statement without touching the ledger.

    Prints one JSON object per normalized transaction (tagged with its stream)
    followed by one ``final_balance`` line per stream. Hashes are computed for
    ``account_id``, so they only match a later import into that account.
    """

    from .ingest.utils import read_statement_file
    from .workflows.import_flow import normalize_stream, parse_statement

    try:
        data, _fmt = read_statement_file(file_path)
    except OSError as e:
        return _print_error(f"cannot read {file_path}: {e}")
    except StatementParseError as e:
        return _print_error(e.message_for(locale))

    settings = load_settings()
    try:
        parsed = parse_statement(
            data,
            provider,
            filename=Path(file_path).name,
            settings=settings,
            on_status=logger.debug,
        )
    except StatementParseError as e:
        return _print_error(e.message_for(locale))
    except ValueError as e:
        return _print_error(str(e))

    dropped = parsed.dropped_rows
    for stream in parsed.streams:
        batch = normalize_stream(parsed, stream, account_id)
        dropped += batch.dropped
        for tx in batch.transactions:
            _print_json({"stream": stream.kind.value, "transaction": tx.model_dump(mode="json")})
        # Decimals travel as strings, like the transaction amounts.
        balance = None if stream.final_balance is None else str(stream.final_balance)
        _print_json({"stream": stream.kind.value, "final_balance": balance})

    if dropped:
        print(f"{dropped} rows were skipped (no valid date or amount)", file=sys.stderr)
    return 0


def cmd_import_statement(
    file_path: str,
    *,
    provider: str,
    account_id: str,
    database_url: str | None = None,
    interactive: bool = True,
    locale: str = "en",
) -> int:
    """Import a statement into ``account_id`` and review possible duplicates.

    Flow
    ----
    - Parse and normalize the file (no ledger access on parse failures).
    - Import the primary stream into ``account_id``; a savings stream goes to
      the owner's savings sub-account (created on first import).
    - Print a summary per stream, then either walk the possible duplicates
      interactively or list them.
    """

    from db.client import session_scope

    from .duplicates import DuplicateResolver
    from .ingest.utils import read_statement_file
    from .ledger import SqlLedger
    from .term_ui import format_pair, review_possible_duplicates
    from .workflows.import_flow import import_statement

    try:
        data, _fmt = read_statement_file(file_path)
    except OSError as e:
        return _print_error(f"cannot read {file_path}: {e}")
    except StatementParseError as e:
        return _print_error(e.message_for(locale))

    settings = load_settings()
    url = database_url or settings.database_url
    try:
        with session_scope(database_url=url) as session:
            ledger = SqlLedger(session)
            report = import_statement(
                ledger,
                data,
                provider,
                account_id,
                filename=Path(file_path).name,
                settings=settings,
                on_status=logger.debug,
            )

            if report.nothing_to_import:
                print("Nothing to import.")
                return 0

            for kind, result in report.results.items():
                print(
                    f"{kind.value}: imported={result.imported} skipped={result.skipped} "
                    f"total={result.total} new_balance={result.new_balance}"
                )
            if report.dropped_rows:
                print(f"{report.dropped_rows} rows were skipped (no valid date or amount)")

            pairs = report.possible_duplicates
            if not pairs:
                return 0
            print(f"{len(pairs)} possible duplicate(s) found.")
            if interactive:
                outcome = review_possible_duplicates(DuplicateResolver(ledger, pairs))
                if outcome.failures:
                    return _print_error(f"{outcome.failed_count} resolution(s) failed")
            else:
                for pair in pairs:
                    print(format_pair(pair))
    except StatementParseError as e:
        return _print_error(e.message_for(locale))
    except (AccountNotFoundError, LedgerError, RuntimeError) as e:
        return _print_error(str(e))
    except ValueError as e:
        return _print_error(str(e))
    return 0


def cmd_init_db(*, database_url: str | None = None) -> int:
    """Create the ledger tables on ``database_url`` when missing."""

    from db.client import create_schema

    url = database_url or load_settings().database_url
    try:
        create_schema(database_url=url)
    except RuntimeError as e:
        return _print_error(str(e))
    print("Ledger schema ready.")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements (Trade Republic PDF, Revolut CSV/XLSX) into the "
        "ledger. Loads DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects (no calls in parameter defaults).
FILE_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help="Path to the statement file (.pdf, .csv or .xlsx)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports a readable error
)
PROVIDER_OPTION: OptionInfo = typer.Option(
    ..., "--provider", help="Statement provider: trade_republic or revolut."
)
LOCALE_OPTION: OptionInfo = typer.Option(
    ..., "--locale", help="Language for error messages (en, es)."
)


@app.command("parse-statement")
def parse_statement_cmd(
    file: Annotated[Path, FILE_OPTION],
    provider: Annotated[str, PROVIDER_OPTION],
    *,
    account_id: str = typer.Option("preview", help="Account id used for the preview hashes."),
    locale: Annotated[str, LOCALE_OPTION] = "en",
) -> None:
    """Print normalized transactions and final balances as JSON lines."""

    code = cmd_parse_statement(str(file), provider=provider, account_id=account_id, locale=locale)
    if code:
        raise typer.Exit(code)


@app.command("import-statement")
def import_statement_cmd(
    file: Annotated[Path, FILE_OPTION],
    provider: Annotated[str, PROVIDER_OPTION],
    *,
    account_id: str = typer.Option(..., help="Target ledger account id."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    interactive: bool = typer.Option(
        True, "--interactive/--no-interactive", help="Review possible duplicates interactively."
    ),
    locale: Annotated[str, LOCALE_OPTION] = "en",
) -> None:
    """Import a statement, update the balance and review possible duplicates."""

    code = cmd_import_statement(
        str(file),
        provider=provider,
        account_id=account_id,
        database_url=database_url,
        interactive=interactive,
        locale=locale,
    )
    if code:
        raise typer.Exit(code)


@app.command("init-db")
def init_db_cmd(
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create the ledger tables (development and SQLite ledgers)."""

    code = cmd_init_db(database_url=database_url)
    if code:
        raise typer.Exit(code)


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
