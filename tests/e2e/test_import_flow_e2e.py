"""End-to-end: statement bytes -> parse -> normalize -> dedupe -> SQLite ledger."""

from __future__ import annotations

from decimal import Decimal

import pytest

from statement_import.errors import AccountNotFoundError, LedgerError, StatementParseError
from statement_import.models import StreamKind
from statement_import.workflows.import_flow import import_statement
from tests.helpers.db import (
    account_balance,
    accounts_named,
    seed_account,
    seed_transaction,
    transaction_rows,
)

CLEAN_CSV = (
    b"Type,Product,Started Date,Description,Amount,State\n"
    b"CARD_PAYMENT,Actual,2024-03-01,Coffee Shop,-4.50,COMPLETED\n"
)

MIXED_CSV = (
    "Tipo,Producto,Fecha de inicio,Descripción,Importe,Estado,Saldo\n"
    "Pago con tarjeta,Actual,2024-03-01 09:00:00,Pago con tarjeta LIDL,\"-12,30\",COMPLETADO,\"87,70\"\n"
    "Transferencia,Actual,2024-03-02 10:00:00,A Cuenta remunerada,\"-50,00\",COMPLETADO,\"37,70\"\n"
    "Transferencia,Depósito,2024-03-02 10:00:01,Desde Cuenta corriente,\"50,00\",COMPLETADO,\"550,00\"\n"
    "Intereses,Depósito,2024-03-31 00:00:00,Interest earned,\"1,20\",COMPLETADO,\"551,20\"\n"
    "Pago con tarjeta,Actual,2024-03-04 12:00:00,Pago con tarjeta BAR,\"-3,00\",PENDIENTE,\n"
).encode()


class SpyLedger:
    """Records every ledger method that gets looked up."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def __getattr__(self, name: str):
        self.calls.append(name)
        raise AssertionError(f"unexpected ledger call: {name}")


def test_clean_import_inserts_and_applies_signed_sum(db_url, ledger, account_id):
    report = import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")

    result = report.results[StreamKind.PRIMARY]
    assert (result.imported, result.skipped, result.total) == (1, 0, 1)
    assert result.new_balance == Decimal("95.50")
    assert result.possible_duplicates == []

    rows = transaction_rows(db_url, account_id)
    assert len(rows) == 1
    assert rows[0]["date"] == "2024-03-01"
    assert rows[0]["amount"] == Decimal("4.50")
    assert rows[0]["type"] == "expense"
    assert rows[0]["description"] == "Coffee Shop"
    assert len(rows[0]["external_hash"]) == 64
    assert account_balance(db_url, account_id) == Decimal("95.50")


def test_reimport_is_a_no_op(db_url, ledger, account_id):
    import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")
    second = import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")

    result = second.results[StreamKind.PRIMARY]
    assert (result.imported, result.skipped) == (0, 1)
    assert result.possible_duplicates == []
    assert len(transaction_rows(db_url, account_id)) == 1
    assert account_balance(db_url, account_id) == Decimal("95.50")


def test_same_day_same_amount_is_reported_as_possible_duplicate(db_url, ledger, account_id):
    existing_id = seed_transaction(
        db_url, account_id, on="2024-03-01", amount="4.50", description="COFFEE SHOP LTD"
    )

    report = import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")

    result = report.results[StreamKind.PRIMARY]
    assert result.imported == 1
    assert len(result.possible_duplicates) == 1
    pair = result.possible_duplicates[0]
    assert pair.existing.id == existing_id
    assert pair.existing.description == "COFFEE SHOP LTD"
    assert pair.incoming.description == "Coffee Shop"
    assert report.possible_duplicates == result.possible_duplicates


def test_malformed_header_makes_no_ledger_calls():
    spy = SpyLedger()
    with pytest.raises(StatementParseError) as excinfo:
        import_statement(spy, b"Foo,Bar,Baz\n1,2,3\n", "revolut", "acc", filename="x.csv")
    assert excinfo.value.code == "unmapped_columns"
    assert spy.calls == []


def test_nothing_to_import_makes_no_ledger_calls():
    csv_bytes = (
        b"Type,Product,Started Date,Description,Amount,State\n"
        b"CARD_PAYMENT,Actual,2024-03-01,Coffee Shop,-4.50,PENDING\n"
    )
    spy = SpyLedger()
    messages: list[str] = []
    report = import_statement(
        spy, csv_bytes, "revolut", "acc", filename="x.csv", on_message=messages.append
    )
    assert report.nothing_to_import
    assert messages == ["Nothing to import."]
    assert spy.calls == []


def test_mixed_export_imports_savings_into_sub_account(db_url, ledger, account_id):
    report = import_statement(ledger, MIXED_CSV, "revolut", account_id, filename="export.csv")

    primary = report.results[StreamKind.PRIMARY]
    savings = report.results[StreamKind.SAVINGS]
    assert primary.imported == 2
    assert primary.new_balance == Decimal("37.70")
    assert savings.imported == 2
    assert savings.new_balance == Decimal("551.20")

    [sub] = accounts_named(db_url, "Revolut Savings")
    assert sub.owner_id == "user-1"
    assert savings.account_id == sub.id
    assert [r["description"] for r in transaction_rows(db_url, account_id)] == [
        "Lidl",
        "To savings account",
    ]
    assert [r["description"] for r in transaction_rows(db_url, sub.id)] == [
        "Desde Cuenta Corriente",
        "Interest",
    ]

    again = import_statement(ledger, MIXED_CSV, "revolut", account_id, filename="export.csv")
    assert again.results[StreamKind.SAVINGS].imported == 0
    assert len(accounts_named(db_url, "Revolut Savings")) == 1


def test_older_statement_does_not_overwrite_balance(db_url, ledger):
    account_id = seed_account(db_url, name="Old", balance="200.00", owner_id="user-2")
    seed_transaction(db_url, account_id, on="2024-04-01", amount="1.00", description="April")

    report = import_statement(ledger, MIXED_CSV, "revolut", account_id, filename="export.csv")

    # Statement ends in March but the account already has April rows: apply the sum.
    expected = Decimal("200.00") - Decimal("12.30") - Decimal("50.00")
    assert report.results[StreamKind.PRIMARY].new_balance == expected
    assert account_balance(db_url, account_id) == expected


def test_categories_carry_over_by_description(db_url, ledger, account_id):
    seed_transaction(
        db_url, account_id, on="2024-01-15", amount="3.90", description="Coffee Shop", category="Coffee"
    )
    import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")

    march = [r for r in transaction_rows(db_url, account_id) if r["date"] == "2024-03-01"]
    assert march[0]["category"] == "Coffee"


def test_unknown_account(ledger):
    with pytest.raises(AccountNotFoundError):
        import_statement(ledger, CLEAN_CSV, "revolut", "missing", filename="statement.csv")


def test_provider_format_mismatch_is_rejected():
    spy = SpyLedger()
    with pytest.raises(StatementParseError) as excinfo:
        import_statement(spy, b"%PDF-1.7 ...", "revolut", "acc", filename="statement.pdf")
    assert excinfo.value.code == "unsupported_format"
    assert spy.calls == []


class BalanceFailsLedger:
    """Delegates to a real ledger but fails the balance update."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name: str):
        return getattr(self.inner, name)

    def update_account_balance(self, account_id, new_balance):
        raise LedgerError("update_account_balance failed: connection reset")


def test_ledger_failure_surfaces_and_retry_is_safe(db_url, ledger, account_id):
    with pytest.raises(LedgerError):
        import_statement(
            BalanceFailsLedger(ledger), CLEAN_CSV, "revolut", account_id, filename="statement.csv"
        )
    # Inserted rows stay; re-running the import skips them.
    assert len(transaction_rows(db_url, account_id)) == 1

    retry = import_statement(ledger, CLEAN_CSV, "revolut", account_id, filename="statement.csv")
    assert retry.results[StreamKind.PRIMARY].imported == 0
    assert len(transaction_rows(db_url, account_id)) == 1


def test_import_statement_file_via_api(tmp_path, db_url, ledger, account_id):
    from statement_import import api

    path = tmp_path / "statement.csv"
    path.write_bytes(CLEAN_CSV)
    progress: list[tuple[int, int]] = []

    report = api.import_statement_file(
        ledger, path, "Revolut", account_id, on_progress=lambda cur, tot: progress.append((cur, tot))
    )

    assert report.results[StreamKind.PRIMARY].imported == 1
    assert progress and progress[-1][0] == progress[-1][1]
    assert account_balance(db_url, account_id) == Decimal("95.50")


def test_export_without_status_column_imports_nothing():
    csv_bytes = (
        b"Type,Product,Started Date,Description,Amount\n"
        b"CARD_PAYMENT,Actual,2024-03-01,Coffee Shop,-4.50\n"
    )
    spy = SpyLedger()
    report = import_statement(spy, csv_bytes, "revolut", "acc", filename="x.csv")
    assert report.nothing_to_import
    assert spy.calls == []
