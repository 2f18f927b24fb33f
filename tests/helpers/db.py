"""DB helpers for tests: bootstrap a temporary SQLite ledger and seed rows."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from db.client import create_schema, get_engine, session_scope
from db.models.ledger import LedgerAccount, LedgerTransaction
from sqlalchemy import event, select


def bootstrap_sqlite_db(db_file: Path) -> str:
    """Create a SQLite database file, initialize the ledger schema, return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        dbapi_conn.execute("PRAGMA foreign_keys = ON")

    create_schema(database_url=url)
    return url


def seed_account(
    database_url: str,
    *,
    name: str,
    balance: str | Decimal = "0",
    owner_id: str | None = None,
    bank_provider: str | None = None,
) -> str:
    with session_scope(database_url=database_url) as session:
        account = LedgerAccount(
            name=name,
            balance=Decimal(balance),
            owner_id=owner_id,
            bank_provider=bank_provider,
        )
        session.add(account)
        session.flush()
        return account.id


def seed_transaction(
    database_url: str,
    account_id: str,
    *,
    on: str,
    amount: str | Decimal,
    type: str = "expense",
    description: str = "",
    external_hash: str | None = None,
    category: str | None = None,
) -> int:
    with session_scope(database_url=database_url) as session:
        tx = LedgerTransaction(
            account_id=account_id,
            date=date.fromisoformat(on),
            amount=Decimal(amount),
            type=type,
            description=description,
            external_hash=external_hash,
            category=category,
        )
        session.add(tx)
        session.flush()
        return tx.id


def account_balance(database_url: str, account_id: str) -> Decimal:
    with session_scope(database_url=database_url) as session:
        account = session.get(LedgerAccount, account_id)
        assert account is not None
        return Decimal(account.balance)


def transaction_rows(database_url: str, account_id: str) -> list[dict[str, Any]]:
    """Rows of one account as plain dicts, ascending by (date, id)."""

    with session_scope(database_url=database_url) as session:
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.account_id == account_id)
            .order_by(LedgerTransaction.date, LedgerTransaction.id)
        )
        return [
            {
                "id": t.id,
                "date": t.date.isoformat(),
                "amount": Decimal(t.amount),
                "type": t.type,
                "description": t.description,
                "external_hash": t.external_hash,
                "category": t.category,
            }
            for t in session.scalars(stmt)
        ]


def accounts_named(database_url: str, name: str) -> list[LedgerAccount]:
    with session_scope(database_url=database_url) as session:
        return list(session.scalars(select(LedgerAccount).where(LedgerAccount.name == name)))
