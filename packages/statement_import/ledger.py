"""The ledger collaborator: the only shared mutable resource of an import.

:class:`Ledger` is the interface the pipeline talks to; :class:`SqlLedger`
implements it over the SQLAlchemy models in ``db.models.ledger``. Every
mutating call commits on its own, like a call to a remote CRUD API, so a
failure part-way through an import leaves the earlier calls committed. The
content hash makes re-running the whole import the recovery path.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from db.models.ledger import LedgerAccount, LedgerTransaction
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AccountNotFoundError, LedgerError
from .logging_setup import get_logger
from .models import ImportedTransaction, TransactionType

logger = get_logger(__name__)

# Bound parameters per IN (...) query; SQLite's default limit is 999.
QUERY_CHUNK = 500


@dataclass(frozen=True, slots=True)
class AccountView:
    id: str
    name: str
    balance: Decimal
    owner_id: str | None = None
    bank_provider: str | None = None


@dataclass(frozen=True, slots=True)
class LedgerTransactionView:
    id: int
    account_id: str
    date: str
    amount: Decimal
    type: TransactionType
    description: str
    external_hash: str | None = None
    category: str | None = None


class Ledger(Protocol):
    def get_account(self, account_id: str) -> AccountView | None: ...

    def list_transactions_by_account_and_hashes(
        self, account_id: str, hashes: Sequence[str]
    ) -> list[LedgerTransactionView]: ...

    def list_transactions_by_account_and_dates(
        self, account_id: str, dates: Sequence[str]
    ) -> list[LedgerTransactionView]: ...

    def insert_transactions(
        self,
        account_id: str,
        rows: Sequence[ImportedTransaction],
        categories: Mapping[str, str] | None = None,
    ) -> list[LedgerTransactionView]: ...

    def update_account_balance(self, account_id: str, new_balance: Decimal) -> None: ...

    def delete_transaction(self, transaction_id: int) -> bool: ...

    def latest_transaction_date(self, account_id: str) -> str | None: ...

    def find_account_by_name(self, owner_id: str | None, name: str) -> AccountView | None: ...

    def create_account(
        self,
        *,
        name: str,
        owner_id: str | None,
        bank_provider: str | None = None,
        balance: Decimal = Decimal("0"),
    ) -> AccountView: ...

    def latest_categories_for_descriptions(
        self, owner_id: str | None, descriptions: Sequence[str]
    ) -> dict[str, str]: ...


def _chunks(values: Sequence[str], size: int = QUERY_CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _account_view(a: LedgerAccount) -> AccountView:
    return AccountView(
        id=a.id,
        name=a.name,
        balance=Decimal(a.balance),
        owner_id=a.owner_id,
        bank_provider=a.bank_provider,
    )


def _tx_view(t: LedgerTransaction) -> LedgerTransactionView:
    return LedgerTransactionView(
        id=t.id,
        account_id=t.account_id,
        date=t.date.isoformat(),
        amount=Decimal(t.amount),
        type=TransactionType(t.type),
        description=t.description or "",
        external_hash=t.external_hash,
        category=t.category,
    )


def _owner_filter(owner_id: str | None):
    if owner_id is None:
        return LedgerAccount.owner_id.is_(None)
    return LedgerAccount.owner_id == owner_id


class SqlLedger:
    """SQLAlchemy-backed :class:`Ledger` bound to one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _call(self, what: str, *, commit: bool) -> Iterator[Session]:
        # Every call reads committed state, not this session's identity map.
        self.session.expire_all()
        try:
            yield self.session
            if commit:
                self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise LedgerError(f"{what} failed: {exc}") from exc

    # -- reads -----------------------------------------------------------

    def get_account(self, account_id: str) -> AccountView | None:
        with self._call("get_account", commit=False) as s:
            account = s.get(LedgerAccount, account_id)
            return _account_view(account) if account is not None else None

    def list_transactions_by_account_and_hashes(
        self, account_id: str, hashes: Sequence[str]
    ) -> list[LedgerTransactionView]:
        unique = list(dict.fromkeys(hashes))
        out: list[LedgerTransactionView] = []
        with self._call("list_transactions_by_account_and_hashes", commit=False) as s:
            for chunk in _chunks(unique):
                stmt = select(LedgerTransaction).where(
                    LedgerTransaction.account_id == account_id,
                    LedgerTransaction.external_hash.in_(chunk),
                )
                out.extend(_tx_view(t) for t in s.scalars(stmt))
        return out

    def list_transactions_by_account_and_dates(
        self, account_id: str, dates: Sequence[str]
    ) -> list[LedgerTransactionView]:
        parsed = sorted({date.fromisoformat(d) for d in dates})
        if not parsed:
            return []
        with self._call("list_transactions_by_account_and_dates", commit=False) as s:
            stmt = (
                select(LedgerTransaction)
                .where(
                    LedgerTransaction.account_id == account_id,
                    LedgerTransaction.date.in_(parsed),
                )
                .order_by(LedgerTransaction.date, LedgerTransaction.id)
            )
            return [_tx_view(t) for t in s.scalars(stmt)]

    def latest_transaction_date(self, account_id: str) -> str | None:
        with self._call("latest_transaction_date", commit=False) as s:
            latest = s.execute(
                select(func.max(LedgerTransaction.date)).where(
                    LedgerTransaction.account_id == account_id
                )
            ).scalar_one_or_none()
        if latest is None:
            return None
        return latest.isoformat() if isinstance(latest, date) else str(latest)

    def find_account_by_name(self, owner_id: str | None, name: str) -> AccountView | None:
        with self._call("find_account_by_name", commit=False) as s:
            stmt = (
                select(LedgerAccount)
                .where(_owner_filter(owner_id), LedgerAccount.name == name)
                .order_by(LedgerAccount.created_at)
                .limit(1)
            )
            account = s.scalars(stmt).first()
            return _account_view(account) if account is not None else None

    def latest_categories_for_descriptions(
        self, owner_id: str | None, descriptions: Sequence[str]
    ) -> dict[str, str]:
        """Most recent non-null category per description across the owner's accounts."""

        wanted = list(dict.fromkeys(d for d in descriptions if d))
        found: dict[str, str] = {}
        with self._call("latest_categories_for_descriptions", commit=False) as s:
            for chunk in _chunks(wanted):
                stmt = (
                    select(LedgerTransaction.description, LedgerTransaction.category)
                    .join(LedgerAccount, LedgerAccount.id == LedgerTransaction.account_id)
                    .where(
                        _owner_filter(owner_id),
                        LedgerTransaction.description.in_(chunk),
                        LedgerTransaction.category.is_not(None),
                    )
                    .order_by(LedgerTransaction.date.desc(), LedgerTransaction.id.desc())
                )
                for description, category in s.execute(stmt):
                    found.setdefault(description, category)
        return found

    # -- writes ----------------------------------------------------------

    def insert_transactions(
        self,
        account_id: str,
        rows: Sequence[ImportedTransaction],
        categories: Mapping[str, str] | None = None,
    ) -> list[LedgerTransactionView]:
        categories = categories or {}
        with self._call("insert_transactions", commit=True) as s:
            objs = [
                LedgerTransaction(
                    account_id=account_id,
                    amount=r.amount,
                    type=r.type.value,
                    date=date.fromisoformat(r.date),
                    description=r.description,
                    external_hash=r.external_hash,
                    category=categories.get(r.description),
                )
                for r in rows
            ]
            s.add_all(objs)
            s.flush()
            views = [_tx_view(o) for o in objs]
        logger.debug("inserted %d transactions into %s", len(views), account_id)
        return views

    def update_account_balance(self, account_id: str, new_balance: Decimal) -> None:
        with self._call("update_account_balance", commit=True) as s:
            account = s.get(LedgerAccount, account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            account.balance = new_balance
            account.updated_at = func.now()

    def delete_transaction(self, transaction_id: int) -> bool:
        """Delete a row and reverse its balance effect; ``False`` if it is already gone."""

        with self._call("delete_transaction", commit=True) as s:
            tx = s.get(LedgerTransaction, transaction_id)
            if tx is None:
                return False
            account = s.get(LedgerAccount, tx.account_id)
            if account is not None:
                if tx.type == TransactionType.INCOME.value:
                    account.balance = Decimal(account.balance) - Decimal(tx.amount)
                else:
                    account.balance = Decimal(account.balance) + Decimal(tx.amount)
                account.updated_at = func.now()
            s.delete(tx)
        return True

    def create_account(
        self,
        *,
        name: str,
        owner_id: str | None,
        bank_provider: str | None = None,
        balance: Decimal = Decimal("0"),
    ) -> AccountView:
        with self._call("create_account", commit=True) as s:
            account = LedgerAccount(
                name=name,
                owner_id=owner_id,
                bank_provider=bank_provider,
                balance=balance,
                is_default=False,
            )
            s.add(account)
            s.flush()
            view = _account_view(account)
        logger.info("created account %r (%s)", name, view.id)
        return view


__all__ = [
    "QUERY_CHUNK",
    "AccountView",
    "Ledger",
    "LedgerTransactionView",
    "SqlLedger",
]
