"""Pytest configuration for test isolation.

Settings are read from the process environment (and a ``.env`` in the working
directory). A developer's shell or ``.env`` could otherwise change tolerances
or point tests at a real database, so every test starts from a clean set of
``STATEMENT_IMPORT_*`` / ``DATABASE_URL`` variables and a temporary cwd.
Cached SQLAlchemy engines are disposed after each test so per-test SQLite
files can be removed.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from db.client import dispose_engines, session_scope

from statement_import.ledger import SqlLedger
from tests.helpers.db import bootstrap_sqlite_db, seed_account

_ENV_VARS = (
    "DATABASE_URL",
    "STATEMENT_IMPORT_DUPLICATE_TOLERANCE",
    "STATEMENT_IMPORT_FOOTER_BAND",
    "STATEMENT_IMPORT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    yield
    dispose_engines()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


@pytest.fixture()
def account_id(db_url: str) -> str:
    return seed_account(db_url, name="Main", balance="100.00", owner_id="user-1")


@pytest.fixture()
def ledger(db_url: str) -> Iterator[SqlLedger]:
    with session_scope(database_url=db_url) as session:
        yield SqlLedger(session)
