"""
Tests for session_scope: commit on success, rollback and error
translation on failure.

These tests open their own sessions from ``session_factory`` and must not
use the ``session`` fixture.
"""

from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    BalanceWriteConflictError,
    StorageError,
)
from ledger_kernel.models.account import AccountType
from ledger_kernel.services.account_registry import AccountRegistry


def _codes(session_factory) -> list[str]:
    with session_scope(session_factory) as session:
        return [a.code for a in AccountRegistry(session).list_accounts(include_inactive=True)]


class TestSessionScope:

    def test_commits_on_success(self, session_factory):
        with session_scope(session_factory) as session:
            AccountRegistry(session).create_account("901", "Till", AccountType.ASSET)

        assert _codes(session_factory) == ["901"]

    def test_ledger_error_rolls_back_and_passes_through(self, session_factory):
        with pytest.raises(AccountNotFoundError):
            with session_scope(session_factory) as session:
                registry = AccountRegistry(session)
                registry.create_account("901", "Till", AccountType.ASSET)
                registry.get_account("404")

        assert _codes(session_factory) == []

    def test_stale_data_becomes_balance_conflict(self, session_factory):
        with pytest.raises(BalanceWriteConflictError):
            with session_scope(session_factory):
                raise StaleDataError("row changed")

    def test_sqlalchemy_error_becomes_storage_error(self, session_factory):
        with pytest.raises(StorageError) as exc_info:
            with session_scope(session_factory) as session:
                session.execute(text("SELECT * FROM no_such_table"))

        assert exc_info.value.code == "STORAGE_ERROR"

    def test_other_errors_propagate(self, session_factory):
        with pytest.raises(ZeroDivisionError):
            with session_scope(session_factory) as session:
                AccountRegistry(session).create_account("901", "Till", AccountType.ASSET)
                1 / 0

        assert _codes(session_factory) == []

    def test_committed_balance_survives_new_session(self, session_factory):
        with session_scope(session_factory) as session:
            AccountRegistry(session).create_account("901", "Till", AccountType.ASSET)

        with session_scope(session_factory) as session:
            assert AccountRegistry(session).get_account("901").cached_balance == Decimal("0")
