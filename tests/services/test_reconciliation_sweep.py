"""
Tests for the periodic reconciliation sweep.

The sweep opens its own session_scope; these tests use ``session_factory``
only, never the ``session`` fixture.
"""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import text

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.dtos import PostingLine
from ledger_kernel.models.posting import SourceType
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_service import LedgerService
from ledger_services.reconciliation_sweep import run_reconciliation_sweep


def _seed_with_drift(session_factory, clock, config):
    """Post 100.00 from 111 to 692, then break 111's cached balance."""
    with session_scope(session_factory) as session:
        AccountRegistry(session, config.account_policy).seed_chart_of_accounts()
        LedgerService(session, clock).post_group(
            [
                PostingLine.debit_line("111", Decimal("100.00")),
                PostingLine.credit_line("692", Decimal("100.00")),
            ],
            source_type=SourceType.OTHER,
            created_by=uuid4(),
        )
    with session_scope(session_factory) as session:
        session.execute(text("UPDATE accounts SET cached_balance = '42.00' WHERE code = '111'"))


def _cached(session_factory, code):
    with session_scope(session_factory) as session:
        return AccountRegistry(session).get_account(code).cached_balance


class TestReconciliationSweep:

    def test_validate_only(self, session_factory, deterministic_clock, config):
        _seed_with_drift(session_factory, deterministic_clock, config)

        result = run_reconciliation_sweep(session_factory, deterministic_clock, repair=False)

        assert [c.account_code for c in result.invalid] == ["111"]
        assert result.repaired == ()
        assert result.run_at == deterministic_clock.now()
        assert _cached(session_factory, "111") == Decimal("42.00")

    def test_repair_committed(self, session_factory, deterministic_clock, config):
        _seed_with_drift(session_factory, deterministic_clock, config)

        result = run_reconciliation_sweep(session_factory, deterministic_clock)

        assert [(r.account_code, r.new_balance) for r in result.repaired] == [
            ("111", Decimal("100.00"))
        ]
        assert _cached(session_factory, "111") == Decimal("100.00")
        assert run_reconciliation_sweep(
            session_factory, deterministic_clock, repair=False
        ).is_clean

    def test_clean_ledger(self, session_factory, deterministic_clock, config):
        with session_scope(session_factory) as session:
            AccountRegistry(session, config.account_policy).seed_chart_of_accounts()

        result = run_reconciliation_sweep(session_factory, deterministic_clock)

        assert result.checked == len(config.account_policy.chart)
        assert result.is_clean
        assert result.repaired == ()

    def test_sweep_logged(self, session_factory, deterministic_clock, config, captured_logs):
        _seed_with_drift(session_factory, deterministic_clock, config)

        run_reconciliation_sweep(session_factory, deterministic_clock)

        messages = [r["message"] for r in captured_logs()]
        assert "reconciliation_sweep_started" in messages
        completed = [r for r in captured_logs() if r["message"] == "reconciliation_sweep_completed"]
        assert completed[0]["repaired"] == 1
        assert completed[0]["operation"] == "reconciliation_sweep"
