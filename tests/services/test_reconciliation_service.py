"""
Tests for ReconciliationService.

Covers:
- Recomputing a balance from postings, optionally as of a date
- Validation against the cached balance (0.01 tolerance)
- Repair of drifted balances
- Batch validate/repair with per-account error isolation
- Running balance history
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import text

from ledger_kernel.domain.dtos import PostingLine
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.posting import SourceType


def _post(ledger, actor_id, debit_code, credit_code, amount, posting_date=None, description=None):
    return ledger.post_group(
        [
            PostingLine.debit_line(debit_code, Decimal(amount)),
            PostingLine.credit_line(credit_code, Decimal(amount)),
        ],
        source_type=SourceType.OTHER,
        created_by=actor_id,
        posting_date=posting_date,
        description=description,
    )


def _corrupt(session, code, **values):
    """Overwrite account columns behind the ORM's back."""
    assignments = ", ".join(f"{column} = :{column}" for column in values)
    session.execute(
        text(f"UPDATE accounts SET {assignments} WHERE code = :code"),
        {"code": code, **{column: str(value) for column, value in values.items()}},
    )
    session.expire_all()


@pytest.fixture
def posted(ledger, seeded_chart, test_actor_id):
    """Bank 111 receives 100 then pays out 30; revenue 692 earns 100."""
    _post(ledger, test_actor_id, "111", "692", "100.00", date(2025, 1, 10), "Income")
    _post(ledger, test_actor_id, "801", "111", "30.00", date(2025, 1, 20), "Supplies")


class TestRecomputeBalance:

    def test_recompute_matches_postings(self, reconciliation, posted):
        assert reconciliation.recompute_balance("111") == Decimal("70.00")
        assert reconciliation.recompute_balance("692") == Decimal("100.00")
        assert reconciliation.recompute_balance("801") == Decimal("30.00")

    def test_recompute_as_of(self, reconciliation, posted):
        assert reconciliation.recompute_balance("111", date(2025, 1, 15)) == Decimal("100.00")
        assert reconciliation.recompute_balance("111", date(2025, 1, 9)) == Decimal("0")

    def test_account_without_postings(self, reconciliation, seeded_chart):
        assert reconciliation.recompute_balance("112") == Decimal("0")

    def test_unknown_account(self, reconciliation):
        with pytest.raises(AccountNotFoundError):
            reconciliation.recompute_balance("404")


class TestValidate:

    def test_consistent_account_valid(self, reconciliation, posted):
        check = reconciliation.validate("111")

        assert check.is_valid
        assert check.cached_balance == Decimal("70.00")
        assert check.difference == Decimal("0")

    def test_drift_detected(self, reconciliation, session, posted, captured_logs):
        _corrupt(session, "111", cached_balance=Decimal("75.00"))

        check = reconciliation.validate("111")

        assert not check.is_valid
        assert check.recomputed_balance == Decimal("70.00")
        assert check.difference == Decimal("5.00")
        assert any(r["message"] == "balance_mismatch_detected" for r in captured_logs())

    def test_drift_within_tolerance_valid(self, reconciliation, session, posted):
        _corrupt(session, "111", cached_balance=Decimal("70.01"))

        assert reconciliation.validate("111").is_valid

    def test_validate_does_not_write(self, reconciliation, registry, session, posted):
        _corrupt(session, "111", cached_balance=Decimal("75.00"))

        reconciliation.validate("111")

        assert registry.get_account("111").cached_balance == Decimal("75.00")


class TestValidateAndRepair:

    def test_repairs_drift(self, reconciliation, registry, session, posted):
        _corrupt(session, "111", cached_balance=Decimal("75.00"))

        result = reconciliation.validate_and_repair("111")

        assert result.repaired
        assert result.old_balance == Decimal("75.00")
        assert result.new_balance == Decimal("70.00")
        assert registry.get_account("111").cached_balance == Decimal("70.00")
        assert reconciliation.recompute_balance("111") == registry.get_account("111").cached_balance

    def test_within_tolerance_left_alone(self, reconciliation, registry, session, posted):
        _corrupt(session, "111", cached_balance=Decimal("70.01"))

        result = reconciliation.validate_and_repair("111")

        assert not result.repaired
        assert registry.get_account("111").cached_balance == Decimal("70.01")

    def test_unknown_account(self, reconciliation):
        with pytest.raises(AccountNotFoundError):
            reconciliation.validate_and_repair("404")


class TestBatch:

    def test_validate_all_reports_only_invalid(self, reconciliation, session, posted, config):
        _corrupt(session, "801", cached_balance=Decimal("0"))

        result = reconciliation.validate_all()

        assert result.checked == len(config.account_policy.chart)
        assert [c.account_code for c in result.invalid] == ["801"]
        assert result.repaired == ()
        assert not result.is_clean
        assert result.run_at is not None

    def test_repair_all(self, reconciliation, session, posted):
        _corrupt(session, "111", cached_balance=Decimal("1.00"))
        _corrupt(session, "692", cached_balance=Decimal("-3.00"))

        result = reconciliation.repair_all()

        assert sorted(r.account_code for r in result.repaired) == ["111", "692"]
        assert reconciliation.validate_all().is_clean

    def test_failure_isolated_to_account(self, reconciliation, session, posted):
        _corrupt(session, "692", account_type="equity")
        _corrupt(session, "111", cached_balance=Decimal("1.00"))

        result = reconciliation.repair_all()

        assert [e.account_code for e in result.errors] == ["692"]
        assert result.errors[0].error_code == "INVALID_ACCOUNT_TYPE"
        assert [r.account_code for r in result.repaired] == ["111"]

    def test_inactive_accounts_skipped(self, reconciliation, registry, config, seeded_chart):
        registry.deactivate_account("112")

        result = reconciliation.validate_all()

        assert result.checked == len(config.account_policy.chart) - 1


class TestBalanceHistory:

    def test_full_history(self, reconciliation, posted):
        history = reconciliation.balance_history("111")

        assert history.opening_balance == Decimal("0")
        assert [e.balance for e in history.entries] == [Decimal("100.00"), Decimal("70.00")]
        assert [e.change for e in history.entries] == [Decimal("100.00"), Decimal("-30.00")]
        assert history.entries[1].description == "Supplies"
        assert history.closing_balance == Decimal("70.00")

    def test_history_from_date_has_opening_balance(self, reconciliation, posted):
        history = reconciliation.balance_history("111", from_date=date(2025, 1, 15))

        assert history.opening_balance == Decimal("100.00")
        assert len(history.entries) == 1
        assert history.closing_balance == Decimal("70.00")

    def test_history_to_date(self, reconciliation, posted):
        history = reconciliation.balance_history("111", to_date=date(2025, 1, 15))

        assert [e.balance for e in history.entries] == [Decimal("100.00")]

    def test_empty_history(self, reconciliation, seeded_chart):
        history = reconciliation.balance_history("112")

        assert history.entries == ()
        assert history.closing_balance == Decimal("0")

    def test_unknown_account(self, reconciliation):
        with pytest.raises(AccountNotFoundError):
            reconciliation.balance_history("404")
