"""
Tests for CleaningPayrollService.

Covers:
- Scheduling and updating assignments
- The scheduled -> completed -> cancelled state machine
- Payroll accrual on completion (net salary expense / cleaner payable)
- Reversal on cancelling a completed assignment, netting to zero
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import Actor, ActorRole
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    AssignmentNotFoundError,
    InvalidAmountError,
    InvalidAssignmentTransitionError,
    UnqualifiedCompleterError,
)
from ledger_kernel.models.cleaning import AssignmentStatus
from ledger_kernel.models.posting import SourceType

START = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def assignment(payroll, apartment, cleaner, host):
    apartment_id, apartment_name, _ = apartment
    return payroll.schedule_assignment(apartment_id, apartment_name, cleaner.actor_id, START, host)


@pytest.fixture
def completed(payroll, assignment, cleaner):
    return payroll.record_cleaning_payroll(assignment.assignment_id, Decimal("2.5"), cleaner)


class TestScheduleAssignment:

    def test_scheduled_with_default_rate(self, assignment, cleaner, host):
        assert assignment.status == AssignmentStatus.SCHEDULED.value
        assert assignment.hourly_rate == Decimal("5.00")
        assert assignment.assigned_to_id == cleaner.actor_id
        assert assignment.assigned_by_id == host.actor_id
        assert assignment.payroll_correlation_id is None

    def test_explicit_rate(self, payroll, apartment, cleaner, host):
        apartment_id, apartment_name, _ = apartment

        record = payroll.schedule_assignment(
            apartment_id, apartment_name, cleaner.actor_id, START, host,
            hourly_rate=Decimal("6.5"), stay_id=uuid4(), notes="Deep clean",
        )

        assert record.hourly_rate == Decimal("6.50")
        assert record.notes == "Deep clean"

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
    def test_non_positive_rate_rejected(self, payroll, apartment, cleaner, host, rate):
        apartment_id, apartment_name, _ = apartment

        with pytest.raises(InvalidAmountError):
            payroll.schedule_assignment(
                apartment_id, apartment_name, cleaner.actor_id, START, host, hourly_rate=rate
            )

    def test_unknown_assignment(self, payroll):
        with pytest.raises(AssignmentNotFoundError):
            payroll.get_assignment(uuid4())


class TestUpdateAssignment:

    def test_reassign_records_new_assigner(self, payroll, assignment):
        manager = Actor(actor_id=uuid4(), name="Mila", role=ActorRole.MANAGER.value)
        other_cleaner = uuid4()

        record = payroll.update_assignment(
            assignment.assignment_id, {"assigned_to_id": other_cleaner}, manager
        )

        assert record.assigned_to_id == other_cleaner
        assert record.assigned_by_id == manager.actor_id

    def test_update_rate_and_notes(self, payroll, assignment, host):
        record = payroll.update_assignment(
            assignment.assignment_id,
            {"hourly_rate": Decimal("7"), "notes": "Bring ladder"},
            host,
        )

        assert record.hourly_rate == Decimal("7.00")
        assert record.notes == "Bring ladder"
        assert record.assigned_by_id == host.actor_id

    def test_invalid_rate(self, payroll, assignment, host):
        with pytest.raises(InvalidAmountError):
            payroll.update_assignment(assignment.assignment_id, {"hourly_rate": Decimal("0")}, host)

    def test_unknown_field(self, payroll, assignment, host):
        with pytest.raises(ValueError, match="total_cost"):
            payroll.update_assignment(assignment.assignment_id, {"total_cost": Decimal("1")}, host)

    def test_cancel_scheduled(self, payroll, assignment, host, posting_selector):
        record = payroll.update_assignment(
            assignment.assignment_id, {"status": AssignmentStatus.CANCELLED}, host
        )

        assert record.status == AssignmentStatus.CANCELLED.value
        assert posting_selector.postings_by_source(
            SourceType.CLEANING_PAYROLL_REVERSAL, assignment.assignment_id
        ) == ()

    def test_cancel_must_be_only_change(self, payroll, assignment, host):
        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.update_assignment(
                assignment.assignment_id, {"status": "cancelled", "notes": "x"}, host
            )

        assert payroll.get_assignment(assignment.assignment_id).status == "scheduled"

    def test_complete_through_update_rejected(self, payroll, assignment, host):
        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.update_assignment(assignment.assignment_id, {"status": "completed"}, host)

    def test_completed_assignment_not_updatable(self, payroll, completed, host):
        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.update_assignment(
                completed.assignment.assignment_id, {"notes": "late edit"}, host
            )


class TestRecordCleaningPayroll:

    def test_accrues_pay(self, payroll, completed, registry, cleaner, deterministic_clock):
        accounts = registry.payroll_accounts_for(cleaner.actor_id)
        record = completed.assignment

        assert record.status == AssignmentStatus.COMPLETED.value
        assert record.hours_spent == Decimal("2.5")
        assert record.total_cost == Decimal("12.50")
        assert record.completed_by_id == cleaner.actor_id
        assert record.payroll_correlation_id == completed.posted.correlation_id
        assert record.actual_end == deterministic_clock.now()

        debit, credit = completed.posted.postings
        assert (debit.account_code, debit.debit) == (accounts.net_salary.code, Decimal("12.50"))
        assert (credit.account_code, credit.credit) == (accounts.payable.code, Decimal("12.50"))
        assert debit.source_type == SourceType.CLEANING_PAYROLL.value
        assert debit.source_id == record.assignment_id
        assert debit.description == "Cleaning Sunny Loft - Ana Clean (2.5h x 5.00)"
        assert registry.get_account(accounts.net_salary.code).cached_balance == Decimal("12.50")
        assert registry.get_account(accounts.payable.code).cached_balance == Decimal("12.50")

    def test_rate_override(self, payroll, assignment, cleaner):
        result = payroll.record_cleaning_payroll(
            assignment.assignment_id, Decimal("3"), cleaner, Decimal("6.00")
        )

        assert result.assignment.total_cost == Decimal("18.00")
        assert result.assignment.hourly_rate == Decimal("6.00")

    @pytest.mark.parametrize("hours", [Decimal("0"), Decimal("-2"), None])
    def test_hours_must_be_positive(self, payroll, assignment, cleaner, hours):
        with pytest.raises(InvalidAmountError):
            payroll.record_cleaning_payroll(assignment.assignment_id, hours, cleaner)

    def test_completer_must_hold_payroll_role(self, payroll, assignment, host):
        with pytest.raises(UnqualifiedCompleterError):
            payroll.record_cleaning_payroll(assignment.assignment_id, Decimal("2"), host)

        assert payroll.get_assignment(assignment.assignment_id).status == "scheduled"

    def test_completer_without_payroll_accounts(self, payroll, assignment, posting_selector):
        newcomer = Actor(actor_id=uuid4(), name="Nina", role=ActorRole.CLEANING_LADY.value)

        with pytest.raises(AccountNotFoundError):
            payroll.record_cleaning_payroll(assignment.assignment_id, Decimal("2"), newcomer)

        assert payroll.get_assignment(assignment.assignment_id).status == "scheduled"
        assert posting_selector.postings_by_source(
            SourceType.CLEANING_PAYROLL, assignment.assignment_id
        ) == ()

    def test_cannot_complete_twice(self, payroll, completed, cleaner, posting_selector):
        assignment_id = completed.assignment.assignment_id

        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.record_cleaning_payroll(assignment_id, Decimal("1"), cleaner)

        assert len(posting_selector.postings_by_source(SourceType.CLEANING_PAYROLL, assignment_id)) == 2

    def test_cannot_complete_cancelled(self, payroll, assignment, cleaner, host):
        payroll.update_assignment(assignment.assignment_id, {"status": "cancelled"}, host)

        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.record_cleaning_payroll(assignment.assignment_id, Decimal("1"), cleaner)


class TestCancelCompletedAssignment:

    def test_reversal_nets_to_zero(self, payroll, completed, registry, posting_selector, host, cleaner):
        original_id = completed.posted.correlation_id

        result = payroll.cancel_completed_assignment(completed.assignment.assignment_id, host)

        assert result.assignment.status == AssignmentStatus.CANCELLED.value
        assert all(p.reversal_of == original_id for p in result.posted.postings)
        assert all(
            p.source_type == SourceType.CLEANING_PAYROLL_REVERSAL.value for p in result.posted.postings
        )
        assert {p.description for p in result.posted.postings} == {"Cleaning cancelled - Sunny Loft"}

        net = defaultdict(Decimal)
        for posting in posting_selector.postings_by_group(original_id) + result.posted.postings:
            net[posting.account_code] += posting.debit - posting.credit
        assert set(net.values()) == {Decimal("0")}

        accounts = registry.payroll_accounts_for(cleaner.actor_id)
        assert registry.get_account(accounts.net_salary.code).cached_balance == Decimal("0")
        assert registry.get_account(accounts.payable.code).cached_balance == Decimal("0")

    def test_scheduled_assignment_rejected(self, payroll, assignment, host):
        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.cancel_completed_assignment(assignment.assignment_id, host)

    def test_cannot_cancel_twice(self, payroll, completed, host, posting_selector):
        assignment_id = completed.assignment.assignment_id
        payroll.cancel_completed_assignment(assignment_id, host)

        with pytest.raises(InvalidAssignmentTransitionError):
            payroll.cancel_completed_assignment(assignment_id, host)

        assert len(
            posting_selector.postings_by_source(SourceType.CLEANING_PAYROLL_REVERSAL, assignment_id)
        ) == 2

    def test_unknown_assignment(self, payroll, host):
        with pytest.raises(AssignmentNotFoundError):
            payroll.cancel_completed_assignment(uuid4(), host)

    def test_reversal_logged(self, payroll, completed, host, captured_logs):
        payroll.cancel_completed_assignment(completed.assignment.assignment_id, host)

        reversed_ = [r for r in captured_logs() if r["message"] == "cleaning_payroll_reversed"]
        assert len(reversed_) == 1
        assert reversed_[0]["reversal_of"] == str(completed.posted.correlation_id)
        assert reversed_[0]["operation"] == "cancel_completed_assignment"
