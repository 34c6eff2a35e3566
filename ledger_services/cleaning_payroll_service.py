"""
ledger_services.cleaning_payroll_service -- Cleaning assignments and payroll accrual.

Responsibility:
    Owns the financially relevant state machine of a cleaning assignment.
    Completing an assignment accrues the cleaner's pay (net salary expense
    against the cleaner payable); cancelling a completed assignment posts
    the exact inverse of that accrual.

Architecture position:
    Services -- stateful orchestration over kernel.
    Composes AccountRegistry, LedgerService and PostingSelector.

Invariants enforced:
    - scheduled -> completed -> cancelled, or scheduled -> cancelled with no
      postings.  No other transition exists.
    - total_cost == hours_spent * hourly_rate, rounded to cents.
    - A cancellation reverses the recorded accrual group line for line,
      against the same account codes, with reversal_of pointing at it.
    - Status change and postings happen in one savepoint.

Failure modes:
    - AssignmentNotFoundError: unknown assignment id.
    - InvalidAssignmentTransitionError: wrong status for the operation, or a
      cancellation combined with other changes.
    - InvalidAmountError: hours or rate not positive.
    - UnqualifiedCompleterError: completer does not hold a payroll role.
    - AccountNotFoundError: the completer has no payroll accounts.
    - CorrelationGroupNotFoundError: the accrual to reverse is missing.

Audit relevance:
    - payroll_correlation_id on the assignment links it to its accrual.
    - The reversal group carries reversal_of = payroll_correlation_id and
      source_id = assignment id.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.balance_rules import quantize_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import Actor, PostedGroup, PostingLine
from ledger_kernel.exceptions import (
    AssignmentNotFoundError,
    InvalidAmountError,
    InvalidAssignmentTransitionError,
    UnqualifiedCompleterError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.cleaning import AssignmentStatus, CleaningAssignment
from ledger_kernel.models.posting import SourceType
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_service import LedgerService

logger = get_logger("services.cleaning_payroll")

# Fields that may change while an assignment is scheduled
UPDATABLE_FIELDS = frozenset({"assigned_to_id", "scheduled_start", "hourly_rate", "notes"})


@dataclass(frozen=True)
class AssignmentRecord:
    """Cleaning assignment snapshot, detached from the ORM."""

    assignment_id: UUID
    apartment_id: UUID
    apartment_name: str
    stay_id: UUID | None
    assigned_to_id: UUID
    assigned_by_id: UUID
    scheduled_start: datetime
    status: str
    hourly_rate: Decimal
    hours_spent: Decimal | None = None
    total_cost: Decimal | None = None
    completed_by_id: UUID | None = None
    actual_end: datetime | None = None
    payroll_correlation_id: UUID | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, model: CleaningAssignment) -> AssignmentRecord:
        return cls(
            assignment_id=model.id,
            apartment_id=model.apartment_id,
            apartment_name=model.apartment_name,
            stay_id=model.stay_id,
            assigned_to_id=model.assigned_to_id,
            assigned_by_id=model.assigned_by_id,
            scheduled_start=model.scheduled_start,
            status=model.status,
            hourly_rate=Decimal(model.hourly_rate),
            hours_spent=Decimal(model.hours_spent) if model.hours_spent is not None else None,
            total_cost=Decimal(model.total_cost) if model.total_cost is not None else None,
            completed_by_id=model.completed_by_id,
            actual_end=model.actual_end,
            payroll_correlation_id=model.payroll_correlation_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class PayrollResult:
    """An assignment after a financial transition, with the group posted for it."""

    assignment: AssignmentRecord
    posted: PostedGroup


class CleaningPayrollService:
    """
    Schedules, completes and cancels cleaning assignments.

    Contract:
        Flushes within the caller's transaction and never commits.

    Guarantees:
        - A completed assignment has exactly one accrual group; a cancelled
          completed assignment additionally has exactly one reversal group.

    Non-goals:
        - Cleaning windows, reports and who may schedule whom.
        - Paying out the payable (cash settlement is a separate event).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None,
        config: LedgerConfig,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config
        self._registry = AccountRegistry(session, config.account_policy)
        self._ledger = LedgerService(session, self._clock)
        self._postings = PostingSelector(session)

    def _get(self, assignment_id: UUID, lock: bool = False) -> CleaningAssignment:
        stmt = select(CleaningAssignment).where(CleaningAssignment.id == assignment_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        assignment = self._session.execute(stmt).scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFoundError(str(assignment_id))
        return assignment

    def get_assignment(self, assignment_id: UUID) -> AssignmentRecord:
        return AssignmentRecord.from_model(self._get(assignment_id))

    def schedule_assignment(
        self,
        apartment_id: UUID,
        apartment_name: str,
        assigned_to_id: UUID,
        scheduled_start: datetime,
        actor: Actor,
        *,
        stay_id: UUID | None = None,
        hourly_rate: Decimal | None = None,
        notes: str | None = None,
    ) -> AssignmentRecord:
        """
        Create a scheduled assignment.

        ``hourly_rate`` defaults to the configured cleaning rate.

        Raises:
            InvalidAmountError: if the rate is not positive.
        """
        rate = self._config.default_cleaning_hourly_rate if hourly_rate is None else hourly_rate
        if rate <= 0:
            raise InvalidAmountError(rate, "hourly rate must be greater than 0")

        assignment = CleaningAssignment(
            apartment_id=apartment_id,
            apartment_name=apartment_name,
            stay_id=stay_id,
            assigned_to_id=assigned_to_id,
            assigned_by_id=actor.actor_id,
            scheduled_start=scheduled_start,
            status=AssignmentStatus.SCHEDULED.value,
            hourly_rate=quantize_money(rate),
            notes=notes,
            created_by_id=actor.actor_id,
        )
        self._session.add(assignment)
        self._session.flush()

        logger.info(
            "cleaning_assignment_scheduled",
            extra={
                "assignment_id": str(assignment.id),
                "apartment_id": str(apartment_id),
                "assigned_to_id": str(assigned_to_id),
                "hourly_rate": assignment.hourly_rate,
            },
        )
        return AssignmentRecord.from_model(assignment)

    def update_assignment(
        self,
        assignment_id: UUID,
        changes: dict,
        actor: Actor,
    ) -> AssignmentRecord:
        """
        Change the scheduling fields of a scheduled assignment, or cancel it.

        ``changes`` may hold any of assigned_to_id, scheduled_start,
        hourly_rate and notes.  ``{"status": "cancelled"}`` cancels the
        assignment and must be the only key.  Reassigning records ``actor``
        as the new assigner.

        Raises:
            AssignmentNotFoundError, InvalidAssignmentTransitionError,
            InvalidAmountError, ValueError (unknown field).
        """
        assignment = self._get(assignment_id, lock=True)
        current = assignment.status

        if current != AssignmentStatus.SCHEDULED.value:
            raise InvalidAssignmentTransitionError(
                str(assignment_id),
                current,
                str(changes.get("status", current)),
                "only scheduled assignments can be updated",
            )

        if "status" in changes:
            target = changes["status"]
            target = getattr(target, "value", target)
            if target != AssignmentStatus.CANCELLED.value:
                raise InvalidAssignmentTransitionError(
                    str(assignment_id),
                    current,
                    target,
                    "completion goes through record_cleaning_payroll",
                )
            if len(changes) > 1:
                raise InvalidAssignmentTransitionError(
                    str(assignment_id),
                    current,
                    target,
                    "cancelling cannot be combined with other changes",
                )
            assignment.status = AssignmentStatus.CANCELLED.value
            assignment.updated_by_id = actor.actor_id
            self._session.flush()
            logger.info(
                "cleaning_assignment_cancelled",
                extra={"assignment_id": str(assignment_id), "had_postings": False},
            )
            return AssignmentRecord.from_model(assignment)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update assignment fields: {sorted(unknown)}")

        if "hourly_rate" in changes:
            rate = changes["hourly_rate"]
            if rate is None or rate <= 0:
                raise InvalidAmountError(rate, "hourly rate must be greater than 0")
            assignment.hourly_rate = quantize_money(rate)
        if "assigned_to_id" in changes and changes["assigned_to_id"] != assignment.assigned_to_id:
            assignment.assigned_to_id = changes["assigned_to_id"]
            assignment.assigned_by_id = actor.actor_id
        if "scheduled_start" in changes:
            assignment.scheduled_start = changes["scheduled_start"]
        if "notes" in changes:
            assignment.notes = changes["notes"]

        assignment.updated_by_id = actor.actor_id
        self._session.flush()
        logger.info(
            "cleaning_assignment_updated",
            extra={"assignment_id": str(assignment_id), "fields": sorted(changes)},
        )
        return AssignmentRecord.from_model(assignment)

    def record_cleaning_payroll(
        self,
        assignment_id: UUID,
        hours_spent: Decimal,
        completed_by: Actor,
        rate: Decimal | None = None,
        *,
        actual_end: datetime | None = None,
        notes: str | None = None,
    ) -> PayrollResult:
        """
        Complete an assignment and accrue the cleaner's pay.

        Preconditions:
            - Assignment is scheduled.
            - ``completed_by`` holds a payroll role and has payroll accounts.

        Postconditions:
            - Net salary (expense) debited and cleaner payable (liability)
              credited by ``hours_spent * rate``.
            - Assignment completed, with hours, cost, completer and the
              accrual's correlation id recorded.

        Args:
            assignment_id: The assignment.
            hours_spent: Hours worked, > 0.
            completed_by: The cleaner who did the work.
            rate: Defaults to the assignment's hourly rate.
            actual_end: Defaults to the clock's now.
            notes: Replaces the assignment notes when given.

        Raises:
            AssignmentNotFoundError, InvalidAssignmentTransitionError,
            InvalidAmountError, UnqualifiedCompleterError,
            AccountNotFoundError, BalanceWriteConflictError.
        """
        if hours_spent is None or hours_spent <= 0:
            raise InvalidAmountError(hours_spent, "hours spent must be greater than 0")

        role = getattr(completed_by.role, "value", completed_by.role)
        if not self._registry.policy.is_payroll_role(role):
            raise UnqualifiedCompleterError(str(completed_by.actor_id), role)

        with LogContext.bind(
            actor_id=completed_by.actor_id,
            operation="record_cleaning_payroll",
            source_id=assignment_id,
        ):
            savepoint = self._session.begin_nested()
            try:
                assignment = self._get(assignment_id, lock=True)
                if assignment.status != AssignmentStatus.SCHEDULED.value:
                    raise InvalidAssignmentTransitionError(
                        str(assignment_id),
                        assignment.status,
                        AssignmentStatus.COMPLETED.value,
                        "only scheduled assignments can be completed",
                    )

                hourly_rate = Decimal(assignment.hourly_rate) if rate is None else rate
                if hourly_rate <= 0:
                    raise InvalidAmountError(hourly_rate, "hourly rate must be greater than 0")
                total_cost = quantize_money(Decimal(hours_spent) * Decimal(hourly_rate))

                accounts = self._registry.payroll_accounts_for(completed_by.actor_id)
                description = (
                    f"Cleaning {assignment.apartment_name} - {completed_by.name} "
                    f"({hours_spent}h x {quantize_money(hourly_rate)})"
                )
                posted = self._ledger.post_group(
                    [
                        PostingLine.debit_line(accounts.net_salary.code, total_cost),
                        PostingLine.credit_line(accounts.payable.code, total_cost),
                    ],
                    source_type=SourceType.CLEANING_PAYROLL,
                    source_id=assignment.id,
                    created_by=completed_by.actor_id,
                    posting_date=self._clock.today(),
                    description=description,
                )

                assignment.status = AssignmentStatus.COMPLETED.value
                assignment.hours_spent = Decimal(hours_spent)
                assignment.hourly_rate = quantize_money(hourly_rate)
                assignment.total_cost = total_cost
                assignment.completed_by_id = completed_by.actor_id
                assignment.actual_end = actual_end or self._clock.now()
                assignment.payroll_correlation_id = posted.correlation_id
                if notes is not None:
                    assignment.notes = notes
                assignment.updated_by_id = completed_by.actor_id
                self._session.flush()
            except BaseException:
                savepoint.rollback()
                raise
            savepoint.commit()

            logger.info(
                "cleaning_payroll_recorded",
                extra={
                    "correlation_id": posted.correlation_id,
                    "hours_spent": Decimal(hours_spent),
                    "total_cost": total_cost,
                    "net_salary_account": accounts.net_salary.code,
                    "payable_account": accounts.payable.code,
                },
            )

        return PayrollResult(assignment=AssignmentRecord.from_model(assignment), posted=posted)

    def cancel_completed_assignment(self, assignment_id: UUID, actor: Actor) -> PayrollResult:
        """
        Cancel a completed assignment by reversing its payroll accrual.

        The reversal swaps debit and credit of every line of the accrual
        group, against the same account codes and fiscal periods.

        Raises:
            AssignmentNotFoundError, InvalidAssignmentTransitionError,
            CorrelationGroupNotFoundError, AccountInactiveError,
            BalanceWriteConflictError.
        """
        with LogContext.bind(
            actor_id=actor.actor_id,
            operation="cancel_completed_assignment",
            source_id=assignment_id,
        ):
            savepoint = self._session.begin_nested()
            try:
                assignment = self._get(assignment_id, lock=True)
                if assignment.status != AssignmentStatus.COMPLETED.value:
                    raise InvalidAssignmentTransitionError(
                        str(assignment_id),
                        assignment.status,
                        AssignmentStatus.CANCELLED.value,
                        "only completed assignments can be cancelled with a payroll reversal",
                    )
                if assignment.payroll_correlation_id is None:
                    raise InvalidAssignmentTransitionError(
                        str(assignment_id),
                        assignment.status,
                        AssignmentStatus.CANCELLED.value,
                        "no payroll accrual recorded",
                    )

                original = self._postings.postings_by_group(assignment.payroll_correlation_id)
                posted = self._ledger.post_group(
                    [
                        replace(posting.to_line().swapped(), description=None)
                        for posting in original
                    ],
                    source_type=SourceType.CLEANING_PAYROLL_REVERSAL,
                    source_id=assignment.id,
                    created_by=actor.actor_id,
                    posting_date=self._clock.today(),
                    description=f"Cleaning cancelled - {assignment.apartment_name}",
                    reversal_of=assignment.payroll_correlation_id,
                )

                assignment.status = AssignmentStatus.CANCELLED.value
                assignment.updated_by_id = actor.actor_id
                self._session.flush()
            except BaseException:
                savepoint.rollback()
                raise
            savepoint.commit()

            logger.info(
                "cleaning_payroll_reversed",
                extra={
                    "correlation_id": posted.correlation_id,
                    "reversal_of": original[0].correlation_id,
                    "total": posted.total_debit,
                },
            )

        return PayrollResult(assignment=AssignmentRecord.from_model(assignment), posted=posted)
