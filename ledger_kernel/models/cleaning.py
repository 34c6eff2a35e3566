"""
Module: ledger_kernel.models.cleaning
Responsibility: ORM persistence for cleaning assignments -- the financially
    relevant part of the cleaning schedule (status, hours, rate, cost, and
    the correlation group of the payroll accrual).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status follows scheduled -> completed -> cancelled, or
      scheduled -> cancelled directly (enforced by CleaningPayrollService).
    - total_cost == hours_spent * hourly_rate once completed.
    - payroll_correlation_id is set exactly when the payroll accrual has been
      posted; cancellation reverses that group.

Failure modes:
    - AssignmentNotFoundError for unknown ids.
    - InvalidAssignmentTransitionError on state machine violations.

Audit relevance:
    payroll_correlation_id links the assignment to its accrual postings, and
    the reversal group links back to it via Posting.reversal_of.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AssignmentStatus(str, Enum):
    """Lifecycle status of a cleaning assignment."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CleaningAssignment(TrackedBase):
    """
    A scheduled apartment cleaning and its payroll outcome.

    Contract:
        Scheduling fields (assigned_to_id, scheduled_start, hourly_rate,
        notes) may change only while the assignment is scheduled.
        Completion and cancellation of a completed assignment go through
        CleaningPayrollService so that the ledger stays in step.
    """

    __tablename__ = "cleaning_assignments"

    __table_args__ = (
        Index("idx_cleaning_status_start", "status", "scheduled_start"),
        Index("idx_cleaning_assigned_status", "assigned_to_id", "status"),
        Index("idx_cleaning_apartment_status", "apartment_id", "status"),
    )

    apartment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    apartment_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    stay_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    assigned_to_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    assigned_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    actual_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AssignmentStatus.SCHEDULED.value,
    )

    hourly_rate: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    hours_spent: Mapped[Decimal | None] = mapped_column(
        nullable=True,
    )

    total_cost: Mapped[Decimal | None] = mapped_column(
        nullable=True,
    )

    completed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    payroll_correlation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<CleaningAssignment {self.id} {self.status}>"

    @property
    def status_enum(self) -> AssignmentStatus:
        return AssignmentStatus(self.status)
