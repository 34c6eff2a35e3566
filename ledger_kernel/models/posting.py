"""
Module: ledger_kernel.models.posting
Responsibility: ORM persistence for postings -- the append-only, authoritative
    record of every debit and credit in the ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Append-only: ORM listeners in db/immutability.py reject every UPDATE
      and DELETE of a posting.  Corrections are new groups with debit and
      credit swapped (reversal_of points at the original group).
    - Exactly one side per posting: debit >= 0, credit >= 0, and exactly one
      of them is positive (checked by LedgerService before insert, and by
      CHECK constraints here).
    - Double entry per correlation group: sum(debit) == sum(credit) within
      0.01 (checked by LedgerService before any row is written).
    - seq is strictly monotonic (SequenceService) and unique.

Failure modes:
    - IntegrityError on duplicate seq or a violated CHECK constraint.
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    account_code and account_name are snapshots taken at posting time; later
    renames of the account never alter historical postings.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class SourceType(str, Enum):
    """Business event that produced a correlation group."""

    ACCOMMODATION_PAYMENT = "accommodation_payment"
    ACCOMMODATION_REFUND = "accommodation_refund"
    CLEANING_PAYROLL = "cleaning_payroll"
    CLEANING_PAYROLL_REVERSAL = "cleaning_payroll_reversal"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"
    OTHER = "other"


class Posting(TrackedBase):
    """
    One immutable debit-or-credit entry against an account.

    Contract:
        Created only by LedgerService.post_group as part of a balanced
        correlation group.  Never updated, never deleted.

    Guarantees:
        - fiscal_year/fiscal_month default to the calendar month of
          posting_date; revenue postings may carry the month the revenue
          economically belongs to.
        - debit and credit are non-negative and exactly one is positive.

    Non-goals:
        - No foreign key to accounts: postings reference accounts by code
          snapshot, not by live pointer.
    """

    __tablename__ = "postings"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_posting_seq"),
        Index("idx_posting_account_period", "account_code", "fiscal_year", "fiscal_month"),
        Index("idx_posting_correlation", "correlation_id"),
        Index("idx_posting_source", "source_type", "source_id"),
        Index("idx_posting_account_date", "account_code", "posting_date"),
        CheckConstraint("debit >= 0", name="ck_posting_debit_non_negative"),
        CheckConstraint("credit >= 0", name="ck_posting_credit_non_negative"),
        CheckConstraint(
            "fiscal_month >= 1 AND fiscal_month <= 12",
            name="ck_posting_fiscal_month",
        ),
    )

    seq: Mapped[int] = mapped_column(
        nullable=False,
    )

    posting_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    fiscal_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    fiscal_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Snapshot of the account at posting time
    account_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    account_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    credit: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    correlation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    source_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    source_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    note: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    document_number: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Correlation id of the group this posting reverses
    reversal_of: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        side = f"Dr {self.debit}" if self.debit else f"Cr {self.credit}"
        return f"<Posting #{self.seq} {self.account_code} {side}>"

    @property
    def amount(self) -> Decimal:
        """The positive side of this posting."""
        return self.debit if self.debit > 0 else self.credit
