"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every posting -- together with its cached running balance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique and never reused (uq_account_code; accounts are never
      hard-deleted, see db/immutability.py).
    - code and account_type never change after creation (ORM listener).
    - cached_balance follows the type-determined sign convention: asset and
      expense accounts increase with debits, liability and revenue accounts
      with credits (applied by LedgerService, checked by
      ReconciliationService).
    - version is an optimistic row version; a concurrent balance write on a
      stale row fails instead of silently losing an update.

Failure modes:
    - AccountNotFoundError when a posting references a non-existent code.
    - AccountInactiveError when a posting targets an inactive account.
    - AccountReferencedError when deactivation is attempted on a used account.

Audit relevance:
    cached_balance is a performance cache only.  The posting log is the
    authoritative record; reconciliation recomputes and repairs the cache.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    REVENUE = "revenue"
    EXPENSE = "expense"


class Account(TrackedBase):
    """
    Chart of accounts entry with its cached balance.

    Contract:
        Account.code is globally unique.  Accounts may be linked to an
        employee (cash registers, payroll accounts) or to an apartment
        (revenue and rent accounts), never both.

    Guarantees:
        - account_type is one of ASSET, LIABILITY, REVENUE, EXPENSE.
        - cached_balance is never written outside LedgerService.post_group
          and ReconciliationService repairs.

    Non-goals:
        - No parent/child hierarchy and no roll-ups.
        - Single currency; no currency column.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_active", "is_active"),
        Index("idx_account_employee", "employee_id"),
        Index("idx_account_apartment", "apartment_id"),
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    cached_balance: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    is_cash_register: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    employee_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    employee_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    apartment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    apartment_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def type_enum(self) -> AccountType:
        """Account type as an enum.

        Raises:
            ValueError: if the stored type is not one of the four kinds.
        """
        return AccountType(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        """True for asset and expense accounts."""
        return self.account_type in (AccountType.ASSET.value, AccountType.EXPENSE.value)
