"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    The immutable data structures that cross the ledger boundary: read-only
    inputs from external collaborators (Stay, Actor), posting input lines
    (PostingLine), and the records returned after persistence
    (PostingRecord, PostedGroup, AccountRecord).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from the
    service and selector layers.

Invariants enforced:
    - PostingLine amounts are non-negative with exactly one side set.
    - Stay check-in precedes check-out.

Failure modes:
    - InvalidAmountError on a malformed PostingLine.
    - InvalidStayDatesError on a Stay whose dates are out of order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.exceptions import InvalidAmountError, InvalidStayDatesError

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.posting import Posting as PostingModel

# Actor used for bootstrap and system-initiated writes (seeding, sweeps)
SYSTEM_ACTOR_ID = UUID(int=0)


class ActorRole(str, Enum):
    """Roles of the people who trigger ledger operations."""

    ADMIN = "ADMIN"
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    CLEANING_LADY = "CLEANING_LADY"
    HOST = "HOST"
    HANDY_MAN = "HANDY_MAN"


@dataclass(frozen=True)
class Actor:
    """The person performing an operation, as seen by the ledger."""

    actor_id: UUID
    name: str
    role: str


@dataclass(frozen=True)
class Stay:
    """
    Read-only view of a reservation.

    Contract:
        Supplied by the reservation domain.  The ledger never writes it.

    Guarantees:
        - check_in < check_out
    """

    stay_id: UUID
    apartment_id: UUID
    apartment_name: str
    check_in: date
    check_out: date
    nightly_rate: Decimal

    def __post_init__(self) -> None:
        if self.check_in >= self.check_out:
            raise InvalidStayDatesError(str(self.check_in), str(self.check_out))


@dataclass(frozen=True)
class AccountLinks:
    """Optional owner/apartment references and flags for a new account."""

    employee_id: UUID | None = None
    employee_name: str | None = None
    apartment_id: UUID | None = None
    apartment_name: str | None = None
    is_cash_register: bool = False
    description: str | None = None

    def __post_init__(self) -> None:
        if self.employee_id is not None and self.apartment_id is not None:
            raise ValueError("An account is linked to an employee or an apartment, not both")


@dataclass(frozen=True)
class PostingLine:
    """
    One line of a posting group before persistence.

    Contract:
        Names the account by code; exactly one of debit/credit is positive.
        fiscal_year/fiscal_month override the period derived from the
        posting date (revenue recognised in the month it belongs to).

    Guarantees:
        - debit >= 0 and credit >= 0
        - exactly one side is positive
    """

    account_code: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    fiscal_year: int | None = None
    fiscal_month: int | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if self.debit < 0 or self.credit < 0:
            raise InvalidAmountError(
                self.debit if self.debit < 0 else self.credit,
                f"negative amount on line for account {self.account_code}",
            )
        if (self.debit > 0) == (self.credit > 0):
            raise InvalidAmountError(
                self.debit or self.credit,
                f"line for account {self.account_code} must set exactly one of debit/credit",
            )
        if (self.fiscal_year is None) != (self.fiscal_month is None):
            raise ValueError("fiscal_year and fiscal_month must be given together")

    @classmethod
    def debit_line(cls, account_code: str, amount: Decimal, **kwargs) -> PostingLine:
        return cls(account_code=account_code, debit=amount, **kwargs)

    @classmethod
    def credit_line(cls, account_code: str, amount: Decimal, **kwargs) -> PostingLine:
        return cls(account_code=account_code, credit=amount, **kwargs)

    def swapped(self) -> PostingLine:
        """The inverse line: same account and period, sides exchanged."""
        return PostingLine(
            account_code=self.account_code,
            debit=self.credit,
            credit=self.debit,
            fiscal_year=self.fiscal_year,
            fiscal_month=self.fiscal_month,
            description=self.description,
        )


@dataclass(frozen=True)
class PostingRecord:
    """Persisted posting, detached from the ORM."""

    posting_id: UUID
    seq: int
    posting_date: date
    fiscal_year: int
    fiscal_month: int
    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    correlation_id: UUID
    source_type: str
    source_id: UUID | None
    created_by: UUID
    description: str | None = None
    note: str | None = None
    document_number: str | None = None
    reversal_of: UUID | None = None

    @classmethod
    def from_model(cls, model: PostingModel) -> PostingRecord:
        return cls(
            posting_id=model.id,
            seq=model.seq,
            posting_date=model.posting_date,
            fiscal_year=model.fiscal_year,
            fiscal_month=model.fiscal_month,
            account_code=model.account_code,
            account_name=model.account_name,
            debit=Decimal(model.debit),
            credit=Decimal(model.credit),
            correlation_id=model.correlation_id,
            source_type=model.source_type,
            source_id=model.source_id,
            created_by=model.created_by_id,
            description=model.description,
            note=model.note,
            document_number=model.document_number,
            reversal_of=model.reversal_of,
        )

    def to_line(self) -> PostingLine:
        return PostingLine(
            account_code=self.account_code,
            debit=self.debit,
            credit=self.credit,
            fiscal_year=self.fiscal_year,
            fiscal_month=self.fiscal_month,
            description=self.description,
        )


@dataclass(frozen=True)
class BalanceChange:
    """Cached balance movement of one account within a posting group."""

    account_code: str
    old_balance: Decimal
    delta: Decimal
    new_balance: Decimal


@dataclass(frozen=True)
class PostedGroup:
    """Result of LedgerService.post_group."""

    correlation_id: UUID
    postings: tuple[PostingRecord, ...]
    balance_changes: tuple[BalanceChange, ...] = field(default_factory=tuple)

    @property
    def total_debit(self) -> Decimal:
        return sum((p.debit for p in self.postings), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((p.credit for p in self.postings), Decimal("0"))


@dataclass(frozen=True)
class AccountRecord:
    """Account snapshot, detached from the ORM."""

    code: str
    name: str
    account_type: str
    cached_balance: Decimal
    is_cash_register: bool
    is_active: bool
    employee_id: UUID | None = None
    employee_name: str | None = None
    apartment_id: UUID | None = None
    apartment_name: str | None = None
    description: str | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountRecord:
        return cls(
            code=model.code,
            name=model.name,
            account_type=model.account_type,
            cached_balance=Decimal(model.cached_balance),
            is_cash_register=model.is_cash_register,
            is_active=model.is_active,
            employee_id=model.employee_id,
            employee_name=model.employee_name,
            apartment_id=model.apartment_id,
            apartment_name=model.apartment_name,
            description=model.description,
        )
