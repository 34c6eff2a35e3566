"""
Balance rules -- sign convention, money rounding and fiscal periods.

Responsibility:
    The pure rules every other layer shares: how a debit/credit pair moves
    an account's balance, how amounts are rounded, and which fiscal period a
    date belongs to.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Sign rule: asset/expense balance change is ``debit - credit``;
      liability/revenue balance change is ``credit - debit``.
    - Amounts are never negative on either side of a posting.
    - Fiscal period of a date is its calendar (year, month).

Failure modes:
    - InvalidAccountTypeError for types outside the four kinds.
    - InvalidAmountError for negative debit or credit.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ledger_kernel.exceptions import InvalidAccountTypeError, InvalidAmountError
from ledger_kernel.models.account import AccountType

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Maximum |debits - credits| accepted for a group, and maximum
# |cached - recomputed| accepted for an account.
BALANCE_TOLERANCE = Decimal("0.01")

_DEBIT_NORMAL = frozenset({AccountType.ASSET.value, AccountType.EXPENSE.value})
_CREDIT_NORMAL = frozenset({AccountType.LIABILITY.value, AccountType.REVENUE.value})


def quantize_money(amount: Decimal | int | str) -> Decimal:
    """Round to cents, half up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_account_type(account_type: str, account_code: str | None = None) -> AccountType:
    """Return the AccountType for ``account_type`` or raise InvalidAccountTypeError."""
    value = account_type.value if isinstance(account_type, AccountType) else account_type
    try:
        return AccountType(value)
    except ValueError:
        raise InvalidAccountTypeError(str(account_type), account_code) from None


def balance_delta(account_type: str, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Balance change caused by one posting on an account of ``account_type``.

    Raises:
        InvalidAmountError: if debit or credit is negative.
        InvalidAccountTypeError: if the type is not one of the four kinds.
    """
    if debit < ZERO or credit < ZERO:
        raise InvalidAmountError(
            debit if debit < ZERO else credit,
            "debit and credit must be non-negative",
        )

    kind = validate_account_type(account_type).value
    if kind in _DEBIT_NORMAL:
        return debit - credit
    if kind in _CREDIT_NORMAL:
        return credit - debit
    raise InvalidAccountTypeError(kind)


def fiscal_period(value: date) -> tuple[int, int]:
    """Calendar (year, month) of a date."""
    return value.year, value.month


def within_tolerance(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= BALANCE_TOLERANCE
