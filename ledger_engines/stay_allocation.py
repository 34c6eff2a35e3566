"""
Module: ledger_engines.stay_allocation
Responsibility:
    Pure computation of how a stay's revenue, a guest payment and a guest
    refund spread over fiscal months.  Payments fill the stay's months
    earliest first; refunds unwind the months that actually received money,
    latest first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Called by ``ledger_services.stay_payment_service``.

Invariants enforced:
    - A night belongs to the month of its date; the check-out day is not a
      night.
    - A payment is never allocated beyond what a month still owes; the
      rest is surfaced as ``overpayment``, never absorbed.
    - Refund months come from posting history only, never from the current
      stay dates: a shortened stay does not move where the money was
      booked.
    - All amounts are rounded to cents with ROUND_HALF_UP.

Failure modes:
    - InvalidStayDatesError: check_in >= check_out.
    - InvalidAmountError: non-positive nightly rate, payment or refund.
    - RefundExceedsPaidError: refund larger than everything paid.

Audit relevance:
    monthly_revenue, allocate_payment and allocate_refund emit a
    LEDGER_ENGINE_TRACE record through ``@traced_engine``.  The helpers
    nights_by_fiscal_month and paid_by_month are not traced on their own;
    they run inside those three.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Protocol

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.balance_rules import ZERO, quantize_money
from ledger_kernel.domain.dtos import Stay
from ledger_kernel.exceptions import (
    InvalidAmountError,
    InvalidStayDatesError,
    RefundExceedsPaidError,
)

ENGINE_VERSION = "1.0"


class PeriodAmounts(Protocol):
    """Anything carrying a fiscal period and debit/credit amounts (a posting)."""

    fiscal_year: int
    fiscal_month: int
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class MonthlyNights:
    """Nights of a stay falling in one fiscal month."""

    fiscal_year: int
    fiscal_month: int
    nights: int
    start_date: date
    end_date: date  # last night in the month

    @property
    def period(self) -> tuple[int, int]:
        return self.fiscal_year, self.fiscal_month


@dataclass(frozen=True)
class MonthlyRevenue:
    fiscal_year: int
    fiscal_month: int
    nights: int
    amount: Decimal


@dataclass(frozen=True)
class MonthlyAmount:
    """Part of a payment or refund booked into one fiscal month."""

    fiscal_year: int
    fiscal_month: int
    amount: Decimal


@dataclass(frozen=True)
class MonthBreakdown:
    """What a month of the stay is worth, what it received, what it still owes."""

    fiscal_year: int
    fiscal_month: int
    total_amount: Decimal
    paid: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class PaymentAllocation:
    allocations: tuple[MonthlyAmount, ...]
    overpayment: Decimal
    total_stay: Decimal
    total_previously_paid: Decimal
    total_paid: Decimal
    breakdown: tuple[MonthBreakdown, ...]

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)


@dataclass(frozen=True)
class RefundAllocation:
    allocations: tuple[MonthlyAmount, ...]
    total_stay: Decimal
    total_paid: Decimal
    total_after_refund: Decimal
    refund_amount: Decimal


def _next_month(value: date) -> date:
    if value.month == 12:
        return date(value.year + 1, 1, 1)
    return date(value.year, value.month + 1, 1)


def nights_by_fiscal_month(check_in: date, check_out: date) -> tuple[MonthlyNights, ...]:
    """
    Nights of a stay bucketed by calendar month, in chronological order.

    The nights are ``check_in`` up to but excluding ``check_out``.

    Raises:
        InvalidStayDatesError: if ``check_in >= check_out``.
    """
    if check_in >= check_out:
        raise InvalidStayDatesError(str(check_in), str(check_out))

    buckets = []
    current = check_in
    while current < check_out:
        end = min(_next_month(current), check_out)
        buckets.append(
            MonthlyNights(
                fiscal_year=current.year,
                fiscal_month=current.month,
                nights=(end - current).days,
                start_date=current,
                end_date=end - timedelta(days=1),
            )
        )
        current = end
    return tuple(buckets)


@traced_engine("stay_allocation.revenue", ENGINE_VERSION, fingerprint_fields=("stay", "nightly_rate"))
def monthly_revenue(stay: Stay, nightly_rate: Decimal | None = None) -> tuple[MonthlyRevenue, ...]:
    """
    Revenue of each month of a stay: nights x nightly rate.

    Args:
        stay: The stay.
        nightly_rate: Defaults to ``stay.nightly_rate``.

    Raises:
        InvalidAmountError: if the rate is not positive.
    """
    rate = stay.nightly_rate if nightly_rate is None else nightly_rate
    if rate is None or rate <= 0:
        raise InvalidAmountError(rate, "nightly rate must be positive")

    return tuple(
        MonthlyRevenue(
            fiscal_year=month.fiscal_year,
            fiscal_month=month.fiscal_month,
            nights=month.nights,
            amount=quantize_money(Decimal(month.nights) * Decimal(rate)),
        )
        for month in nights_by_fiscal_month(stay.check_in, stay.check_out)
    )


def paid_by_month(prior_postings: Iterable[PeriodAmounts]) -> dict[tuple[int, int], Decimal]:
    """
    Net amount received per fiscal month (credit - debit), chronologically.

    ``prior_postings`` are the revenue-side postings of one stay: payment
    credits and refund debits.
    """
    totals: dict[tuple[int, int], Decimal] = {}
    for posting in prior_postings:
        key = (posting.fiscal_year, posting.fiscal_month)
        totals[key] = totals.get(key, ZERO) + Decimal(posting.credit) - Decimal(posting.debit)
    return {key: quantize_money(totals[key]) for key in sorted(totals)}


@traced_engine(
    "stay_allocation.payment",
    ENGINE_VERSION,
    fingerprint_fields=("stay", "nightly_rate", "new_amount", "prior_postings"),
)
def allocate_payment(
    stay: Stay,
    nightly_rate: Decimal | None,
    new_amount: Decimal,
    prior_postings: Iterable[PeriodAmounts] = (),
) -> PaymentAllocation:
    """
    Spread a new payment over the stay's months, earliest first.

    Each month receives at most what it still owes after prior payments.
    Whatever is left is returned as ``overpayment``.

    Raises:
        InvalidAmountError: if ``new_amount`` or the rate is not positive.
        InvalidStayDatesError: if the stay dates are out of order.
    """
    if new_amount is None or new_amount <= 0:
        raise InvalidAmountError(new_amount, "payment amount must be greater than 0")

    amount = quantize_money(new_amount)
    revenue = monthly_revenue(stay, nightly_rate)
    paid = paid_by_month(prior_postings)

    breakdown = tuple(
        MonthBreakdown(
            fiscal_year=month.fiscal_year,
            fiscal_month=month.fiscal_month,
            total_amount=month.amount,
            paid=paid.get((month.fiscal_year, month.fiscal_month), ZERO),
            remaining=month.amount - paid.get((month.fiscal_year, month.fiscal_month), ZERO),
        )
        for month in revenue
    )

    left = amount
    allocations = []
    for month in breakdown:
        if left <= 0:
            break
        share = min(month.remaining, left)
        if share > 0:
            allocations.append(MonthlyAmount(month.fiscal_year, month.fiscal_month, share))
            left -= share

    total_previously_paid = sum(paid.values(), ZERO)
    return PaymentAllocation(
        allocations=tuple(allocations),
        overpayment=left if left > 0 else ZERO,
        total_stay=sum((m.amount for m in revenue), ZERO),
        total_previously_paid=total_previously_paid,
        total_paid=total_previously_paid + amount,
        breakdown=breakdown,
    )


@traced_engine(
    "stay_allocation.refund",
    ENGINE_VERSION,
    fingerprint_fields=("stay", "refund_amount", "prior_postings"),
)
def allocate_refund(
    stay: Stay,
    refund_amount: Decimal,
    prior_postings: Iterable[PeriodAmounts],
) -> RefundAllocation:
    """
    Take a refund out of the months that received money, latest first.

    The months come from ``prior_postings`` alone; the stay is used only
    for ``total_stay``.  The allocations are returned oldest first.

    Raises:
        InvalidAmountError: if ``refund_amount`` is not positive.
        RefundExceedsPaidError: if the refund is larger than the total paid.
    """
    if refund_amount is None or refund_amount <= 0:
        raise InvalidAmountError(refund_amount, "refund amount must be greater than 0")

    amount = quantize_money(refund_amount)
    paid = paid_by_month(prior_postings)
    total_paid = sum(paid.values(), ZERO)

    if amount > total_paid:
        raise RefundExceedsPaidError(amount, total_paid)

    left = amount
    allocations = []
    for (year, month), received in reversed(list(paid.items())):
        if left <= 0:
            break
        share = min(received, left)
        if share > 0:
            allocations.append(MonthlyAmount(year, month, share))
            left -= share
    allocations.reverse()

    total_stay = sum(
        (m.amount for m in monthly_revenue(stay, stay.nightly_rate)),
        ZERO,
    )
    return RefundAllocation(
        allocations=tuple(allocations),
        total_stay=total_stay,
        total_paid=total_paid,
        total_after_refund=total_paid - amount,
        refund_amount=amount,
    )
