"""
Module: ledger_engines
Responsibility:
    Pure calculation engines of the ledger.  Re-exports the public symbols
    for higher layers (``ledger_services``).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ``ledger_kernel.domain`` and ``ledger_kernel.exceptions``.
    MUST NOT import ``ledger_services``.

Invariants enforced:
    - Engines never read the clock; dates are passed in.
    - Decimal-only arithmetic for money.
"""

from ledger_engines.stay_allocation import (
    MonthBreakdown,
    MonthlyAmount,
    MonthlyNights,
    MonthlyRevenue,
    PaymentAllocation,
    RefundAllocation,
    allocate_payment,
    allocate_refund,
    monthly_revenue,
    nights_by_fiscal_month,
    paid_by_month,
)
from ledger_engines.tracer import traced_engine

__all__ = [
    "MonthBreakdown",
    "MonthlyAmount",
    "MonthlyNights",
    "MonthlyRevenue",
    "PaymentAllocation",
    "RefundAllocation",
    "allocate_payment",
    "allocate_refund",
    "monthly_revenue",
    "nights_by_fiscal_month",
    "paid_by_month",
    "traced_engine",
]
