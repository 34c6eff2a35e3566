"""
ledger_services -- Package init and public API.

Responsibility:
    Orchestrators that turn business events (guest payments, refunds,
    cleaning payroll) into balanced posting groups, plus the transaction
    runners around them (bounded retry, periodic reconciliation sweep).

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_services/ -> ledger_config/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: ledger_kernel and ledger_engines never import from
      this package.
"""

from ledger_services.cleaning_payroll_service import (
    AssignmentRecord,
    CleaningPayrollService,
    PayrollResult,
)
from ledger_services.reconciliation_sweep import run_reconciliation_sweep
from ledger_services.retry import run_in_transaction, run_with_policy
from ledger_services.stay_payment_service import (
    PaymentReceipt,
    RefundReceipt,
    StayPaymentService,
    overpayment_warning,
)

__all__ = [
    "AssignmentRecord",
    "CleaningPayrollService",
    "PaymentReceipt",
    "PayrollResult",
    "RefundReceipt",
    "StayPaymentService",
    "overpayment_warning",
    "run_in_transaction",
    "run_reconciliation_sweep",
    "run_with_policy",
]
