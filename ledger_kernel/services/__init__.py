"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import (
    AccountRegistry,
    ApartmentAccounts,
    EmployeeAccounts,
    PayrollAccounts,
)
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.reconciliation_service import (
    AccountFailure,
    BalanceCheck,
    BalanceHistory,
    BalanceHistoryEntry,
    BatchReconciliationResult,
    ReconciliationService,
    RepairResult,
)
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountFailure",
    "AccountRegistry",
    "ApartmentAccounts",
    "BalanceCheck",
    "BalanceHistory",
    "BalanceHistoryEntry",
    "BatchReconciliationResult",
    "EmployeeAccounts",
    "LedgerService",
    "PayrollAccounts",
    "ReconciliationService",
    "RepairResult",
    "SequenceService",
]
