"""Domain models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.cleaning import AssignmentStatus, CleaningAssignment
from ledger_kernel.models.posting import Posting, SourceType
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "AssignmentStatus",
    "CleaningAssignment",
    "Posting",
    "SequenceCounter",
    "SourceType",
]
