"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (request handlers, the periodic sweep, the retry
runner) must decide what to do with a failure without parsing messages:
report it, abort, or retry. Every exception here therefore:

  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        payments.record_cash_payment(stay, amount, actor, payment_date)
    except UnresolvedOverpaymentError as e:
        ask_operator(e.overpayment, e.total_stay)
    except ConcurrencyConflict:
        retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError                 reported, never retried
    |   +-- InvalidAmountError
    |   +-- InvalidStayDatesError
    |   +-- InvalidAccountTypeError
    |   +-- InvalidCodePrefixError
    |   +-- InvalidSourceTypeError
    |   +-- AccountAlreadyExistsError
    |   +-- InvalidAssignmentTransitionError
    |   +-- UnqualifiedCompleterError
    |   +-- IneligibleRoleError
    |
    +-- NotFoundError                   reported
    |   +-- AccountNotFoundError
    |   +-- CashRegisterNotFoundError
    |   +-- CorrelationGroupNotFoundError
    |   +-- AssignmentNotFoundError
    |
    +-- ConsistencyError                aborted, nothing persisted
    |   +-- UnbalancedGroupError
    |   +-- RefundExceedsPaidError
    |   +-- AccountReferencedError
    |   +-- AccountInactiveError
    |   +-- UnresolvedOverpaymentError
    |
    +-- ConcurrencyConflict             retry a bounded number of times
    |   +-- AccountCodeConflictError
    |   +-- BalanceWriteConflictError
    |
    +-- StorageError                    scope aborted, surfaced
    |
    +-- ImmutabilityViolationError      append-only rule broken

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|----------------------------------
Validation   | INVALID_AMOUNT                | Negative/zero amount, bad line
             | INVALID_STAY_DATES            | check_out <= check_in
             | INVALID_ACCOUNT_TYPE          | Type outside the four kinds
             | INVALID_CODE_PREFIX           | Empty prefix for code allocation
             | ACCOUNT_ALREADY_EXISTS        | Duplicate account code
             | INVALID_ASSIGNMENT_TRANSITION | State machine violation
             | UNQUALIFIED_COMPLETER         | Completer lacks payroll role
             | INELIGIBLE_ROLE               | Role gets no such account
-------------|-------------------------------|----------------------------------
Not found    | ACCOUNT_NOT_FOUND             | Unknown account code
             | CASH_REGISTER_NOT_FOUND       | Actor has no active register
             | CORRELATION_GROUP_NOT_FOUND   | No postings for correlation id
             | ASSIGNMENT_NOT_FOUND          | Unknown cleaning assignment
-------------|-------------------------------|----------------------------------
Consistency  | UNBALANCED_GROUP              | Debits != credits (> 0.01)
             | REFUND_EXCEEDS_PAID           | Refund above total paid
             | ACCOUNT_REFERENCED            | Deactivating a used account
             | ACCOUNT_INACTIVE              | Posting to/deactivating inactive
             | UNRESOLVED_OVERPAYMENT        | Payment exceeds stay remainder
-------------|-------------------------------|----------------------------------
Concurrency  | ACCOUNT_CODE_CONFLICT         | Concurrent create of same code
             | BALANCE_WRITE_CONFLICT        | Cached balance row changed
-------------|-------------------------------|----------------------------------
Storage      | STORAGE_ERROR                 | Database failure mid-scope
Immutability | IMMUTABILITY_VIOLATION        | Update/delete of a posting
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerError):
    """Base exception for invalid caller input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount is negative, zero where a positive value is required, or malformed."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal | None, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidStayDatesError(ValidationError):
    """Check-out is not after check-in."""

    code: str = "INVALID_STAY_DATES"

    def __init__(self, check_in: str, check_out: str):
        self.check_in = check_in
        self.check_out = check_out
        super().__init__(
            f"Check-in date {check_in} must be before check-out date {check_out}"
        )


class InvalidAccountTypeError(ValidationError):
    """Account type is not asset, liability, revenue or expense."""

    code: str = "INVALID_ACCOUNT_TYPE"

    def __init__(self, account_type: str, account_code: str | None = None):
        self.account_type = account_type
        self.account_code = account_code
        target = f" for account {account_code}" if account_code else ""
        super().__init__(f"Invalid account type {account_type!r}{target}")


class InvalidCodePrefixError(ValidationError):
    """Code prefix is empty."""

    code: str = "INVALID_CODE_PREFIX"

    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(f"Invalid account code prefix: {prefix!r}")


class InvalidSourceTypeError(ValidationError):
    """Posting group source type is not a known SourceType."""

    code: str = "INVALID_SOURCE_TYPE"

    def __init__(self, source_type: str):
        self.source_type = source_type
        super().__init__(f"Invalid posting source type: {source_type!r}")


class AccountAlreadyExistsError(ValidationError):
    """An account with this code (or for this owner) already exists."""

    code: str = "ACCOUNT_ALREADY_EXISTS"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account already exists: {account_code}")


class InvalidAssignmentTransitionError(ValidationError):
    """Cleaning assignment state machine violation."""

    code: str = "INVALID_ASSIGNMENT_TRANSITION"

    def __init__(self, assignment_id: str, from_status: str, to_status: str, reason: str):
        self.assignment_id = assignment_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        super().__init__(
            f"Cannot move assignment {assignment_id} from {from_status} "
            f"to {to_status}: {reason}"
        )


class UnqualifiedCompleterError(ValidationError):
    """The worker completing an assignment does not hold a payroll role."""

    code: str = "UNQUALIFIED_COMPLETER"

    def __init__(self, actor_id: str, role: str):
        self.actor_id = actor_id
        self.role = role
        super().__init__(
            f"Actor {actor_id} with role {role} cannot complete a cleaning assignment"
        )


class IneligibleRoleError(ValidationError):
    """An employee's role does not qualify for the requested account."""

    code: str = "INELIGIBLE_ROLE"

    def __init__(self, employee_id: str, role: str, account_kind: str):
        self.employee_id = employee_id
        self.role = role
        self.account_kind = account_kind
        super().__init__(
            f"Employee {employee_id} with role {role} does not get a {account_kind}"
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(LedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """Account with given code was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account not found: {account_code}")


class CashRegisterNotFoundError(NotFoundError):
    """Actor has no active cash register account."""

    code: str = "CASH_REGISTER_NOT_FOUND"

    def __init__(self, employee_id: str, role: str | None = None):
        self.employee_id = employee_id
        self.role = role
        super().__init__(
            f"Cash register not found for employee {employee_id}"
            + (f" with role {role}" if role else "")
        )


class CorrelationGroupNotFoundError(NotFoundError):
    """No postings exist for a correlation id."""

    code: str = "CORRELATION_GROUP_NOT_FOUND"

    def __init__(self, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(f"No postings found for correlation group {correlation_id}")


class AssignmentNotFoundError(NotFoundError):
    """Cleaning assignment with given id was not found."""

    code: str = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Cleaning assignment not found: {assignment_id}")


# =============================================================================
# Consistency
# =============================================================================


class ConsistencyError(LedgerError):
    """Base exception for operations that would break ledger consistency."""

    code: str = "CONSISTENCY_ERROR"


class UnbalancedGroupError(ConsistencyError):
    """Debits do not equal credits within a correlation group."""

    code: str = "UNBALANCED_GROUP"

    def __init__(self, debits: Decimal, credits: Decimal, line_count: int):
        self.debits = debits
        self.credits = credits
        self.line_count = line_count
        super().__init__(
            f"Posting group is unbalanced: debits={debits}, credits={credits}, "
            f"lines={line_count}"
        )


class RefundExceedsPaidError(ConsistencyError):
    """Refund amount is greater than everything paid so far."""

    code: str = "REFUND_EXCEEDS_PAID"

    def __init__(self, refund_amount: Decimal, total_paid: Decimal):
        self.refund_amount = refund_amount
        self.total_paid = total_paid
        super().__init__(
            f"Cannot refund {refund_amount:.2f}. Only {total_paid:.2f} has been paid."
        )


class AccountReferencedError(ConsistencyError):
    """Account is referenced by postings and cannot be deactivated or removed."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_code: str, posting_count: int | None = None):
        self.account_code = account_code
        self.posting_count = posting_count
        suffix = f" ({posting_count} postings)" if posting_count is not None else ""
        super().__init__(f"Account {account_code} is referenced by postings{suffix}")


class AccountInactiveError(ConsistencyError):
    """Account is deactivated."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account is inactive: {account_code}")


class UnresolvedOverpaymentError(ConsistencyError):
    """Payment exceeds what the stay still owes and no overpayment policy allows it."""

    code: str = "UNRESOLVED_OVERPAYMENT"

    def __init__(
        self,
        stay_id: str,
        overpayment: Decimal,
        total_stay: Decimal,
        total_paid: Decimal,
    ):
        self.stay_id = stay_id
        self.overpayment = overpayment
        self.total_stay = total_stay
        self.total_paid = total_paid
        super().__init__(
            f"Payment for stay {stay_id} results in an overpayment of "
            f"{overpayment:.2f}. Total stay amount: {total_stay:.2f}. "
            f"Total paid (including this payment): {total_paid:.2f}."
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyConflict(LedgerError):
    """Base exception for conflicts the caller may retry."""

    code: str = "CONCURRENCY_CONFLICT"


class AccountCodeConflictError(ConcurrencyConflict):
    """Another transaction created the same account code first."""

    code: str = "ACCOUNT_CODE_CONFLICT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(
            f"Account code {account_code} was taken by a concurrent transaction"
        )


class BalanceWriteConflictError(ConcurrencyConflict):
    """Cached balance row was modified by another transaction."""

    code: str = "BALANCE_WRITE_CONFLICT"

    def __init__(self, account_code: str | None = None):
        self.account_code = account_code
        target = account_code or "unknown account"
        super().__init__(
            f"Concurrent balance write detected on {target}: "
            "row was modified by another transaction"
        )


# =============================================================================
# Storage / immutability
# =============================================================================


class StorageError(LedgerError):
    """The database failed while the transactional scope was open."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class ImmutabilityViolationError(LedgerError):
    """
    Attempted to modify or delete an immutable record.

    Postings are append-only; accounts are never deleted and their code and
    type never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
