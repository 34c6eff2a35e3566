"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The posting log is the authoritative financial record.  Cached balances can
be recomputed from it, but only if nobody edits it.  Corrections are always
new correlation groups with debit and credit swapped.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_flush]  ------> _check_account_deletion_before_flush()
         |
    [before_update] ------> _check_posting_immutability() / account checks
         |
    [before_delete] ------> _check_posting_delete()
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError is raised and the transaction
is aborted.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity   | Rule
---------|-------------------------------------------------------------
Posting  | Never updated, never deleted
Account  | Never deleted (codes are never reused); code and account_type
         | never change after creation

Account name, description, is_active, cached_balance and the audit columns
remain mutable.

===============================================================================
USAGE
===============================================================================

Called once at startup (create_tables does it):

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from ledger_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields of an account that are fixed at creation
ACCOUNT_STRUCTURAL_FIELDS = frozenset({"code", "account_type"})


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Reject hard deletion of accounts.

    Runs in SessionEvents.before_flush, BEFORE the flush plan is finalized;
    mapper-level events fire too late to prevent a deletion.
    """
    from ledger_kernel.models.account import Account

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Account",
                "entity_id": str(obj.id),
                "account_code": obj.code,
                "operation": "DELETE",
            },
        )
        raise ImmutabilityViolationError(
            entity_type="Account",
            entity_id=obj.code,
            reason="Accounts are never deleted; deactivate instead",
        )


def _check_account_structural_immutability(mapper, connection, target):
    """Prevent changes to an account's code or type."""
    from ledger_kernel.models.account import Account

    if not isinstance(target, Account):
        return

    changed = sorted(
        field for field in ACCOUNT_STRUCTURAL_FIELDS
        if get_history(target, field).has_changes()
    )
    if not changed:
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Account",
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Account",
        entity_id=str(target.id),
        reason=f"Cannot modify structural field(s) {changed}",
    )


def _check_posting_immutability(mapper, connection, target):
    """Prevent any update of a posting."""
    from ledger_kernel.models.posting import Posting

    if not isinstance(target, Posting):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Posting",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Posting",
        entity_id=str(target.id),
        reason="Postings are append-only; post a reversal instead",
    )


def _check_posting_delete(mapper, connection, target):
    """Prevent deletion of a posting."""
    from ledger_kernel.models.posting import Posting

    if not isinstance(target, Posting):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Posting",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Posting",
        entity_id=str(target.id),
        reason="Postings cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.posting import Posting

    _safe_add_listener(Session, "before_flush", _check_account_deletion_before_flush)
    _safe_add_listener(Account, "before_update", _check_account_structural_immutability)
    _safe_add_listener(Posting, "before_update", _check_posting_immutability)
    _safe_add_listener(Posting, "before_delete", _check_posting_delete)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.posting import Posting

    _safe_remove_listener(Session, "before_flush", _check_account_deletion_before_flush)
    _safe_remove_listener(Account, "before_update", _check_account_structural_immutability)
    _safe_remove_listener(Posting, "before_update", _check_posting_immutability)
    _safe_remove_listener(Posting, "before_delete", _check_posting_delete)
