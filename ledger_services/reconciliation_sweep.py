"""
ledger_services.reconciliation_sweep -- Entry point for the periodic balance sweep.

Contract:
    ``run_reconciliation_sweep`` is what the external scheduler calls (the
    trigger itself lives outside this package).  It opens its own
    transactional scope, validates every active account and, when
    ``repair`` is set, overwrites drifted cached balances.  Per-account
    failures are part of the result, not exceptions.

Architecture: ledger_services.  Wraps ReconciliationService (kernel) in a
    session_scope.

Invariants enforced:
    - One transaction per sweep; each account in its own savepoint inside it.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.reconciliation_service import (
    BatchReconciliationResult,
    ReconciliationService,
)

logger = get_logger("services.reconciliation_sweep")


def run_reconciliation_sweep(
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
    *,
    repair: bool = True,
    actor_id: UUID = SYSTEM_ACTOR_ID,
) -> BatchReconciliationResult:
    """
    Validate (and by default repair) the cached balance of every active account.

    Args:
        session_factory: Factory for the sweep's session; the engine's
            default factory when None.
        clock: Stamps ``run_at`` on the result.
        repair: Repair drift instead of only reporting it.
        actor_id: Recorded as updated_by on repaired accounts.

    Returns:
        The batch result, committed.
    """
    clock = clock or SystemClock()
    started = clock.now()

    with LogContext.bind(actor_id=actor_id, operation="reconciliation_sweep"):
        logger.info("reconciliation_sweep_started", extra={"repair": repair})
        with session_scope(session_factory) as session:
            service = ReconciliationService(session, clock, actor_id=actor_id)
            result = service.repair_all() if repair else service.validate_all()

        logger.info(
            "reconciliation_sweep_completed",
            extra={
                "repair": repair,
                "checked": result.checked,
                "invalid": len(result.invalid),
                "repaired": len(result.repaired),
                "errors": len(result.errors),
                "started_at": started,
                "clean": result.is_clean,
            },
        )
    return result
