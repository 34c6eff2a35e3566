"""
ledger_services.retry -- Bounded retry of whole transactions on concurrency conflicts.

Contract:
    ``run_in_transaction`` opens a fresh ``session_scope`` per attempt, runs
    ``operation(session)`` in it and commits.  A ConcurrencyConflict rolls
    the attempt back and, below ``max_attempts``, waits a linearly growing
    backoff and tries again.  Every other error propagates on first sight.

Architecture: ledger_services.  Sits above the kernel's session_scope; the
    kernel services themselves never retry.

Invariants enforced:
    - Never more than ``max_attempts`` attempts.
    - Each attempt starts from a clean transaction; nothing from a failed
      attempt is visible to the next.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import RetryPolicy
from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import ConcurrencyConflict
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def run_in_transaction(
    session_factory: sessionmaker[Session] | None,
    operation: Callable[[Session], T],
    *,
    max_attempts: int = RetryPolicy.max_attempts,
    backoff_seconds: float = RetryPolicy.backoff_seconds,
) -> T:
    """
    Run ``operation`` in its own transaction, retrying on concurrency conflicts.

    Args:
        session_factory: Factory for the per-attempt session; the engine's
            default factory when None.
        operation: Called with the attempt's session; its return value is
            returned after commit.
        max_attempts: Total attempts, >= 1.
        backoff_seconds: Sleep before attempt n+1 is ``backoff_seconds * n``.

    Raises:
        ConcurrencyConflict: the conflict of the last attempt.
        ValueError: if ``max_attempts`` < 1.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            with session_scope(session_factory) as session:
                return operation(session)
        except ConcurrencyConflict as exc:
            if attempt >= max_attempts:
                logger.error(
                    "transaction_retries_exhausted",
                    extra={"attempts": attempt, "error_code": exc.code},
                )
                raise
            logger.warning(
                "transaction_conflict_retry",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error_code": exc.code,
                },
            )
            if backoff_seconds > 0:
                time.sleep(backoff_seconds * attempt)

    raise AssertionError("unreachable")  # pragma: no cover


def run_with_policy(
    session_factory: sessionmaker[Session] | None,
    operation: Callable[[Session], T],
    policy: RetryPolicy,
) -> T:
    """``run_in_transaction`` with limits taken from a RetryPolicy."""
    return run_in_transaction(
        session_factory,
        operation,
        max_attempts=policy.max_attempts,
        backoff_seconds=policy.backoff_seconds,
    )
