"""
ReconciliationService -- cached balance validation and repair.

Responsibility:
    Recomputes account balances from the posting log, compares them with
    the cached balances, repairs drift, and renders running-balance
    timelines.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the periodic sweep (``ledger_services.reconciliation_sweep``)
    and the admin CLI.

Invariants enforced:
    - The posting log is authoritative; the cached balance is only ever
      overwritten with a value recomputed from it.
    - Repairs lock the account row and recompute inside the same
      transaction as the write, so a concurrent posting cannot slip between
      the read and the overwrite.
    - Batch operations isolate each account in its own savepoint; one
      account's failure is recorded and never aborts the batch.

Failure modes:
    - AccountNotFoundError for unknown codes (single-account operations).
    - BalanceWriteConflictError when a concurrent writer changed the row.

Audit relevance:
    Every mismatch and every repair is logged with old and new balance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.balance_rules import (
    BALANCE_TOLERANCE,
    ZERO,
    balance_delta,
    within_tolerance,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    BalanceWriteConflictError,
    LedgerError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class BalanceCheck:
    """Cached vs recomputed balance of one account."""

    account_code: str
    cached_balance: Decimal
    recomputed_balance: Decimal
    difference: Decimal
    is_valid: bool


@dataclass(frozen=True)
class RepairResult:
    account_code: str
    old_balance: Decimal
    new_balance: Decimal
    repaired: bool


@dataclass(frozen=True)
class AccountFailure:
    """An account that could not be checked or repaired in a batch."""

    account_code: str
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchReconciliationResult:
    """Outcome of validate_all / repair_all."""

    checked: int
    invalid: tuple[BalanceCheck, ...] = ()
    repaired: tuple[RepairResult, ...] = ()
    errors: tuple[AccountFailure, ...] = ()
    run_at: datetime | None = None

    @property
    def is_clean(self) -> bool:
        return not self.invalid and not self.errors


@dataclass(frozen=True)
class BalanceHistoryEntry:
    posting_date: date
    seq: int
    correlation_id: UUID
    description: str | None
    debit: Decimal
    credit: Decimal
    change: Decimal
    balance: Decimal


@dataclass(frozen=True)
class BalanceHistory:
    """Running-balance timeline of one account."""

    account_code: str
    opening_balance: Decimal
    entries: tuple[BalanceHistoryEntry, ...] = field(default_factory=tuple)

    @property
    def closing_balance(self) -> Decimal:
        return self.entries[-1].balance if self.entries else self.opening_balance


class ReconciliationService(BaseService[Account]):
    """
    Validates and repairs cached account balances.

    Contract:
        Read operations never write.  Repairs flush within the caller's
        transaction.

    Guarantees:
        - After a successful validate_and_repair, the cached balance equals
          the recomputed balance within 0.01.

    Non-goals:
        - Does not correct the posting log; a wrong posting needs a
          reversal group.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._postings = PostingSelector(session)

    def _get(self, account_code: str, lock: bool = False) -> Account:
        stmt = select(Account).where(Account.code == account_code)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        account = self.session.execute(stmt).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(account_code)
        return account

    def _recompute(self, account: Account, as_of: date | None = None) -> Decimal:
        debits, credits = self._postings.totals_for_account(account.code, as_of)
        return balance_delta(account.account_type, debits, credits)

    def recompute_balance(self, account_code: str, as_of: date | None = None) -> Decimal:
        """
        Balance of an account replayed from its postings.

        Args:
            account_code: The account.
            as_of: Include postings dated up to and including this day;
                all postings when omitted.

        Raises:
            AccountNotFoundError: if the account does not exist.
        """
        return self._recompute(self._get(account_code), as_of)

    def validate(self, account_code: str) -> BalanceCheck:
        """Compare the cached balance with the recomputed one."""
        account = self._get(account_code)
        cached = Decimal(account.cached_balance)
        recomputed = self._recompute(account)
        check = BalanceCheck(
            account_code=account_code,
            cached_balance=cached,
            recomputed_balance=recomputed,
            difference=cached - recomputed,
            is_valid=within_tolerance(cached, recomputed),
        )
        if not check.is_valid:
            logger.warning(
                "balance_mismatch_detected",
                extra={
                    "account_code": account_code,
                    "cached_balance": cached,
                    "recomputed_balance": recomputed,
                    "difference": check.difference,
                },
            )
        return check

    def validate_and_repair(self, account_code: str) -> RepairResult:
        """
        Overwrite a drifted cached balance with the recomputed value.

        The account row is locked before recomputing so the write is based
        on the posting log as seen inside this transaction.

        Raises:
            AccountNotFoundError: if the account does not exist.
            BalanceWriteConflictError: if the row changed concurrently.
        """
        account = self._get(account_code, lock=True)
        old_balance = Decimal(account.cached_balance)
        recomputed = self._recompute(account)

        if abs(old_balance - recomputed) <= BALANCE_TOLERANCE:
            return RepairResult(account_code, old_balance, old_balance, repaired=False)

        account.cached_balance = recomputed
        account.updated_by_id = self._actor_id
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise BalanceWriteConflictError(account_code) from exc

        logger.warning(
            "balance_repaired",
            extra={
                "account_code": account_code,
                "old_balance": old_balance,
                "new_balance": recomputed,
            },
        )
        return RepairResult(account_code, old_balance, recomputed, repaired=True)

    def _active_codes(self) -> list[str]:
        return list(
            self.session.execute(
                select(Account.code)
                .where(Account.is_active == True)  # noqa: E712
                .order_by(Account.code)
            ).scalars()
        )

    def validate_all(self) -> BatchReconciliationResult:
        """Validate every active account."""
        invalid: list[BalanceCheck] = []
        errors: list[AccountFailure] = []
        codes = self._active_codes()

        for code in codes:
            savepoint = self.session.begin_nested()
            try:
                check = self.validate(code)
            except (LedgerError, SQLAlchemyError) as exc:
                savepoint.rollback()
                errors.append(self._failure(code, exc))
                continue
            savepoint.commit()
            if not check.is_valid:
                invalid.append(check)

        result = BatchReconciliationResult(
            checked=len(codes),
            invalid=tuple(invalid),
            errors=tuple(errors),
            run_at=self._clock.now(),
        )
        logger.info(
            "reconciliation_validate_all_completed",
            extra={"checked": result.checked, "invalid": len(invalid), "errors": len(errors)},
        )
        return result

    def repair_all(self) -> BatchReconciliationResult:
        """Validate and repair every active account."""
        repaired: list[RepairResult] = []
        errors: list[AccountFailure] = []
        codes = self._active_codes()

        for code in codes:
            savepoint = self.session.begin_nested()
            try:
                result = self.validate_and_repair(code)
            except (LedgerError, SQLAlchemyError) as exc:
                savepoint.rollback()
                errors.append(self._failure(code, exc))
                continue
            savepoint.commit()
            if result.repaired:
                repaired.append(result)

        batch = BatchReconciliationResult(
            checked=len(codes),
            repaired=tuple(repaired),
            errors=tuple(errors),
            run_at=self._clock.now(),
        )
        logger.info(
            "reconciliation_repair_all_completed",
            extra={"checked": batch.checked, "repaired": len(repaired), "errors": len(errors)},
        )
        return batch

    def _failure(self, account_code: str, exc: Exception) -> AccountFailure:
        logger.error(
            "reconciliation_account_failed",
            extra={"account_code": account_code},
            exc_info=exc,
        )
        return AccountFailure(
            account_code=account_code,
            error_code=getattr(exc, "code", type(exc).__name__),
            message=str(exc),
        )

    def balance_history(
        self,
        account_code: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> BalanceHistory:
        """
        Running balance of an account over a date range.

        The opening balance is the recomputed balance at the end of the day
        before ``from_date`` (zero when ``from_date`` is omitted); each
        posting dated within [from_date, to_date] then moves it.
        """
        account = self._get(account_code)
        opening = (
            self._recompute(account, from_date - timedelta(days=1))
            if from_date is not None
            else ZERO
        )

        running = opening
        entries = []
        for posting in self._postings.postings_for_account(account_code, from_date, to_date):
            change = balance_delta(account.account_type, posting.debit, posting.credit)
            running += change
            entries.append(
                BalanceHistoryEntry(
                    posting_date=posting.posting_date,
                    seq=posting.seq,
                    correlation_id=posting.correlation_id,
                    description=posting.description,
                    debit=posting.debit,
                    credit=posting.credit,
                    change=change,
                    balance=running,
                )
            )

        return BalanceHistory(
            account_code=account_code,
            opening_balance=opening,
            entries=tuple(entries),
        )
