"""
LedgerService -- atomic posting of balanced correlation groups.

Responsibility:
    The only writer of postings and of account cached balances during
    normal operation.  Validates a group of posting lines, appends them to
    the posting log under one correlation id and moves each touched
    account's cached balance by the type-determined delta.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the orchestrators in ``ledger_services``.

Invariants enforced:
    - Double entry: |sum(debit) - sum(credit)| <= 0.01 for every group,
      and every group has at least two lines.
    - Sign rule: asset/expense accounts move by ``debit - credit``,
      liability/revenue accounts by ``credit - debit``.
    - All-or-nothing: validation happens before any write, and the writes
      run inside a savepoint that is rolled back on failure.
    - Account rows are read ``FOR UPDATE`` (ordered by code) before their
      balance is written; the row version turns a lost update into
      BalanceWriteConflictError.

Failure modes:
    - UnbalancedGroupError: fewer than two lines, or debits != credits.
    - AccountNotFoundError: a line names an unknown account.
    - AccountInactiveError: a line names a deactivated account.
    - InvalidAccountTypeError: a stored account has a corrupt type.
    - InvalidSourceTypeError: source_type is not a SourceType value.
    - BalanceWriteConflictError: a concurrent transaction changed a
      touched account row.

Audit relevance:
    Every group is logged with its correlation id, source and totals.
    Account name and code are snapshotted onto each posting.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.balance_rules import (
    BALANCE_TOLERANCE,
    ZERO,
    balance_delta,
    fiscal_period,
    validate_account_type,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import BalanceChange, PostedGroup, PostingLine, PostingRecord
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    BalanceWriteConflictError,
    InvalidSourceTypeError,
    UnbalancedGroupError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.posting import Posting, SourceType
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService(BaseService[Posting]):
    """
    Posts balanced correlation groups.

    Contract:
        ``post_group`` flushes within the caller's transaction and returns a
        PostedGroup DTO.  The caller commits.

    Guarantees:
        - Either every line of the group is persisted together with every
          balance update, or nothing is.
        - Posting seq values are strictly increasing.

    Non-goals:
        - Does not decide which accounts or amounts to post; orchestrators
          build the lines.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def post_group(
        self,
        lines: Iterable[PostingLine],
        *,
        source_type: SourceType | str,
        created_by: UUID,
        source_id: UUID | None = None,
        posting_date: date | None = None,
        description: str | None = None,
        note: str | None = None,
        document_number: str | None = None,
        reversal_of: UUID | None = None,
        correlation_id: UUID | None = None,
    ) -> PostedGroup:
        """
        Validate and persist a group of posting lines.

        Preconditions:
            - Each line is a PostingLine (amounts already checked).

        Postconditions:
            - One Posting per line, all sharing ``correlation_id``.
            - Each touched account's cached balance moved by its delta.

        Args:
            lines: The posting lines.
            source_type: Business event that produced the group.
            created_by: Actor recorded on every posting.
            source_id: Id of the source entity (stay, assignment).
            posting_date: Defaults to the clock's today.  Lines without an
                explicit fiscal period take the period of this date.
            description: Default description for lines that carry none.
            note: Free text stored on every posting.
            document_number: External document reference.
            reversal_of: Correlation id of the group this one reverses.
            correlation_id: Defaults to a fresh uuid4.

        Returns:
            PostedGroup with the persisted postings and balance changes.

        Raises:
            UnbalancedGroupError, AccountNotFoundError,
            AccountInactiveError, InvalidAccountTypeError,
            InvalidSourceTypeError, BalanceWriteConflictError.
        """
        lines = tuple(lines)
        total_debit = sum((line.debit for line in lines), ZERO)
        total_credit = sum((line.credit for line in lines), ZERO)

        if len(lines) < 2 or abs(total_debit - total_credit) > BALANCE_TOLERANCE:
            logger.warning(
                "posting_group_rejected",
                extra={
                    "total_debit": total_debit,
                    "total_credit": total_credit,
                    "line_count": len(lines),
                },
            )
            raise UnbalancedGroupError(total_debit, total_credit, len(lines))

        try:
            source_value = SourceType(source_type).value
        except ValueError:
            raise InvalidSourceTypeError(str(source_type)) from None
        posting_date = posting_date or self._clock.today()
        correlation_id = correlation_id or uuid4()

        accounts = self._lock_accounts(sorted({line.account_code for line in lines}))

        deltas: dict[str, Decimal] = {code: ZERO for code in accounts}
        for line in lines:
            account = accounts[line.account_code]
            deltas[line.account_code] += balance_delta(
                account.account_type, line.debit, line.credit
            )

        with LogContext.bind(
            correlation_id=correlation_id, source_type=source_value, source_id=source_id
        ):
            savepoint = self.session.begin_nested()
            try:
                postings = [
                    self._append(
                        line,
                        accounts[line.account_code],
                        correlation_id=correlation_id,
                        source_type=source_value,
                        source_id=source_id,
                        created_by=created_by,
                        posting_date=posting_date,
                        description=description,
                        note=note,
                        document_number=document_number,
                        reversal_of=reversal_of,
                    )
                    for line in lines
                ]

                changes = []
                for code, account in accounts.items():
                    old_balance = Decimal(account.cached_balance)
                    new_balance = old_balance + deltas[code]
                    account.cached_balance = new_balance
                    account.updated_by_id = created_by
                    changes.append(
                        BalanceChange(
                            account_code=code,
                            old_balance=old_balance,
                            delta=deltas[code],
                            new_balance=new_balance,
                        )
                    )

                self.session.flush()
            except StaleDataError as exc:
                savepoint.rollback()
                logger.warning("balance_write_conflict", extra={"account_codes": list(accounts)})
                raise BalanceWriteConflictError() from exc
            except BaseException:
                savepoint.rollback()
                raise
            savepoint.commit()

            logger.info(
                "posting_group_posted",
                extra={
                    "source_type": source_value,
                    "posting_count": len(postings),
                    "total_debit": total_debit,
                    "total_credit": total_credit,
                    "account_codes": list(accounts),
                    "reversal_of": reversal_of,
                },
            )

        return PostedGroup(
            correlation_id=correlation_id,
            postings=tuple(PostingRecord.from_model(p) for p in postings),
            balance_changes=tuple(changes),
        )

    def _lock_accounts(self, codes: list[str]) -> dict[str, Account]:
        """Read the accounts FOR UPDATE, in code order, and check they are usable."""
        rows = self.session.execute(
            select(Account)
            .where(Account.code.in_(codes))
            .order_by(Account.code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_code = {account.code: account for account in rows}

        for code in codes:
            account = by_code.get(code)
            if account is None:
                raise AccountNotFoundError(code)
            if not account.is_active:
                raise AccountInactiveError(code)
            validate_account_type(account.account_type, code)

        return by_code

    def _append(
        self,
        line: PostingLine,
        account: Account,
        *,
        correlation_id: UUID,
        source_type: str,
        source_id: UUID | None,
        created_by: UUID,
        posting_date: date,
        description: str | None,
        note: str | None,
        document_number: str | None,
        reversal_of: UUID | None,
    ) -> Posting:
        if line.fiscal_year is not None:
            fiscal_year, fiscal_month = line.fiscal_year, line.fiscal_month
        else:
            fiscal_year, fiscal_month = fiscal_period(posting_date)

        posting = Posting(
            seq=self._sequences.next_value(SequenceService.POSTING),
            posting_date=posting_date,
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            account_code=account.code,
            account_name=account.name,
            debit=line.debit,
            credit=line.credit,
            correlation_id=correlation_id,
            source_type=source_type,
            source_id=source_id,
            description=line.description or description,
            note=note,
            document_number=document_number,
            reversal_of=reversal_of,
            created_by_id=created_by,
        )
        self.session.add(posting)
        return posting
