"""
Module: ledger_kernel.selectors.posting_selector
Responsibility: Read-only query access to postings.  Converts ORM rows to
    frozen PostingRecord DTOs.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - Deterministic ordering: every list is ordered by seq (or by
      posting_date then seq for account timelines).

Failure modes:
    - CorrelationGroupNotFoundError from postings_by_group when the group
      has no postings.  Every other query returns an empty result instead
      of raising.

Audit relevance:
    PostingSelector is the canonical read path for the posting log: group
    lookups for reversals, per-stay history for allocation, per-account
    timelines for reconciliation and balance history.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import PostingRecord
from ledger_kernel.exceptions import CorrelationGroupNotFoundError
from ledger_kernel.models.posting import Posting, SourceType
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PostingPage:
    """One page of an account's postings, newest first."""

    postings: tuple[PostingRecord, ...]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.page_size))


def _source_values(source_type: str | SourceType | Iterable[str | SourceType]) -> list[str]:
    if isinstance(source_type, (str, SourceType)):
        source_type = [source_type]
    return [s.value if isinstance(s, SourceType) else s for s in source_type]


class PostingSelector(BaseSelector[Posting]):
    """
    Selector for posting queries.

    Contract:
        All methods return PostingRecord DTOs (or aggregates), never ORM rows.
    """

    def postings_by_group(self, correlation_id: UUID) -> tuple[PostingRecord, ...]:
        """
        All postings of one correlation group, ordered by seq.

        Raises:
            CorrelationGroupNotFoundError: if the group has no postings.
        """
        rows = self.session.execute(
            select(Posting)
            .where(Posting.correlation_id == correlation_id)
            .order_by(Posting.seq)
        ).scalars().all()

        if not rows:
            raise CorrelationGroupNotFoundError(str(correlation_id))
        return tuple(PostingRecord.from_model(p) for p in rows)

    def postings_by_source(
        self,
        source_type: str | SourceType | Iterable[str | SourceType],
        source_id: UUID,
        account_code: str | None = None,
    ) -> tuple[PostingRecord, ...]:
        """
        Postings produced for a business source (a stay, an assignment).

        Args:
            source_type: One source type or several.
            source_id: Id of the source entity.
            account_code: Restrict to one account.
        """
        query = (
            select(Posting)
            .where(Posting.source_type.in_(_source_values(source_type)))
            .where(Posting.source_id == source_id)
        )
        if account_code is not None:
            query = query.where(Posting.account_code == account_code)

        rows = self.session.execute(query.order_by(Posting.seq)).scalars().all()
        return tuple(PostingRecord.from_model(p) for p in rows)

    def postings_by_account_and_period(
        self,
        account_code: str,
        fiscal_year: int,
        fiscal_month: int | None = None,
    ) -> tuple[PostingRecord, ...]:
        """Postings of an account in a fiscal year, or in one month of it."""
        query = (
            select(Posting)
            .where(Posting.account_code == account_code)
            .where(Posting.fiscal_year == fiscal_year)
        )
        if fiscal_month is not None:
            query = query.where(Posting.fiscal_month == fiscal_month)

        rows = self.session.execute(query.order_by(Posting.seq)).scalars().all()
        return tuple(PostingRecord.from_model(p) for p in rows)

    def account_postings(
        self,
        account_code: str,
        page: int = 1,
        page_size: int = 50,
    ) -> PostingPage:
        """Paginated postings of an account, newest first."""
        page = max(page, 1)
        total = self.count_for_account(account_code)

        rows = self.session.execute(
            select(Posting)
            .where(Posting.account_code == account_code)
            .order_by(Posting.posting_date.desc(), Posting.seq.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()

        return PostingPage(
            postings=tuple(PostingRecord.from_model(p) for p in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    def postings_for_account(
        self,
        account_code: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> tuple[PostingRecord, ...]:
        """Postings of an account between two dates (inclusive), oldest first."""
        query = select(Posting).where(Posting.account_code == account_code)
        if from_date is not None:
            query = query.where(Posting.posting_date >= from_date)
        if to_date is not None:
            query = query.where(Posting.posting_date <= to_date)

        rows = self.session.execute(
            query.order_by(Posting.posting_date, Posting.seq)
        ).scalars().all()
        return tuple(PostingRecord.from_model(p) for p in rows)

    def count_for_account(self, account_code: str) -> int:
        return self.session.execute(
            select(func.count(Posting.id)).where(Posting.account_code == account_code)
        ).scalar_one()

    def account_has_postings(self, account_code: str) -> bool:
        return self.session.execute(
            select(Posting.id).where(Posting.account_code == account_code).limit(1)
        ).first() is not None

    def totals_for_account(
        self,
        account_code: str,
        as_of: date | None = None,
    ) -> tuple[Decimal, Decimal]:
        """Sum of debits and sum of credits of an account up to ``as_of``."""
        query = select(
            func.coalesce(func.sum(Posting.debit), 0),
            func.coalesce(func.sum(Posting.credit), 0),
        ).where(Posting.account_code == account_code)
        if as_of is not None:
            query = query.where(Posting.posting_date <= as_of)

        debits, credits = self.session.execute(query).one()
        return Decimal(str(debits)), Decimal(str(credits))
