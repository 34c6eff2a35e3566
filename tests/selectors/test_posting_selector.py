"""Tests for PostingSelector (read side of the posting log)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import PostingLine
from ledger_kernel.exceptions import CorrelationGroupNotFoundError
from ledger_kernel.models.posting import SourceType


def _post(ledger, actor_id, amount, *, posting_date, source_type=SourceType.OTHER, source_id=None):
    return ledger.post_group(
        [
            PostingLine.debit_line("111", Decimal(amount)),
            PostingLine.credit_line("692", Decimal(amount)),
        ],
        source_type=source_type,
        created_by=actor_id,
        source_id=source_id,
        posting_date=posting_date,
    )


class TestGroupQueries:

    def test_postings_by_group(self, ledger, posting_selector, seeded_chart, test_actor_id):
        group = _post(ledger, test_actor_id, "10.00", posting_date=date(2025, 3, 1))

        postings = posting_selector.postings_by_group(group.correlation_id)

        assert [p.account_code for p in postings] == ["111", "692"]
        assert postings[0].seq < postings[1].seq

    def test_unknown_group(self, posting_selector):
        with pytest.raises(CorrelationGroupNotFoundError):
            posting_selector.postings_by_group(uuid4())


class TestSourceQueries:

    def test_postings_by_source(self, ledger, posting_selector, seeded_chart, test_actor_id):
        stay_id = uuid4()
        _post(
            ledger, test_actor_id, "50.00",
            posting_date=date(2025, 3, 1),
            source_type=SourceType.ACCOMMODATION_PAYMENT,
            source_id=stay_id,
        )
        _post(
            ledger, test_actor_id, "20.00",
            posting_date=date(2025, 3, 2),
            source_type=SourceType.ACCOMMODATION_REFUND,
            source_id=stay_id,
        )
        _post(
            ledger, test_actor_id, "99.00",
            posting_date=date(2025, 3, 3),
            source_type=SourceType.ACCOMMODATION_PAYMENT,
            source_id=uuid4(),
        )

        payments = posting_selector.postings_by_source(SourceType.ACCOMMODATION_PAYMENT, stay_id)
        both = posting_selector.postings_by_source(
            (SourceType.ACCOMMODATION_PAYMENT, "accommodation_refund"),
            stay_id,
            account_code="692",
        )

        assert len(payments) == 2
        assert [p.credit for p in both] == [Decimal("50.00"), Decimal("20.00")]


class TestAccountQueries:

    @pytest.fixture
    def history(self, ledger, seeded_chart, test_actor_id):
        for day, amount in ((5, "1.00"), (20, "2.00")):
            _post(ledger, test_actor_id, amount, posting_date=date(2025, 2, day))
        _post(ledger, test_actor_id, "3.00", posting_date=date(2025, 3, 1))

    def test_by_account_and_period(self, posting_selector, history):
        february = posting_selector.postings_by_account_and_period("111", 2025, 2)
        year = posting_selector.postings_by_account_and_period("111", 2025)

        assert [p.debit for p in february] == [Decimal("1.00"), Decimal("2.00")]
        assert len(year) == 3

    def test_account_postings_newest_first(self, posting_selector, history):
        page = posting_selector.account_postings("111", page=1, page_size=2)

        assert page.total == 3
        assert page.pages == 2
        assert [p.posting_date for p in page.postings] == [date(2025, 3, 1), date(2025, 2, 20)]

        last = posting_selector.account_postings("111", page=2, page_size=2)
        assert [p.posting_date for p in last.postings] == [date(2025, 2, 5)]

    def test_page_below_one_clamped(self, posting_selector, history):
        assert posting_selector.account_postings("111", page=0).page == 1

    def test_postings_for_account_date_range(self, posting_selector, history):
        postings = posting_selector.postings_for_account(
            "111", from_date=date(2025, 2, 10), to_date=date(2025, 2, 28)
        )

        assert [p.posting_date for p in postings] == [date(2025, 2, 20)]

    def test_counts_and_totals(self, posting_selector, history):
        assert posting_selector.count_for_account("111") == 3
        assert posting_selector.account_has_postings("111")
        assert not posting_selector.account_has_postings("112")
        assert posting_selector.totals_for_account("111") == (Decimal("6.00"), Decimal("0"))
        assert posting_selector.totals_for_account("692", date(2025, 2, 28)) == (
            Decimal("0"),
            Decimal("3.00"),
        )

    def test_empty_account_page(self, posting_selector, seeded_chart):
        page = posting_selector.account_postings("112")

        assert page.total == 0
        assert page.pages == 1
        assert page.postings == ()
