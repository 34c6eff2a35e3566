"""
Immutability enforcement on the ORM layer.

Postings are append-only; accounts keep their code and type and are never
hard-deleted.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger_kernel.domain.dtos import PostingLine
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.posting import Posting, SourceType


@pytest.fixture
def posting(session, ledger, seeded_chart, test_actor_id) -> Posting:
    group = ledger.post_group(
        [
            PostingLine.debit_line("111", Decimal("10.00")),
            PostingLine.credit_line("692", Decimal("10.00")),
        ],
        source_type=SourceType.OTHER,
        created_by=test_actor_id,
    )
    return session.execute(
        select(Posting).where(Posting.id == group.postings[0].posting_id)
    ).scalar_one()


def _account(session, code) -> Account:
    return session.execute(select(Account).where(Account.code == code)).scalar_one()


class TestPostingImmutability:

    def test_update_rejected(self, session, posting):
        posting.debit = Decimal("99.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Posting"

    def test_description_update_rejected(self, session, posting):
        posting.description = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_rejected(self, session, posting):
        session.delete(posting)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAccountImmutability:

    def test_code_change_rejected(self, session, registry):
        registry.create_account("901", "Scratch", AccountType.ASSET)
        account = _account(session, "901")
        account.code = "902"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_type_change_rejected(self, session, registry):
        registry.create_account("901", "Scratch", AccountType.ASSET)
        account = _account(session, "901")
        account.account_type = AccountType.EXPENSE.value

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_hard_delete_rejected(self, session, registry):
        registry.create_account("901", "Scratch", AccountType.ASSET)
        session.delete(_account(session, "901"))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_rename_allowed(self, session, registry):
        registry.create_account("901", "Scratch", AccountType.ASSET)
        account = _account(session, "901")
        account.name = "Petty Cash"
        session.flush()

        assert registry.get_account("901").name == "Petty Cash"
