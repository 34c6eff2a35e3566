"""
AccountRegistry -- chart of accounts lifecycle.

Responsibility:
    Creates accounts (seeded chart, per-employee and per-apartment accounts),
    allocates account codes, deactivates unused accounts and resolves the
    accounts that orchestrators post to.

Architecture position:
    Kernel > Services -- imperative shell.  Receives the AccountPolicy built
    by ``ledger_config``; never reads configuration itself.

Invariants enforced:
    - Account codes are unique and never reused (unique constraint, no hard
      deletes).
    - Code allocation goes through a locked per-prefix counter, so two
      transactions are never handed the same code.
    - An account referenced by any posting is never deactivated.

Failure modes:
    - AccountAlreadyExistsError: code already present.
    - InvalidAccountTypeError: type outside the four kinds.
    - InvalidCodePrefixError: empty prefix.
    - AccountCodeConflictError: a concurrent transaction inserted the same
      code first (retryable).
    - AccountReferencedError / AccountInactiveError / AccountNotFoundError on
      deactivation.
    - IneligibleRoleError: cash register requested for a role without one.
    - CashRegisterNotFoundError / AccountNotFoundError from the resolution
      helpers.

Audit relevance:
    Every created and deactivated account is logged with its code and the
    acting user.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.balance_rules import validate_account_type
from ledger_kernel.domain.chart import AccountPolicy
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID, AccountLinks, AccountRecord
from ledger_kernel.exceptions import (
    AccountAlreadyExistsError,
    AccountCodeConflictError,
    AccountInactiveError,
    AccountNotFoundError,
    AccountReferencedError,
    CashRegisterNotFoundError,
    IneligibleRoleError,
    InvalidCodePrefixError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.account_registry")


@dataclass(frozen=True)
class PayrollAccounts:
    """A worker's net-salary expense account and payable liability account."""

    net_salary: AccountRecord
    payable: AccountRecord


@dataclass(frozen=True)
class ApartmentAccounts:
    """An apartment's revenue account and owner rent expense account."""

    revenue: AccountRecord
    rent: AccountRecord


@dataclass(frozen=True)
class EmployeeAccounts:
    """Accounts an employee holds after ensure_employee_accounts."""

    cash_register: AccountRecord | None
    payroll: PayrollAccounts | None
    created: tuple[str, ...] = ()


def _role_value(role) -> str:
    return getattr(role, "value", role)


class AccountRegistry(BaseService[Account]):
    """
    Chart of accounts registry.

    Contract:
        All public methods return AccountRecord DTOs (or groups of them),
        never ORM rows.  Writes are flushed, never committed.

    Guarantees:
        - allocate_next_code returns ``prefix + "1"`` for an unused prefix and
          otherwise one past the highest numeric suffix ever handed out.
        - create_* helpers reuse existing active accounts where the owner
          already has one.

    Non-goals:
        - No permission checks; callers decide who may create accounts.
        - No hierarchy or roll-ups.
    """

    def __init__(
        self,
        session: Session,
        policy: AccountPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        super().__init__(session)
        self._policy = policy or AccountPolicy()
        self._actor_id = actor_id
        self._sequences = SequenceService(session)
        self._postings = PostingSelector(session)

    @property
    def policy(self) -> AccountPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _find(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def _get(self, code: str) -> Account:
        account = self._find(code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def get_by_code(self, code: str) -> AccountRecord | None:
        """Account with ``code``, or None."""
        account = self._find(code)
        return AccountRecord.from_model(account) if account else None

    def get_account(self, code: str) -> AccountRecord:
        """
        Account with ``code``.

        Raises:
            AccountNotFoundError: if no such account exists.
        """
        return AccountRecord.from_model(self._get(code))

    def list_accounts(
        self,
        account_type: AccountType | str | None = None,
        include_inactive: bool = False,
    ) -> list[AccountRecord]:
        """All accounts ordered by code, optionally of one type."""
        stmt = select(Account)
        if account_type is not None:
            stmt = stmt.where(Account.account_type == validate_account_type(account_type).value)
        if not include_inactive:
            stmt = stmt.where(Account.is_active == True)  # noqa: E712
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()
        return [AccountRecord.from_model(a) for a in accounts]

    def find_by_owner(
        self,
        employee_id: UUID,
        include_inactive: bool = False,
    ) -> list[AccountRecord]:
        """Accounts linked to an employee, ordered by code."""
        stmt = select(Account).where(Account.employee_id == employee_id)
        if not include_inactive:
            stmt = stmt.where(Account.is_active == True)  # noqa: E712
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()
        return [AccountRecord.from_model(a) for a in accounts]

    def find_by_apartment(
        self,
        apartment_id: UUID,
        account_type: AccountType | str | None = None,
        include_inactive: bool = False,
    ) -> list[AccountRecord]:
        """Accounts linked to an apartment, optionally of one type."""
        stmt = select(Account).where(Account.apartment_id == apartment_id)
        if account_type is not None:
            stmt = stmt.where(Account.account_type == validate_account_type(account_type).value)
        if not include_inactive:
            stmt = stmt.where(Account.is_active == True)  # noqa: E712
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()
        return [AccountRecord.from_model(a) for a in accounts]

    def _find_owned(
        self,
        *,
        prefix: str,
        account_type: AccountType,
        employee_id: UUID | None = None,
        apartment_id: UUID | None = None,
        cash_register: bool | None = None,
        lock: bool = False,
    ) -> Account | None:
        stmt = (
            select(Account)
            .where(Account.code.startswith(prefix, autoescape=True))
            .where(Account.account_type == account_type.value)
            .where(Account.is_active == True)  # noqa: E712
        )
        if employee_id is not None:
            stmt = stmt.where(Account.employee_id == employee_id)
        if apartment_id is not None:
            stmt = stmt.where(Account.apartment_id == apartment_id)
        if cash_register is not None:
            stmt = stmt.where(Account.is_cash_register == cash_register)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt.order_by(Account.code).limit(1)).scalar_one_or_none()

    def cash_register_for(self, employee_id: UUID, role=None) -> AccountRecord:
        """
        The active cash register of an employee.

        Raises:
            CashRegisterNotFoundError: if the employee has none.
        """
        account = self._find_owned(
            prefix=self._policy.prefixes.cash_register,
            account_type=AccountType.ASSET,
            employee_id=employee_id,
            cash_register=True,
        )
        if account is None:
            raise CashRegisterNotFoundError(
                str(employee_id), _role_value(role) if role is not None else None
            )
        return AccountRecord.from_model(account)

    def payroll_accounts_for(self, employee_id: UUID) -> PayrollAccounts:
        """
        The net-salary and payable accounts of a worker.

        Raises:
            AccountNotFoundError: if either account is missing.
        """
        prefixes = self._policy.prefixes
        net_salary = self._find_owned(
            prefix=prefixes.net_salary,
            account_type=AccountType.EXPENSE,
            employee_id=employee_id,
        )
        if net_salary is None:
            raise AccountNotFoundError(f"{prefixes.net_salary}* for employee {employee_id}")
        payable = self._find_owned(
            prefix=prefixes.cleaner_payable,
            account_type=AccountType.LIABILITY,
            employee_id=employee_id,
            cash_register=False,
        )
        if payable is None:
            raise AccountNotFoundError(f"{prefixes.cleaner_payable}* for employee {employee_id}")
        return PayrollAccounts(
            net_salary=AccountRecord.from_model(net_salary),
            payable=AccountRecord.from_model(payable),
        )

    def revenue_account_for(self, apartment_id: UUID, lock: bool = False) -> AccountRecord:
        """
        The accommodation revenue account of an apartment.

        With ``lock`` the row is read FOR UPDATE and held until the caller's
        transaction ends; payments and refunds of the apartment's stays
        serialize on it.

        Raises:
            AccountNotFoundError: if the apartment has none.
        """
        prefix = self._policy.prefixes.apartment_revenue
        account = self._find_owned(
            prefix=prefix,
            account_type=AccountType.REVENUE,
            apartment_id=apartment_id,
            lock=lock,
        )
        if account is None:
            raise AccountNotFoundError(f"{prefix}* for apartment {apartment_id}")
        return AccountRecord.from_model(account)

    # ------------------------------------------------------------------
    # Code allocation
    # ------------------------------------------------------------------

    def allocate_next_code(self, prefix: str) -> str:
        """
        Reserve the next code under ``prefix``.

        The next number is one past the larger of the prefix counter and the
        highest all-digit suffix among existing codes; codes whose suffix is
        not a plain number are ignored.  The counter row is locked and
        advanced in the caller's transaction.

        Raises:
            InvalidCodePrefixError: if ``prefix`` is empty.
        """
        if not prefix or not prefix.strip():
            raise InvalidCodePrefixError(prefix)

        codes = self.session.execute(
            select(Account.code).where(Account.code.startswith(prefix, autoescape=True))
        ).scalars().all()

        highest = 0
        for code in codes:
            suffix = code[len(prefix):]
            if suffix.isascii() and suffix.isdigit():
                highest = max(highest, int(suffix))

        value = self._sequences.next_value(
            SequenceService.account_code_sequence(prefix),
            floor=highest,
        )
        code = f"{prefix}{value}"
        logger.debug("account_code_allocated", extra={"prefix": prefix, "account_code": code})
        return code

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        links: AccountLinks | None = None,
    ) -> AccountRecord:
        """
        Create an account with a zero balance.

        Raises:
            InvalidAccountTypeError: if the type is not one of the four kinds.
            AccountAlreadyExistsError: if ``code`` is already used.
            AccountCodeConflictError: if a concurrent insert won the code.
        """
        kind = validate_account_type(account_type, code)
        if self._find(code) is not None:
            raise AccountAlreadyExistsError(code)

        links = links or AccountLinks()
        account = Account(
            code=code,
            name=name,
            account_type=kind.value,
            is_cash_register=links.is_cash_register,
            employee_id=links.employee_id,
            employee_name=links.employee_name,
            apartment_id=links.apartment_id,
            apartment_name=links.apartment_name,
            description=links.description,
            created_by_id=self._actor_id,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(account)
            self.session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.warning("account_code_conflict", extra={"account_code": code})
            raise AccountCodeConflictError(code) from exc
        savepoint.commit()

        logger.info(
            "account_created",
            extra={
                "account_code": code,
                "account_type": kind.value,
                "created_by": str(self._actor_id),
            },
        )
        return AccountRecord.from_model(account)

    def seed_chart_of_accounts(self) -> list[AccountRecord]:
        """
        Create every chart account that does not exist yet.

        Returns:
            The accounts created by this call (empty when already seeded).
        """
        created = []
        for entry in self._policy.chart:
            if self._find(entry.code) is not None:
                continue
            created.append(
                self.create_account(
                    entry.code,
                    entry.name,
                    entry.account_type,
                    AccountLinks(
                        is_cash_register=entry.is_cash_register,
                        description=entry.description,
                    ),
                )
            )
        logger.info(
            "chart_of_accounts_seeded",
            extra={"created_count": len(created), "chart_size": len(self._policy.chart)},
        )
        return created

    def _create_allocated(
        self,
        prefix: str,
        name: str,
        account_type: AccountType,
        links: AccountLinks,
    ) -> AccountRecord:
        return self.create_account(self.allocate_next_code(prefix), name, account_type, links)

    def _create_owned(
        self,
        prefix: str,
        name: str,
        account_type: AccountType,
        links: AccountLinks,
        **owned,
    ) -> AccountRecord:
        existing = self._find_owned(prefix=prefix, account_type=account_type, **owned)
        if existing is not None:
            return AccountRecord.from_model(existing)

        code = self.allocate_next_code(prefix)

        # Re-check under the prefix counter lock.
        existing = self._find_owned(prefix=prefix, account_type=account_type, **owned)
        if existing is not None:
            logger.info(
                "owned_account_found_after_lock",
                extra={"prefix": prefix, "account_code": existing.code, "discarded_code": code},
            )
            return AccountRecord.from_model(existing)

        return self.create_account(code, name, account_type, links)

    def create_cash_register(
        self,
        employee_id: UUID,
        employee_name: str,
        role,
    ) -> AccountRecord:
        """
        Cash register of an employee, created if missing.

        Raises:
            IneligibleRoleError: if the role has no cash register.
        """
        role = _role_value(role)
        if not self._policy.has_cash_register(role):
            raise IneligibleRoleError(str(employee_id), role, "cash register")

        return self._create_owned(
            self._policy.prefixes.cash_register,
            f"Cash Register - {employee_name}",
            AccountType.ASSET,
            AccountLinks(
                employee_id=employee_id,
                employee_name=employee_name,
                is_cash_register=True,
                description=f"Cash register for employee {employee_name}",
            ),
            employee_id=employee_id,
            cash_register=True,
        )

    def create_payroll_accounts(self, employee_id: UUID, employee_name: str) -> PayrollAccounts:
        """Net-salary and payable accounts of a worker, created where missing."""
        prefixes = self._policy.prefixes

        net_salary = self._create_owned(
            prefixes.net_salary,
            f"Net Salary - {employee_name}",
            AccountType.EXPENSE,
            AccountLinks(
                employee_id=employee_id,
                employee_name=employee_name,
                description=f"Net salary expense for cleaning lady {employee_name}",
            ),
            employee_id=employee_id,
        )
        payable = self._create_owned(
            prefixes.cleaner_payable,
            f"Payables to Cleaner - {employee_name}",
            AccountType.LIABILITY,
            AccountLinks(
                employee_id=employee_id,
                employee_name=employee_name,
                description=f"Payables to cleaning lady {employee_name}",
            ),
            employee_id=employee_id,
            cash_register=False,
        )
        return PayrollAccounts(net_salary=net_salary, payable=payable)

    def create_apartment_accounts(
        self,
        apartment_id: UUID,
        apartment_name: str,
    ) -> ApartmentAccounts:
        """
        Revenue and owner rent accounts of a new apartment.

        Raises:
            AccountAlreadyExistsError: if the apartment already has accounts.
        """
        existing = self.find_by_apartment(apartment_id, include_inactive=True)
        if existing:
            raise AccountAlreadyExistsError(existing[0].code)

        prefixes = self._policy.prefixes
        links = dict(apartment_id=apartment_id, apartment_name=apartment_name)
        revenue = self._create_allocated(
            prefixes.apartment_revenue,
            f"Accommodation Revenue - {apartment_name}",
            AccountType.REVENUE,
            AccountLinks(
                description=f"Revenue from accommodation in apartment {apartment_name}",
                **links,
            ),
        )
        rent = self._create_allocated(
            prefixes.owner_rent,
            f"Rent to Owner - {apartment_name}",
            AccountType.EXPENSE,
            AccountLinks(
                description=f"Monthly rent to owner of apartment {apartment_name}",
                **links,
            ),
        )
        return ApartmentAccounts(revenue=revenue, rent=rent)

    def ensure_employee_accounts(
        self,
        employee_id: UUID,
        employee_name: str,
        role,
    ) -> EmployeeAccounts:
        """
        Bring an employee's accounts in line with their role.

        Creates the cash register when the role has one and the payroll
        accounts when the role is a payroll role.  Existing accounts are
        left untouched.
        """
        role = _role_value(role)
        before = {a.code for a in self.find_by_owner(employee_id)}

        cash_register = None
        if self._policy.has_cash_register(role):
            cash_register = self.create_cash_register(employee_id, employee_name, role)

        payroll = None
        if self._policy.is_payroll_role(role):
            payroll = self.create_payroll_accounts(employee_id, employee_name)

        after = {a.code for a in self.find_by_owner(employee_id)}
        created = tuple(sorted(after - before))
        if created:
            logger.info(
                "employee_accounts_ensured",
                extra={
                    "employee_id": str(employee_id),
                    "role": role,
                    "created_codes": list(created),
                },
            )
        return EmployeeAccounts(cash_register=cash_register, payroll=payroll, created=created)

    # ------------------------------------------------------------------
    # Deactivation
    # ------------------------------------------------------------------

    def deactivate_account(self, code: str) -> AccountRecord:
        """
        Soft-delete an account that no posting references.

        Raises:
            AccountNotFoundError: unknown code.
            AccountInactiveError: already deactivated.
            AccountReferencedError: at least one posting references it.
        """
        account = self._get(code)
        if not account.is_active:
            raise AccountInactiveError(code)

        posting_count = self._postings.count_for_account(code)
        if posting_count > 0:
            raise AccountReferencedError(code, posting_count)

        account.is_active = False
        account.updated_by_id = self._actor_id
        self.session.flush()

        logger.info(
            "account_deactivated",
            extra={"account_code": code, "deactivated_by": str(self._actor_id)},
        )
        return AccountRecord.from_model(account)
