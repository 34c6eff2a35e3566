"""
Chart-of-accounts policy -- code prefixes, role rules and seed entries.

Responsibility:
    Kernel-side value objects describing how dynamic accounts are numbered
    and who may own them.  Built by ``ledger_config`` from YAML and handed to
    AccountRegistry; the kernel never reads configuration itself.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ledger_kernel.domain.dtos import ActorRole


@dataclass(frozen=True)
class CodePrefixes:
    """Prefixes under which dynamic account codes are allocated."""

    cash_register: str = "10"
    cleaner_payable: str = "20"
    net_salary: str = "75"
    apartment_revenue: str = "601-"
    owner_rent: str = "701-"


@dataclass(frozen=True)
class ChartAccount:
    """One entry of the seeded chart of accounts."""

    code: str
    name: str
    account_type: str
    is_cash_register: bool = False
    description: str | None = None


@dataclass(frozen=True)
class AccountPolicy:
    """
    Rules for dynamically created accounts.

    Guarantees:
        - cash_register_roles and payroll_roles are tuples of role names.
    """

    prefixes: CodePrefixes = field(default_factory=CodePrefixes)
    cash_register_roles: tuple[str, ...] = (
        ActorRole.CLEANING_LADY.value,
        ActorRole.HOST.value,
        ActorRole.MANAGER.value,
        ActorRole.OWNER.value,
    )
    payroll_roles: tuple[str, ...] = (ActorRole.CLEANING_LADY.value,)
    chart: tuple[ChartAccount, ...] = ()

    def has_cash_register(self, role: str) -> bool:
        return role in self.cash_register_roles

    def is_payroll_role(self, role: str) -> bool:
        return role in self.payroll_roles
