"""
LedgerConfig schema.

Frozen dataclasses for the runtime configuration of the ledger.  YAML files
are parsed into these types by the loader; the kernel-facing parts
(``AccountPolicy``, ``CodePrefixes``, ``ChartAccount``) are kernel value
objects, so services receive them without the kernel importing this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ledger_kernel.domain.chart import AccountPolicy, ChartAccount, CodePrefixes

__all__ = [
    "AccountPolicy",
    "ChartAccount",
    "CodePrefixes",
    "LedgerConfig",
    "OverpaymentPolicy",
    "RetryPolicy",
]


class OverpaymentPolicy(str, Enum):
    """What a cash payment does with money beyond what the stay still owes."""

    REJECT = "reject"
    ACCEPT_AS_CREDIT = "accept_as_credit"
    RETURN_CHANGE = "return_change"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry of operations that hit a concurrency conflict."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class LedgerConfig:
    """
    The complete runtime configuration.

    Contract:
        Produced only by ``ledger_config.get_active_config()``.

    Guarantees:
        - Immutable once built.
        - ``checksum`` identifies the YAML content it was built from.
    """

    config_id: str
    version: int
    database_url: str
    account_policy: AccountPolicy = field(default_factory=AccountPolicy)
    default_cleaning_hourly_rate: Decimal = Decimal("5.00")
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.REJECT
    guest_overpayment_account: str = "231"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    sweep_repair: bool = True
    history_page_size: int = 50
    checksum: str = ""
