"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the YAML files of a configuration directory and parses them into the
typed ``ledger_config.schema`` dataclasses.  Internal tooling for
``ledger_config.get_active_config()``; services never call it directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` is deterministic for the same input data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountPolicy,
    ChartAccount,
    CodePrefixes,
    LedgerConfig,
    OverpaymentPolicy,
    RetryPolicy,
)
from ledger_kernel.domain.dtos import ActorRole
from ledger_kernel.models.account import AccountType


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a money value written as a YAML string or number."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name}: cannot parse decimal from {value!r}") from None


def parse_prefixes(data: dict[str, Any]) -> CodePrefixes:
    """Parse CodePrefixes from a dict."""
    return CodePrefixes(
        cash_register=str(data["cash_register"]),
        cleaner_payable=str(data["cleaner_payable"]),
        net_salary=str(data["net_salary"]),
        apartment_revenue=str(data["apartment_revenue"]),
        owner_rent=str(data["owner_rent"]),
    )


def parse_chart_account(data: dict[str, Any]) -> ChartAccount:
    """Parse one ChartAccount entry."""
    return ChartAccount(
        code=str(data["code"]),
        name=data["name"],
        account_type=data["type"],
        is_cash_register=bool(data.get("is_cash_register", False)),
        description=data.get("description"),
    )


def parse_account_policy(
    data: dict[str, Any],
    chart_data: dict[str, Any],
) -> AccountPolicy:
    """Parse the AccountPolicy from the ``accounts`` section and the chart file."""
    return AccountPolicy(
        prefixes=parse_prefixes(data["prefixes"]),
        cash_register_roles=tuple(data["cash_register_roles"]),
        payroll_roles=tuple(data["payroll_roles"]),
        chart=tuple(parse_chart_account(a) for a in chart_data.get("accounts", [])),
    )


def parse_retry(data: dict[str, Any]) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=int(data.get("max_attempts", 3)),
        backoff_seconds=float(data.get("backoff_seconds", 0.05)),
    )


def parse_ledger_config(
    ledger_data: dict[str, Any],
    chart_data: dict[str, Any],
    database_url: str | None = None,
) -> LedgerConfig:
    """
    Build a LedgerConfig from the parsed YAML files.

    Args:
        ledger_data: Contents of ``ledger.yaml``.
        chart_data: Contents of ``chart_of_accounts.yaml``.
        database_url: Overrides ``database.url`` when given.
    """
    payments = ledger_data.get("payments", {})
    cleaning = ledger_data.get("cleaning", {})
    reconciliation = ledger_data.get("reconciliation", {})

    return LedgerConfig(
        config_id=ledger_data["config_id"],
        version=int(ledger_data["version"]),
        database_url=database_url or ledger_data["database"]["url"],
        account_policy=parse_account_policy(ledger_data["accounts"], chart_data),
        default_cleaning_hourly_rate=parse_decimal(
            cleaning.get("default_hourly_rate", "5.00"),
            "cleaning.default_hourly_rate",
        ),
        overpayment_policy=OverpaymentPolicy(payments.get("overpayment_policy", "reject")),
        guest_overpayment_account=str(payments.get("guest_overpayment_account", "231")),
        retry=parse_retry(ledger_data.get("retry", {})),
        sweep_repair=bool(reconciliation.get("sweep_repair", True)),
        history_page_size=int(reconciliation.get("history_page_size", 50)),
        checksum=compute_checksum({"ledger": ledger_data, "chart": chart_data}),
    )


def validate_config(config: LedgerConfig) -> list[str]:
    """
    Structural validation of a parsed configuration.

    Returns:
        List of error messages; empty when the configuration is valid.
    """
    errors: list[str] = []
    policy = config.account_policy
    known_roles = {r.value for r in ActorRole}
    known_types = {t.value for t in AccountType}

    for role in policy.cash_register_roles + policy.payroll_roles:
        if role not in known_roles:
            errors.append(f"Unknown role {role!r}")

    for name, prefix in vars(policy.prefixes).items():
        if not prefix:
            errors.append(f"Empty code prefix for {name}")

    seen: set[str] = set()
    for account in policy.chart:
        if account.code in seen:
            errors.append(f"Duplicate chart account code {account.code}")
        seen.add(account.code)
        if account.account_type not in known_types:
            errors.append(
                f"Chart account {account.code} has invalid type {account.account_type!r}"
            )

    if config.guest_overpayment_account not in seen:
        errors.append(
            f"Guest overpayment account {config.guest_overpayment_account} "
            "is not in the chart of accounts"
        )
    if config.default_cleaning_hourly_rate <= 0:
        errors.append("cleaning.default_hourly_rate must be positive")
    if config.retry.max_attempts < 1:
        errors.append("retry.max_attempts must be at least 1")
    if config.history_page_size < 1:
        errors.append("reconciliation.history_page_size must be at least 1")

    return errors


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the configuration data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
