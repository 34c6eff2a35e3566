"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.  YAML loading is internal tooling and
    never exposed to callers.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; this package builds the kernel's own value objects
    (``AccountPolicy``) and callers hand them to kernel services.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation: a configuration with structural errors never reaches a
      caller.
    - Deterministic checksum: the same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration directory or file missing.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with config_id, version, checksum and
    chart size.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import load_yaml_file, parse_ledger_config, validate_config
from ledger_config.schema import LedgerConfig, OverpaymentPolicy, RetryPolicy

__all__ = [
    "LedgerConfig",
    "OverpaymentPolicy",
    "RetryPolicy",
    "get_active_config",
]

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "defaults"

DATABASE_URL_ENV = "LEDGER_DATABASE_URL"


def get_active_config(config_dir: Path | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Contract:
        Reads ``ledger.yaml`` and ``chart_of_accounts.yaml`` from
        ``config_dir`` (default: ``ledger_config/defaults``).  The
        ``LEDGER_DATABASE_URL`` environment variable, when set, overrides
        ``database.url``.

    Guarantees:
        - The returned ``LedgerConfig`` has passed validation.
        - A ``LEDGER_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - Does NOT cache across calls; callers hold the returned config.

    Raises:
        FileNotFoundError: If a configuration file is missing.
        ValueError: If configuration validation fails.
    """
    directory = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR

    ledger_data = load_yaml_file(directory / "ledger.yaml")
    chart_data = load_yaml_file(directory / "chart_of_accounts.yaml")

    config = parse_ledger_config(
        ledger_data,
        chart_data,
        database_url=os.environ.get(DATABASE_URL_ENV) or None,
    )

    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "chart_size": len(config.account_policy.chart),
            "overpayment_policy": config.overpayment_policy.value,
            "config_dir": str(directory),
        },
    )

    return config
