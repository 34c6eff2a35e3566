#!/usr/bin/env python3
"""
Ledger administration: schema setup, chart seeding, balance reconciliation.

Usage:
    python scripts/ledger_admin.py init-db
    python scripts/ledger_admin.py accounts [--type revenue] [--all]
    python scripts/ledger_admin.py validate
    python scripts/ledger_admin.py repair
    python scripts/ledger_admin.py sweep
    python scripts/ledger_admin.py postings 111 [--page 2]
    python scripts/ledger_admin.py history 111 [--from 2025-01-01] [--to 2025-01-31]

The database URL comes from the active configuration
(ledger_config/defaults/ledger.yaml), overridden by LEDGER_DATABASE_URL or
--db-url.  ``repair`` is the same call the weekly sweep makes.
"""

import argparse
import sys
from datetime import date
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from ledger_config import get_active_config
from ledger_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from ledger_kernel.logging_config import configure_logging
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.reconciliation_service import ReconciliationService
from ledger_services.reconciliation_sweep import run_reconciliation_sweep


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Rental ledger administration")
    p.add_argument("--config-dir", type=Path, default=None, help="Directory with ledger.yaml")
    p.add_argument("--db-url", default=None, help="Override the configured database URL")
    p.add_argument("--log-level", default="WARNING")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and seed the chart of accounts")

    accounts = sub.add_parser("accounts", help="List accounts with cached balances")
    accounts.add_argument("--type", dest="account_type", default=None)
    accounts.add_argument("--all", action="store_true", help="Include inactive accounts")

    sub.add_parser("validate", help="Compare cached balances with the posting log")
    sub.add_parser("repair", help="Validate and repair every active account")
    sub.add_parser("sweep", help="Run the periodic sweep as configured")

    postings = sub.add_parser("postings", help="Postings of one account, newest first")
    postings.add_argument("code")
    postings.add_argument("--page", type=int, default=1)

    history = sub.add_parser("history", help="Running balance of one account")
    history.add_argument("code")
    history.add_argument("--from", dest="from_date", type=date.fromisoformat, default=None)
    history.add_argument("--to", dest="to_date", type=date.fromisoformat, default=None)

    return p.parse_args(argv)


def _init_db(config) -> int:
    print("  [1/2] Creating schema...")
    create_tables()
    print("  [2/2] Seeding chart of accounts...")
    with session_scope() as session:
        created = AccountRegistry(session, config.account_policy).seed_chart_of_accounts()
    print(f"  Created {len(created)} of {len(config.account_policy.chart)} chart accounts.")
    return 0


def _accounts(config, account_type, include_inactive) -> int:
    with session_scope() as session:
        registry = AccountRegistry(session, config.account_policy)
        rows = registry.list_accounts(account_type, include_inactive=include_inactive)
    for account in rows:
        flag = "" if account.is_active else "  (inactive)"
        print(f"  {account.code:<10} {account.account_type:<10} {account.cached_balance:>14.2f}  {account.name}{flag}")
    print(f"  {len(rows)} accounts")
    return 0


def _reconcile(repair: bool) -> int:
    result = run_reconciliation_sweep(repair=repair)
    print(f"  Checked {result.checked} accounts at {result.run_at:%Y-%m-%d %H:%M:%S}")
    for check in result.invalid:
        print(
            f"  MISMATCH {check.account_code}: cached {check.cached_balance:.2f}, "
            f"recomputed {check.recomputed_balance:.2f}"
        )
    for fix in result.repaired:
        print(f"  REPAIRED {fix.account_code}: {fix.old_balance:.2f} -> {fix.new_balance:.2f}")
    for failure in result.errors:
        print(f"  ERROR {failure.account_code} [{failure.error_code}]: {failure.message}", file=sys.stderr)
    return 0 if not result.errors and (repair or not result.invalid) else 1


def _postings(code, page, page_size) -> int:
    with session_scope() as session:
        result = PostingSelector(session).account_postings(code, page=page, page_size=page_size)
    for posting in result.postings:
        print(
            f"  {posting.posting_date}  #{posting.seq:<6} {posting.fiscal_year}-{posting.fiscal_month:02d}"
            f" {posting.debit:>12.2f} {posting.credit:>12.2f}  {posting.description or ''}"
        )
    print(f"  page {result.page} of {result.pages} ({result.total} postings)")
    return 0


def _history(code, from_date, to_date) -> int:
    with session_scope() as session:
        history = ReconciliationService(session).balance_history(code, from_date, to_date)
    print(f"  {history.account_code} opening balance {history.opening_balance:.2f}")
    for entry in history.entries:
        print(
            f"  {entry.posting_date}  #{entry.seq:<6} {entry.debit:>12.2f} {entry.credit:>12.2f}"
            f" {entry.balance:>14.2f}  {entry.description or ''}"
        )
    print(f"  closing balance {history.closing_balance:.2f}")
    return 0


def main(argv=None) -> int:
    args = _parse_args(argv)
    configure_logging(level=args.log_level)

    config = get_active_config(args.config_dir)
    db_url = args.db_url or config.database_url
    try:
        init_engine_from_url(db_url)
    except Exception as exc:
        print(f"  ERROR: cannot connect to {db_url}: {exc}", file=sys.stderr)
        return 1

    if args.command == "init-db":
        return _init_db(config)
    if args.command == "accounts":
        return _accounts(config, args.account_type, args.all)
    if args.command == "validate":
        return _reconcile(repair=False)
    if args.command == "repair":
        return _reconcile(repair=True)
    if args.command == "sweep":
        return _reconcile(repair=config.sweep_repair)
    if args.command == "postings":
        return _postings(args.code, args.page, config.history_page_size)
    if args.command == "history":
        return _history(args.code, args.from_date, args.to_date)
    return 2


if __name__ == "__main__":
    sys.exit(main())
