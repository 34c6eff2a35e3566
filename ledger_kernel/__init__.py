"""
Ledger Kernel

The double-entry core of the rental ledger:
- Chart-of-accounts registry with per-prefix code allocation
- Append-only posting log grouped by correlation id
- Cached account balances updated atomically with each posting group
- Reconciliation of cached balances against posting history
"""

__version__ = "0.1.0"
