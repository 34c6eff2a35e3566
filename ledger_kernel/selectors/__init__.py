"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.posting_selector import PostingPage, PostingSelector

__all__ = [
    "PostingPage",
    "PostingSelector",
]
