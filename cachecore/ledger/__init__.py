"""
Ledger (AO compute unit) access.

Provides a dry-run client and helpers for reading tags and JSON data
out of the messages a process emits.
"""

from .client import DryRunResult, LedgerClient, LedgerMessage, TagMatch

__all__ = [
    "DryRunResult",
    "LedgerClient",
    "LedgerMessage",
    "TagMatch",
]
