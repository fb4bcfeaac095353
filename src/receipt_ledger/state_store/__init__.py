"""
State Store (SQLite-based).

Persistent store for:
- Categories (per owner and shared)
- Transactions created from receipts and imports
- The receipt promotion ledger

Enforces category/transaction type compatibility on every write.
"""

from .base import CategoryStore, TransactionNotFoundError, TransactionStore
from .sqlite_store import DEFAULT_SHARED_CATEGORIES, StateStore

__all__ = [
    "CategoryStore",
    "DEFAULT_SHARED_CATEGORIES",
    "StateStore",
    "TransactionNotFoundError",
    "TransactionStore",
]
