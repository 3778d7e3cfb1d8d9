"""
Loan lifecycle engine.

- policy: borrowing rules as explicit check functions
- locks: per-item / per-patron serialization of read-then-write operations
- lifecycle: ``LoanLifecycleEngine``, the only writer of copy counts and loans
"""

from .lifecycle import InventoryStatus, LoanLifecycleEngine, get_engine, set_engine
from .locks import LockTable, item_key, patron_key

__all__ = [
    "InventoryStatus",
    "LoanLifecycleEngine",
    "LockTable",
    "get_engine",
    "item_key",
    "patron_key",
    "set_engine",
]
