"""
Library Circulation Models.

Pydantic models for the entities the loan engine works with:
- Item: catalog entry with total and available copy counts
- Patron: registered member with an active flag
- LoanRecord: ledger entry for one hold or borrow of one copy

``derive_status`` and ``compute_fine`` are the pure rules of the loan state
machine; they take the current time as an argument and touch no storage.
"""

from .item import Item
from .loan import (
    HOLDING_STATUSES,
    LOAN_STATUSES,
    TERMINAL_STATUSES,
    Fine,
    LoanRecord,
    LoanStatus,
    append_note,
    compute_fine,
    days_late,
    derive_status,
)
from .patron import Patron

__all__ = [
    "HOLDING_STATUSES",
    "LOAN_STATUSES",
    "TERMINAL_STATUSES",
    "Fine",
    "Item",
    "LoanRecord",
    "LoanStatus",
    "Patron",
    "append_note",
    "compute_fine",
    "days_late",
    "derive_status",
]
