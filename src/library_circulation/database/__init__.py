"""
Database package for the Library Circulation service.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- Repositories for items, patrons and loan records

The database layer is responsible for:
1. Persisting the ledger and copy counts between restarts
2. Conditional copy-count updates that stay correct under concurrent requests
3. Translating driver failures into circulation errors
"""

from .item_repository import ItemCreateSchema, ItemMetadataUpdateSchema, ItemRepository
from .loan_repository import LoanCreateSchema, LoanRepository
from .patron_repository import PatronCreateSchema, PatronRepository
from .repository import (
    BaseRepository,
    PaginatedResponse,
    PaginationParams,
)
from .schema import Base, Item, LoanRecord, LoanStatusEnum, Patron
from .session import (
    DatabaseManager,
    get_db_manager,
    safe_commit,
    safe_query,
    set_db_manager,
)

__all__ = [
    "Base",
    "BaseRepository",
    "DatabaseManager",
    "Item",
    "ItemCreateSchema",
    "ItemMetadataUpdateSchema",
    "ItemRepository",
    "LoanCreateSchema",
    "LoanRecord",
    "LoanRepository",
    "LoanStatusEnum",
    "PaginatedResponse",
    "PaginationParams",
    "Patron",
    "PatronCreateSchema",
    "PatronRepository",
    "get_db_manager",
    "safe_commit",
    "safe_query",
    "set_db_manager",
]
