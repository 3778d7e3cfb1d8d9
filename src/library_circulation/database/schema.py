"""
SQLAlchemy database schema for the Library Circulation service.

Three tables back the loan engine:
1. items        - catalog entries with total/available copy counts
2. patrons      - registered members with an active flag
3. loan_records - the lending ledger, one row per hold or borrow

The inventory invariant (0 <= available_copies <= total_copies) is also
enforced by CHECK constraints so a bug in application code fails loudly
instead of corrupting counts. There are no ORM event hooks: status and
count rules run explicitly inside the engine.
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

# Base class for all SQLAlchemy models
Base = declarative_base()


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status."""

    RESERVED = "reserved"
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    EXPIRED = "expired"


class Item(Base):
    """
    Items table - catalog entries and their copy counts.

    ``available_copies`` is mutated only by the loan engine through
    conditional UPDATE statements in ItemRepository.
    """

    __tablename__ = "items"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False, index=True)
    author = Column(String(200), nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    loans = relationship("LoanRecord", back_populates="item")

    __table_args__ = (
        Index("idx_item_availability", "available_copies"),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
        CheckConstraint("id LIKE 'item_%'", name="check_item_id_format"),
    )


class Patron(Base):
    """
    Patrons table - registered members.

    Read-only from the loan engine's point of view.
    """

    __tablename__ = "patrons"

    id = Column(String(50), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(255), nullable=True, unique=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("LoanRecord", back_populates="patron")

    __table_args__ = (
        Index("idx_patron_active", "active"),
        CheckConstraint("id LIKE 'patron_%'", name="check_patron_id_format"),
    )


class LoanRecord(Base):
    """
    Loan records table - the lending ledger.

    Rows are never deleted in normal operation; terminal records stay as
    history. Indexed for the engine's query patterns: active records by
    patron and by item, overdue records by due date, status + date ranges.
    """

    __tablename__ = "loan_records"

    id = Column(String(50), primary_key=True)
    patron_id = Column(String(50), ForeignKey("patrons.id"), nullable=False)
    item_id = Column(String(50), ForeignKey("items.id"), nullable=False)
    created_at = Column(DateTime, nullable=False)
    due_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime, nullable=True)
    status = Column(Enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.BORROWED)
    renewal_count = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Numeric(10, 2), nullable=False, default=0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    updated_at = Column(DateTime, nullable=True)

    patron = relationship("Patron", back_populates="loans")
    item = relationship("Item", back_populates="loans")

    __table_args__ = (
        Index("idx_loan_patron_status", "patron_id", "status"),
        Index("idx_loan_item_status", "item_id", "status"),
        Index("idx_loan_status_due", "status", "due_at"),
        Index("idx_loan_created", "created_at"),
        CheckConstraint("id LIKE 'loan_%'", name="check_loan_id_format"),
        CheckConstraint("renewal_count >= 0", name="check_renewal_count_non_negative"),
        CheckConstraint("fine_amount >= 0", name="check_fine_non_negative"),
    )
