"""
Loan record model and the pure rules of the loan state machine.

A LoanRecord is one patron's hold or borrow of one copy of an item:

    (borrow)  ──▶ BORROWED ──(due date passes)──▶ OVERDUE
    (reserve) ──▶ RESERVED ──(confirm)──▶ BORROWED
                     │
                     └──(hold lapses, sweep)──▶ EXPIRED
    BORROWED / OVERDUE ──(return)──▶ RETURNED

Overdue is *derived*: ``derive_status`` computes it from the due date at
read time, so queries never write. The stored status catches up only when
a mutating operation commits.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LoanStatus(str, Enum):
    """Status of a loan record."""

    RESERVED = "reserved"
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    EXPIRED = "expired"


#: Records that currently hold a copy of their item
HOLDING_STATUSES = frozenset({LoanStatus.RESERVED, LoanStatus.BORROWED, LoanStatus.OVERDUE})

#: Records counted against a patron's concurrent loan limit
LOAN_STATUSES = frozenset({LoanStatus.BORROWED, LoanStatus.OVERDUE})

TERMINAL_STATUSES = frozenset({LoanStatus.RETURNED, LoanStatus.EXPIRED})

_CENTS = Decimal("0.01")


class Fine(BaseModel):
    """Late-return fine attached to a loan."""

    amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    paid: bool = False
    paid_at: datetime | None = None

    @property
    def outstanding(self) -> Decimal:
        return Decimal("0.00") if self.paid else self.amount


class LoanRecord(BaseModel):
    """
    One entry in the lending ledger.

    ``status`` on a model returned by the engine is always the derived
    status as of the moment it was read.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the loan record",
        pattern=r"^loan_[a-zA-Z0-9]{6,}$",
        examples=["loan_3f9a1c2b7d4e"],
    )

    patron_id: str = Field(..., description="Patron holding the copy")

    item_id: str = Field(..., description="Item the copy belongs to")

    created_at: datetime = Field(
        ...,
        description="Start of the loan or reservation; reset when a hold is confirmed",
    )

    due_at: datetime = Field(
        ...,
        description="Current due date, or hold expiry for reservations",
    )

    returned_at: datetime | None = Field(
        None,
        description="When the copy came back",
    )

    status: LoanStatus = Field(default=LoanStatus.BORROWED)

    renewal_count: int = Field(default=0, ge=0)

    fine: Fine = Field(default_factory=Fine)

    notes: str | None = Field(
        None,
        description="Append-only audit trail, one line per event",
    )

    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "LoanRecord":
        """Ensure the return timestamp is consistent with the status."""
        if self.status == LoanStatus.RETURNED and self.returned_at is None:
            raise ValueError("Returned loans must carry a return timestamp")

        if self.returned_at and self.returned_at < self.created_at:
            raise ValueError("Return date cannot be before loan start")

        return self

    @property
    def is_active(self) -> bool:
        return self.status in HOLDING_STATUSES

    def days_overdue(self, now: datetime) -> int:
        """Whole days past due as of ``now`` (zero for terminal records)."""
        if self.status in TERMINAL_STATUSES:
            return 0
        return days_late(self.due_at, now)

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=False,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "loan_3f9a1c2b7d4e",
                "patron_id": "patron_smith001",
                "item_id": "item_gatsby01",
                "created_at": "2026-10-01T10:30:00",
                "due_at": "2026-10-15T10:30:00",
                "status": "borrowed",
                "renewal_count": 0,
                "fine": {"amount": "0.00", "paid": False, "paid_at": None},
            }
        },
    )


def derive_status(
    status: LoanStatus, due_at: datetime, now: datetime
) -> LoanStatus:
    """
    Compute the effective status of a record at ``now``.

    Borrowed and Overdue collapse onto the due date: past it the loan is
    Overdue, otherwise Borrowed (covers a due date moved forward by staff).
    Reservations never become overdue; they expire through the sweep.
    """
    status = LoanStatus(status)
    if status in LOAN_STATUSES:
        return LoanStatus.OVERDUE if now > due_at else LoanStatus.BORROWED
    return status


def days_late(due_at: datetime, returned_at: datetime) -> int:
    """Full days between the due date and ``returned_at``, never negative."""
    if returned_at <= due_at:
        return 0
    return (returned_at - due_at) // timedelta(days=1)


def compute_fine(due_at: datetime, returned_at: datetime, daily_rate: Decimal) -> Decimal:
    """Fine owed for a copy returned at ``returned_at``."""
    amount = Decimal(days_late(due_at, returned_at)) * Decimal(daily_rate)
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def append_note(notes: str | None, line: str, at: datetime) -> str:
    """Return ``notes`` with a timestamped line appended."""
    entry = f"[{at.isoformat(timespec='seconds')}] {line}"
    return f"{notes}\n{entry}" if notes else entry
