"""
Loan record store for the Library Circulation service.

This repository is the lending ledger:

1. **Create / read / update** loan records by id
2. **Active records** by patron and by item (Reserved, Borrowed, Overdue)
3. **Overdue records**, oldest due date first
4. **Status + date-range** listings for reporting
5. **Administrative removal**, the only deletion path

Overdue is derived from the due date, so every query that filters on
"overdue" or "borrowed" compares ``due_at`` against the caller's ``now``
instead of trusting the stored status.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy import and_, asc, delete, desc, func, select

from ..errors import NotFoundError
from ..models.loan import (
    HOLDING_STATUSES,
    LOAN_STATUSES,
    Fine,
    LoanRecord,
    LoanStatus,
    derive_status,
)
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import LoanRecord as LoanDB
from .schema import LoanStatusEnum
from .session import safe_query

logger = logging.getLogger(__name__)

_HOLDING = [LoanStatusEnum(s.value) for s in HOLDING_STATUSES]
_LOANS = [LoanStatusEnum(s.value) for s in LOAN_STATUSES]


class LoanCreateSchema(BaseModel):
    """Schema for a new ledger entry."""

    patron_id: str
    item_id: str
    status: LoanStatus
    created_at: datetime
    due_at: datetime
    notes: str | None = None


def _status_clause(status: LoanStatus, now: datetime):
    """SQL condition matching records whose *derived* status is ``status``."""
    if status == LoanStatus.OVERDUE:
        return and_(LoanDB.status.in_(_LOANS), LoanDB.due_at < now)
    if status == LoanStatus.BORROWED:
        return and_(LoanDB.status.in_(_LOANS), LoanDB.due_at >= now)
    return LoanDB.status == LoanStatusEnum(status.value)


class LoanRepository(BaseRepository[LoanDB, LoanCreateSchema, LoanRecord]):
    """Repository for loan records."""

    def __init__(self, session, now: datetime | None = None):
        super().__init__(session)
        # Reference time for derived status on the models this repository returns
        self.now = now

    @property
    def model_class(self):
        return LoanDB

    @property
    def response_schema(self):
        return LoanRecord

    def _to_response_model(self, db_obj: LoanDB, now: datetime | None = None) -> LoanRecord:
        """Row to model, with the status derived as of ``now`` (default ``self.now``)."""
        now = now or self.now
        status = LoanStatus(db_obj.status.value)
        if now is not None:
            status = derive_status(status, db_obj.due_at, now)
        return LoanRecord(
            id=db_obj.id,
            patron_id=db_obj.patron_id,
            item_id=db_obj.item_id,
            created_at=db_obj.created_at,
            due_at=db_obj.due_at,
            returned_at=db_obj.returned_at,
            status=status,
            renewal_count=db_obj.renewal_count,
            fine=Fine(
                amount=Decimal(db_obj.fine_amount or 0).quantize(Decimal("0.01")),
                paid=db_obj.fine_paid,
                paid_at=db_obj.fine_paid_at,
            ),
            notes=db_obj.notes,
            updated_at=db_obj.updated_at,
        )

    def to_model(self, db_obj: LoanDB) -> LoanRecord:
        return self._to_response_model(db_obj)

    # === Create / read / update ===

    def create(self, data: LoanCreateSchema) -> LoanDB:
        """Stage a new ledger row. The caller's transaction commits it."""
        loan = LoanDB(
            id=f"loan_{uuid.uuid4().hex[:12]}",
            patron_id=data.patron_id,
            item_id=data.item_id,
            created_at=data.created_at,
            due_at=data.due_at,
            status=LoanStatusEnum(data.status.value),
            renewal_count=0,
            fine_amount=Decimal("0.00"),
            fine_paid=False,
            notes=data.notes,
            updated_at=data.created_at,
        )
        return self._add(loan)

    def get_row(self, loan_id: str) -> LoanDB:
        """Load the ORM row for mutation, or raise NotFoundError."""
        loan = self._get_row(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def get(self, loan_id: str) -> LoanRecord:
        return self._to_response_model(self.get_row(loan_id))

    def update(self, loan: LoanDB) -> LoanDB:
        """Flush pending changes to a row inside the current transaction."""
        safe_query(self.session, lambda s: s.flush(), f"Failed to update loan {loan.id}")
        return loan

    def remove(self, loan_id: str) -> None:
        """Physically delete a ledger row (administrative use only)."""
        stmt = delete(LoanDB).where(LoanDB.id == loan_id)
        result = safe_query(self.session, lambda s: s.execute(stmt), "Failed to remove loan")
        if result.rowcount == 0:
            raise NotFoundError(f"Loan {loan_id} not found")
        logger.warning("Loan %s removed from the ledger", loan_id)

    # === Engine queries ===

    def active_by_patron(self, patron_id: str) -> list[LoanRecord]:
        """Records currently holding a copy for ``patron_id``."""
        query = (
            select(LoanDB)
            .where(LoanDB.patron_id == patron_id, LoanDB.status.in_(_HOLDING))
            .order_by(asc(LoanDB.due_at))
        )
        return self._all(query, "Failed to get active loans for patron")

    def active_by_item(self, item_id: str) -> list[LoanRecord]:
        """Records currently holding a copy of ``item_id``."""
        query = (
            select(LoanDB)
            .where(LoanDB.item_id == item_id, LoanDB.status.in_(_HOLDING))
            .order_by(asc(LoanDB.created_at))
        )
        return self._all(query, "Failed to get active loans for item")

    def count_active_for_item(self, item_id: str) -> int:
        return self._count(
            and_(LoanDB.item_id == item_id, LoanDB.status.in_(_HOLDING)),
            "Failed to count active loans for item",
        )

    def count_loans_for_patron(self, patron_id: str) -> int:
        """Borrowed + Overdue records counted against the loan limit."""
        return self._count(
            and_(LoanDB.patron_id == patron_id, LoanDB.status.in_(_LOANS)),
            "Failed to count loans for patron",
        )

    def patron_has_overdue(self, patron_id: str, now: datetime) -> bool:
        return (
            self._count(
                and_(LoanDB.patron_id == patron_id, _status_clause(LoanStatus.OVERDUE, now)),
                "Failed to check overdue loans",
            )
            > 0
        )

    def has_active_hold(self, patron_id: str, item_id: str) -> bool:
        """True if the patron already holds or borrows a copy of this item."""
        return (
            self._count(
                and_(
                    LoanDB.patron_id == patron_id,
                    LoanDB.item_id == item_id,
                    LoanDB.status.in_(_HOLDING),
                ),
                "Failed to check existing holds",
            )
            > 0
        )

    def overdue(self, now: datetime) -> list[LoanRecord]:
        """Every overdue record, oldest due date first."""
        query = (
            select(LoanDB)
            .where(_status_clause(LoanStatus.OVERDUE, now))
            .order_by(asc(LoanDB.due_at), asc(LoanDB.id))
        )
        return self._all(query, "Failed to get overdue loans", now=now)

    def overdue_rows(self, now: datetime) -> list[LoanDB]:
        query = select(LoanDB).where(
            LoanDB.status == LoanStatusEnum.BORROWED, LoanDB.due_at < now
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to get loans to mark overdue",
            )
        )

    def lapsed_reservations(self, now: datetime) -> list[LoanDB]:
        """Reserved rows whose hold window has passed."""
        query = (
            select(LoanDB)
            .where(LoanDB.status == LoanStatusEnum.RESERVED, LoanDB.due_at < now)
            .order_by(asc(LoanDB.due_at))
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to get lapsed reservations",
            )
        )

    # === Reporting ===

    def find(
        self,
        status: LoanStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        patron_id: str | None = None,
        item_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        """
        Records matching a status and a ``created_at`` range, newest first.

        Status matching uses derived status as of ``self.now``, or the current
        time when the repository has none; returned records report the status
        as of that same time.
        """
        now = self.now
        query = select(LoanDB)
        if status is not None:
            now = now or datetime.now()
            query = query.where(_status_clause(LoanStatus(status), now))
        if start is not None:
            query = query.where(LoanDB.created_at >= start)
        if end is not None:
            query = query.where(LoanDB.created_at <= end)
        if patron_id is not None:
            query = query.where(LoanDB.patron_id == patron_id)
        if item_id is not None:
            query = query.where(LoanDB.item_id == item_id)
        query = query.order_by(desc(LoanDB.created_at), desc(LoanDB.id))
        return self._paginate(
            query, pagination, convert=lambda row: self._to_response_model(row, now)
        )

    def history_by_patron(
        self,
        patron_id: str,
        status: LoanStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        return self.find(status=status, patron_id=patron_id, pagination=pagination)

    def history_by_item(
        self,
        item_id: str,
        status: LoanStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        return self.find(status=status, item_id=item_id, pagination=pagination)

    def status_counts(self, now: datetime) -> dict[str, int]:
        """Number of records per derived status."""
        counts = {}
        for status in LoanStatus:
            counts[status.value] = self._count(
                _status_clause(status, now), "Failed to count loans by status"
            )
        return counts

    # === Helpers ===

    def _all(self, query, error_msg: str, now: datetime | None = None) -> list[LoanRecord]:
        rows = safe_query(self.session, lambda s: s.execute(query).scalars().all(), error_msg)
        return [self._to_response_model(row, now) for row in rows]

    def _count(self, condition, error_msg: str) -> int:
        query = select(func.count()).select_from(LoanDB).where(condition)
        return safe_query(self.session, lambda s: s.execute(query).scalar(), error_msg) or 0


