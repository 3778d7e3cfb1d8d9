"""
Loan lifecycle engine.

This is the only component allowed to move a copy between "on the shelf"
and "held by a patron". Every mutating operation follows the same shape:

1. Take the per-item and per-patron locks (``LockTable``)
2. Open one database transaction
3. Read current state and derive the loan status as of ``now``
4. Run the policy check; a rejection raises before anything is written
5. Adjust ``available_copies`` with a conditional UPDATE and write the
   ledger row in the same transaction
6. Commit, release the locks, log the transition

The engine keeps no cached counts between calls; every operation re-reads.
"""

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import LoanPolicy, get_config
from ..database.item_repository import ItemRepository
from ..database.loan_repository import LoanCreateSchema, LoanRepository
from ..database.patron_repository import PatronRepository
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.schema import LoanRecord as LoanDB
from ..database.schema import LoanStatusEnum
from ..database.session import DatabaseManager, get_db_manager
from ..errors import NoCopiesAvailable, NotAReservation, NotFoundError, PolicyViolation
from ..models.item import Item
from ..models.loan import (
    HOLDING_STATUSES,
    LoanRecord,
    LoanStatus,
    append_note,
    compute_fine,
    days_late,
    derive_status,
)
from . import policy as rules
from .locks import LockTable, item_key, patron_key

logger = logging.getLogger(__name__)


def _log_rejections(func):
    """Log policy rejections of an engine operation before re-raising them."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except PolicyViolation as e:
            logger.info("%s%s rejected: %s (%s)", func.__name__, args, e.code, e.message)
            raise

    return wrapper


class InventoryStatus(BaseModel):
    """Copy accounting for one item."""

    item_id: str
    total_copies: int
    available_copies: int
    active_records: int

    @property
    def consistent(self) -> bool:
        return self.available_copies + self.active_records == self.total_copies


@dataclass
class _Unit:
    """Repositories bound to one transaction and one reference time."""

    session: Session
    now: datetime
    items: ItemRepository
    patrons: PatronRepository
    loans: LoanRepository


class LoanLifecycleEngine:
    """
    Orchestrates the item inventory, patron registry and loan record store.

    Args:
        db: Database manager providing transactional sessions
        policy: Borrowing rules; defaults to ``LoanPolicy()``
        locks: Lock table shared by every engine serving the same database
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        db: DatabaseManager,
        policy: LoanPolicy | None = None,
        locks: LockTable | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.policy = policy or LoanPolicy()
        self.locks = locks or LockTable()
        self.clock = clock

    # === Plumbing ===

    def _unit(self, session: Session, now: datetime | None = None) -> _Unit:
        now = now or self.clock()
        return _Unit(
            session=session,
            now=now,
            items=ItemRepository(session),
            patrons=PatronRepository(session),
            loans=LoanRepository(session, now=now),
        )

    def _locate(self, loan_id: str) -> tuple[str, str]:
        """Find which patron and item a loan belongs to, for locking."""
        with self.db.session_scope() as session:
            row = LoanRepository(session).get_row(loan_id)
            return row.patron_id, row.item_id

    def _require_patron(self, unit: _Unit, patron_id: str) -> None:
        if not unit.patrons.exists(patron_id):
            raise NotFoundError(f"Patron {patron_id} not found")

    def _require_item(self, unit: _Unit, item_id: str) -> None:
        if not unit.items.item_exists(item_id):
            raise NotFoundError(f"Item {item_id} not found")

    def _take_copy(self, unit: _Unit, item_id: str) -> None:
        # The pre-check saw a copy; another process may still have won it
        if not unit.items.reserve_copy(item_id):
            raise NoCopiesAvailable("No copies of this item are available")

    @staticmethod
    def _status(row: LoanDB, now: datetime) -> LoanStatus:
        return derive_status(LoanStatus(row.status.value), row.due_at, now)

    @staticmethod
    def _set_status(row: LoanDB, status: LoanStatus, now: datetime) -> None:
        row.status = LoanStatusEnum(status.value)
        row.updated_at = now

    # === Creating records ===

    @_log_rejections
    def borrow(
        self, patron_id: str, item_id: str, due_at: datetime | None = None
    ) -> LoanRecord:
        """
        Lend a copy of ``item_id`` to ``patron_id``.

        Raises:
            NotFoundError, InactivePatron, NoCopiesAvailable, HasOverdue,
            LoanLimitReached
        """
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                self._require_patron(unit, patron_id)
                self._require_item(unit, item_id)

                rules.check_can_borrow(
                    self.policy,
                    patron_active=unit.patrons.is_active_patron(patron_id),
                    available_copies=unit.items.get_available(item_id),
                    has_overdue=unit.loans.patron_has_overdue(patron_id, unit.now),
                    current_loans=unit.loans.count_loans_for_patron(patron_id),
                )

                self._take_copy(unit, item_id)
                row = unit.loans.create(
                    LoanCreateSchema(
                        patron_id=patron_id,
                        item_id=item_id,
                        status=LoanStatus.BORROWED,
                        created_at=unit.now,
                        due_at=due_at or rules.loan_due_date(self.policy, unit.now),
                        notes=append_note(None, "Borrowed", unit.now),
                    )
                )
                record = unit.loans.to_model(row)

        logger.info(
            "Loan %s: patron %s borrowed item %s, due %s",
            record.id,
            patron_id,
            item_id,
            record.due_at.isoformat(),
        )
        return record

    @_log_rejections
    def reserve(self, patron_id: str, item_id: str) -> LoanRecord:
        """
        Hold a copy of ``item_id`` for ``patron_id`` until the hold window ends.

        Raises:
            NotFoundError, NoCopiesAvailable, HasOverdue, DuplicateHold
        """
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                self._require_patron(unit, patron_id)
                self._require_item(unit, item_id)

                rules.check_can_reserve(
                    available_copies=unit.items.get_available(item_id),
                    has_overdue=unit.loans.patron_has_overdue(patron_id, unit.now),
                    has_hold=unit.loans.has_active_hold(patron_id, item_id),
                )

                self._take_copy(unit, item_id)
                row = unit.loans.create(
                    LoanCreateSchema(
                        patron_id=patron_id,
                        item_id=item_id,
                        status=LoanStatus.RESERVED,
                        created_at=unit.now,
                        due_at=rules.hold_expiry(self.policy, unit.now),
                        notes=append_note(None, "Reserved", unit.now),
                    )
                )
                record = unit.loans.to_model(row)

        logger.info(
            "Loan %s: patron %s reserved item %s until %s",
            record.id,
            patron_id,
            item_id,
            record.due_at.isoformat(),
        )
        return record

    # === Transitions on existing records ===

    @_log_rejections
    def confirm(self, loan_id: str) -> LoanRecord:
        """
        Turn a reservation into a fresh loan. The held copy carries over.

        Raises:
            NotFoundError, NotAReservation, LoanLimitReached
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                rules.check_can_confirm(
                    self.policy,
                    status=self._status(row, unit.now),
                    current_loans=unit.loans.count_loans_for_patron(patron_id),
                )

                row.created_at = unit.now
                row.due_at = rules.loan_due_date(self.policy, unit.now)
                row.notes = append_note(row.notes, "Reservation confirmed as loan", unit.now)
                self._set_status(row, LoanStatus.BORROWED, unit.now)
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info("Loan %s: reservation confirmed, due %s", loan_id, record.due_at.isoformat())
        return record

    @_log_rejections
    def renew(self, loan_id: str) -> LoanRecord:
        """
        Extend a borrowed loan's due date.

        Raises:
            NotFoundError, RenewalCapReached, LoanOverdue, AlreadyReturned
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                rules.check_can_renew(
                    self.policy,
                    status=self._status(row, unit.now),
                    renewal_count=row.renewal_count,
                )

                row.due_at = rules.renewed_due_date(self.policy, row.due_at)
                row.renewal_count += 1
                row.notes = append_note(
                    row.notes, f"Renewal {row.renewal_count} of {self.policy.renewal_cap}", unit.now
                )
                self._set_status(row, LoanStatus.BORROWED, unit.now)
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info(
            "Loan %s: renewed (%d/%d), due %s",
            loan_id,
            record.renewal_count,
            self.policy.renewal_cap,
            record.due_at.isoformat(),
        )
        return record

    @_log_rejections
    def return_loan(self, loan_id: str) -> LoanRecord:
        """
        Take a copy back. A late return is fined once, from the actual return time.

        Returning twice is rejected with AlreadyReturned and the copy count
        is only incremented the first time.

        Raises:
            NotFoundError, AlreadyReturned
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                rules.check_can_return(status=self._status(row, unit.now))

                row.returned_at = unit.now
                late = days_late(row.due_at, unit.now)
                if late > 0:
                    row.fine_amount = compute_fine(
                        row.due_at, unit.now, self.policy.daily_fine_rate
                    )
                    row.notes = append_note(
                        row.notes,
                        f"Returned {late} days late. Fine assessed: {row.fine_amount:.2f}",
                        unit.now,
                    )
                else:
                    row.notes = append_note(row.notes, "Returned", unit.now)
                self._set_status(row, LoanStatus.RETURNED, unit.now)

                unit.items.release_copy(item_id)
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info(
            "Loan %s: item %s returned by patron %s (fine %s)",
            loan_id,
            item_id,
            patron_id,
            record.fine.amount,
        )
        return record

    @_log_rejections
    def pay_fine(self, loan_id: str) -> LoanRecord:
        """
        Record a fine as paid. The loan's status is not affected.

        Raises:
            NotFoundError, NoFineDue, AlreadyPaid
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                rules.check_can_pay(unit.loans.to_model(row).fine)

                row.fine_paid = True
                row.fine_paid_at = unit.now
                row.notes = append_note(
                    row.notes, f"Fine of {row.fine_amount:.2f} paid", unit.now
                )
                row.updated_at = unit.now
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info("Loan %s: fine of %s paid", loan_id, record.fine.amount)
        return record

    @_log_rejections
    def cancel_reservation(self, loan_id: str) -> LoanRecord:
        """
        Withdraw a hold before it is picked up; the copy goes back on the shelf.

        Raises:
            NotFoundError, NotAReservation
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                status = self._status(row, unit.now)
                if status != LoanStatus.RESERVED:
                    raise NotAReservation(f"Loan is {status.value}, not a reservation")

                row.notes = append_note(row.notes, "Reservation cancelled", unit.now)
                self._set_status(row, LoanStatus.EXPIRED, unit.now)
                unit.items.release_copy(item_id)
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info("Loan %s: reservation cancelled, item %s released", loan_id, item_id)
        return record

    # === Administrative operations ===

    @_log_rejections
    def update_due_date(self, loan_id: str, due_at: datetime) -> LoanRecord:
        """
        Move the due date (or hold expiry) of a record still holding a copy.

        The stored status is re-derived against the new date, so an overdue
        loan given a future date reads as borrowed again.

        Raises:
            NotFoundError, NotActive
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                rules.check_is_active(self._status(row, unit.now))

                previous = row.due_at
                row.due_at = due_at
                row.notes = append_note(
                    row.notes,
                    f"Due date changed from {previous.isoformat(timespec='minutes')} "
                    f"to {due_at.isoformat(timespec='minutes')}",
                    unit.now,
                )
                self._set_status(row, self._status(row, unit.now), unit.now)
                unit.loans.update(row)
                record = unit.loans.to_model(row)

        logger.info("Loan %s: due date moved to %s", loan_id, due_at.isoformat())
        return record

    def remove_loan(self, loan_id: str) -> None:
        """
        Delete a ledger entry. A record still holding a copy gives it back first.

        Raises:
            NotFoundError
        """
        patron_id, item_id = self._locate(loan_id)
        with self.locks.hold(item_key(item_id), patron_key(patron_id)):
            with self.db.session_scope() as session:
                unit = self._unit(session)
                row = unit.loans.get_row(loan_id)

                if LoanStatus(row.status.value) in HOLDING_STATUSES:
                    unit.items.release_copy(item_id)
                unit.loans.remove(loan_id)

        logger.warning("Loan %s removed by administrator (item %s)", loan_id, item_id)

    def expire_reservations(self, now: datetime | None = None) -> list[LoanRecord]:
        """
        Sweep reservations whose hold window has passed.

        Each lapsed hold is marked Expired and its copy returned to the
        shelf, one transaction per record. ``now`` defaults to the engine clock.
        """
        now = now or self.clock()
        with self.db.session_scope() as session:
            lapsed = [
                (row.id, row.patron_id, row.item_id)
                for row in LoanRepository(session).lapsed_reservations(now)
            ]

        expired = []
        for loan_id, patron_id, item_id in lapsed:
            with self.locks.hold(item_key(item_id), patron_key(patron_id)):
                with self.db.session_scope() as session:
                    unit = self._unit(session, now)
                    row = unit.loans.get_row(loan_id)
                    # Confirmed or cancelled since the sweep started
                    if row.status != LoanStatusEnum.RESERVED or row.due_at >= unit.now:
                        continue

                    row.notes = append_note(row.notes, "Reservation expired", unit.now)
                    self._set_status(row, LoanStatus.EXPIRED, unit.now)
                    unit.items.release_copy(item_id)
                    unit.loans.update(row)
                    expired.append(unit.loans.to_model(row))

        if expired:
            logger.info("Expired %d lapsed reservations", len(expired))
        return expired

    def mark_overdue(self, now: datetime | None = None) -> list[LoanRecord]:
        """
        Persist the Overdue status for every borrowed loan past its due date.

        Reads already report these loans as overdue; this only brings the
        stored column in line (for reporting outside the engine).
        """
        now = now or self.clock()
        with self.db.session_scope() as session:
            candidates = [
                (row.id, row.patron_id, row.item_id)
                for row in LoanRepository(session).overdue_rows(now)
            ]

        marked = []
        for loan_id, patron_id, item_id in candidates:
            with self.locks.hold(item_key(item_id), patron_key(patron_id)):
                with self.db.session_scope() as session:
                    unit = self._unit(session, now)
                    row = unit.loans.get_row(loan_id)
                    if row.status != LoanStatusEnum.BORROWED or row.due_at >= unit.now:
                        continue

                    row.notes = append_note(row.notes, "Marked overdue", unit.now)
                    self._set_status(row, LoanStatus.OVERDUE, unit.now)
                    unit.loans.update(row)
                    marked.append(unit.loans.to_model(row))

        if marked:
            logger.info("Marked %d loans overdue", len(marked))
        return marked

    @_log_rejections
    def resize_item(self, item_id: str, new_total: int) -> Item:
        """
        Change how many copies of an item the library owns.

        Raises:
            NotFoundError, InventoryShrinkBelowLoans
        """
        with self.locks.hold(item_key(item_id)):
            with self.db.session_scope() as session:
                return ItemRepository(session).resize(item_id, new_total)

    # === Queries (never write) ===

    def get_loan(self, loan_id: str) -> LoanRecord:
        with self.db.session_scope() as session:
            return self._unit(session).loans.get(loan_id)

    def list_overdue(self) -> list[LoanRecord]:
        """Every overdue loan, oldest due date first."""
        with self.db.session_scope() as session:
            unit = self._unit(session)
            return unit.loans.overdue(unit.now)

    def active_loans_for_patron(self, patron_id: str) -> list[LoanRecord]:
        with self.db.session_scope() as session:
            unit = self._unit(session)
            self._require_patron(unit, patron_id)
            return unit.loans.active_by_patron(patron_id)

    def active_loans_for_item(self, item_id: str) -> list[LoanRecord]:
        with self.db.session_scope() as session:
            unit = self._unit(session)
            self._require_item(unit, item_id)
            return unit.loans.active_by_item(item_id)

    def patron_loans(
        self,
        patron_id: str,
        status: LoanStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        """Loan history of a patron, newest first."""
        with self.db.session_scope() as session:
            unit = self._unit(session)
            self._require_patron(unit, patron_id)
            return unit.loans.history_by_patron(patron_id, status, pagination)

    def item_loans(
        self,
        item_id: str,
        status: LoanStatus | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        """Loan history of an item, newest first."""
        with self.db.session_scope() as session:
            unit = self._unit(session)
            self._require_item(unit, item_id)
            return unit.loans.history_by_item(item_id, status, pagination)

    def find_loans(
        self,
        status: LoanStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanRecord]:
        """Loans matching a status and a start-date range."""
        with self.db.session_scope() as session:
            return self._unit(session).loans.find(
                status=status, start=start, end=end, pagination=pagination
            )

    def status_counts(self) -> dict[str, int]:
        """Number of ledger entries per derived status."""
        with self.db.session_scope() as session:
            unit = self._unit(session)
            return unit.loans.status_counts(unit.now)

    def inventory_status(self, item_id: str) -> InventoryStatus:
        """Compare an item's counts with the ledger."""
        with self.db.session_scope() as session:
            unit = self._unit(session)
            item = unit.items.get(item_id)
            return InventoryStatus(
                item_id=item_id,
                total_copies=item.total_copies,
                available_copies=item.available_copies,
                active_records=unit.loans.count_active_for_item(item_id),
            )


# Global engine instance shared by the request layer
_engine: LoanLifecycleEngine | None = None


def get_engine() -> LoanLifecycleEngine:
    """Get the global engine, built from the global database manager and config."""
    global _engine  # noqa: PLW0603 - Singleton pattern, as for the database manager

    if _engine is None:
        _engine = LoanLifecycleEngine(get_db_manager(), policy=get_config().policy)

    return _engine


def set_engine(engine: LoanLifecycleEngine | None) -> None:
    """Replace the global engine (tests, alternate databases)."""
    global _engine  # noqa: PLW0603
    _engine = engine
