"""
Tests for the loan lifecycle engine.

Every test runs against a fresh SQLite file and a fixed clock, so due dates
and fines are exact.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from library_circulation.config import LoanPolicy
from library_circulation.database import LoanRepository
from library_circulation.engine import LoanLifecycleEngine, LockTable, item_key, patron_key
from library_circulation.errors import (
    AlreadyPaid,
    AlreadyReturned,
    DuplicateHold,
    HasOverdue,
    InactivePatron,
    InventoryShrinkBelowLoans,
    LoanLimitReached,
    LoanOverdue,
    NoCopiesAvailable,
    NoFineDue,
    NotActive,
    NotAReservation,
    NotBorrowed,
    NotFoundError,
    RenewalCapReached,
)
from library_circulation.models import LoanStatus


# Start time of the conftest clock
START = datetime(2026, 3, 2, 10, 0, 0)


def available(engine: LoanLifecycleEngine, item_id: str) -> int:
    return engine.inventory_status(item_id).available_copies


def assert_consistent(engine: LoanLifecycleEngine, *item_ids: str) -> None:
    for item_id in item_ids:
        status = engine.inventory_status(item_id)
        assert status.consistent, status


class TestBorrow:
    def test_borrow_takes_a_copy(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)

        assert record.status == LoanStatus.BORROWED
        assert record.created_at == START
        assert record.due_at == START + timedelta(days=14)
        assert record.renewal_count == 0
        assert record.fine.amount == Decimal("0.00")
        assert "Borrowed" in record.notes
        assert available(engine, item.id) == 1
        assert_consistent(engine, item.id)

    def test_custom_due_date(self, engine, item, patron):
        due = START + timedelta(days=3)
        assert engine.borrow(patron.id, item.id, due_at=due).due_at == due

    def test_unknown_patron_or_item(self, engine, item, patron):
        with pytest.raises(NotFoundError, match="Patron"):
            engine.borrow("patron_nobody", item.id)
        with pytest.raises(NotFoundError, match="Item"):
            engine.borrow(patron.id, "item_nothing")
        assert available(engine, item.id) == 2

    def test_inactive_patron(self, engine, item, make_patron):
        inactive = make_patron(active=False)

        with pytest.raises(InactivePatron):
            engine.borrow(inactive.id, item.id)
        assert available(engine, item.id) == 2

    def test_no_copies_available(self, engine, make_item, make_patron):
        item = make_item(copies=1)
        engine.borrow(make_patron().id, item.id)

        with pytest.raises(NoCopiesAvailable):
            engine.borrow(make_patron().id, item.id)
        assert available(engine, item.id) == 0

    def test_patron_with_overdue_loan_cannot_borrow(self, engine, make_item, patron):
        first, second = make_item(), make_item()
        engine.borrow(patron.id, first.id, due_at=START - timedelta(days=1))

        with pytest.raises(HasOverdue):
            engine.borrow(patron.id, second.id)
        assert available(engine, second.id) == 1

    def test_loan_limit(self, engine, make_item, patron):
        items = [make_item() for _ in range(4)]
        for item in items[:3]:
            engine.borrow(patron.id, item.id)

        with pytest.raises(LoanLimitReached):
            engine.borrow(patron.id, items[3].id)
        assert len(engine.active_loans_for_patron(patron.id)) == 3

    def test_reservations_do_not_count_towards_limit(self, engine, make_item, patron):
        for _ in range(3):
            engine.reserve(patron.id, make_item().id)

        record = engine.borrow(patron.id, make_item().id)
        assert record.status == LoanStatus.BORROWED


class TestReserve:
    def test_reserve_holds_a_copy(self, engine, make_item, patron):
        item = make_item(copies=1)
        record = engine.reserve(patron.id, item.id)

        assert record.status == LoanStatus.RESERVED
        assert record.due_at == START + timedelta(days=2)
        assert available(engine, item.id) == 0
        assert_consistent(engine, item.id)

    def test_duplicate_hold(self, engine, item, patron):
        engine.reserve(patron.id, item.id)

        with pytest.raises(DuplicateHold):
            engine.reserve(patron.id, item.id)
        assert available(engine, item.id) == 1

    def test_cannot_reserve_an_item_already_borrowed(self, engine, item, patron):
        engine.borrow(patron.id, item.id)

        with pytest.raises(DuplicateHold):
            engine.reserve(patron.id, item.id)

    def test_no_copies(self, engine, make_item, make_patron):
        item = make_item(copies=1)
        engine.borrow(make_patron().id, item.id)

        with pytest.raises(NoCopiesAvailable):
            engine.reserve(make_patron().id, item.id)

    def test_overdue_patron_cannot_reserve(self, engine, make_item, patron):
        engine.borrow(patron.id, make_item().id, due_at=START - timedelta(hours=1))

        with pytest.raises(HasOverdue):
            engine.reserve(patron.id, make_item().id)


class TestConfirm:
    def test_reserve_confirm_return_scenario(self, engine, clock, make_item, patron):
        item = make_item(copies=1)

        reserved = engine.reserve(patron.id, item.id)
        assert reserved.status == LoanStatus.RESERVED
        assert available(engine, item.id) == 0

        clock.advance(days=1)
        confirmed = engine.confirm(reserved.id)
        assert confirmed.status == LoanStatus.BORROWED
        assert confirmed.created_at == clock.now
        assert confirmed.due_at == clock.now + timedelta(days=14)
        assert available(engine, item.id) == 0

        clock.advance(days=7)
        returned = engine.return_loan(reserved.id)
        assert returned.status == LoanStatus.RETURNED
        assert returned.fine.amount == Decimal("0.00")
        assert available(engine, item.id) == 1
        assert_consistent(engine, item.id)

    def test_confirm_a_loan(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)

        with pytest.raises(NotAReservation):
            engine.confirm(record.id)

    def test_confirm_respects_loan_limit(self, engine, make_item, patron):
        hold = engine.reserve(patron.id, make_item().id)
        for _ in range(3):
            engine.borrow(patron.id, make_item().id)

        with pytest.raises(LoanLimitReached):
            engine.confirm(hold.id)
        assert engine.get_loan(hold.id).status == LoanStatus.RESERVED

    def test_unknown_loan(self, engine):
        with pytest.raises(NotFoundError):
            engine.confirm("loan_doesnotexist")


class TestRenew:
    def test_renew_up_to_cap(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)
        due = record.due_at

        for expected in range(1, 4):
            record = engine.renew(record.id)
            due += timedelta(days=7)
            assert record.renewal_count == expected
            assert record.due_at == due
            assert record.status == LoanStatus.BORROWED

        with pytest.raises(RenewalCapReached):
            engine.renew(record.id)
        assert engine.get_loan(record.id).renewal_count == 3

    def test_overdue_loan_cannot_be_renewed(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id)
        clock.advance(days=15)

        with pytest.raises(LoanOverdue):
            engine.renew(record.id)

    def test_returned_loan_cannot_be_renewed(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)
        engine.return_loan(record.id)

        with pytest.raises(AlreadyReturned):
            engine.renew(record.id)

    def test_reservation_cannot_be_renewed(self, engine, item, patron):
        hold = engine.reserve(patron.id, item.id)

        with pytest.raises(NotBorrowed):
            engine.renew(hold.id)

    def test_custom_policy(self, db, clock, item, patron):
        engine = LoanLifecycleEngine(
            db, policy=LoanPolicy(renewal_cap=1, renewal_extension_days=3), clock=clock
        )
        record = engine.borrow(patron.id, item.id)

        assert engine.renew(record.id).due_at == record.due_at + timedelta(days=3)
        with pytest.raises(RenewalCapReached):
            engine.renew(record.id)


class TestReturn:
    def test_return_twice_is_rejected_and_counted_once(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)

        returned = engine.return_loan(record.id)
        assert returned.status == LoanStatus.RETURNED
        assert returned.returned_at == START
        assert available(engine, item.id) == 2

        with pytest.raises(AlreadyReturned):
            engine.return_loan(record.id)
        assert available(engine, item.id) == 2
        assert_consistent(engine, item.id)

    def test_on_time_return_has_no_fine(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id)
        clock.advance(days=14)

        assert engine.return_loan(record.id).fine.amount == Decimal("0.00")

    def test_return_five_days_late(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id, due_at=START - timedelta(days=5))

        returned = engine.return_loan(record.id)
        assert returned.fine.amount == Decimal("10.00")
        assert returned.fine.paid is False
        assert "5 days late" in returned.notes

    def test_partial_days_late_are_not_fined(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id)
        clock.advance(days=17, hours=20)

        assert engine.return_loan(record.id).fine.amount == Decimal("6.00")

    def test_fine_is_fixed_at_return(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id, due_at=START - timedelta(days=2))
        engine.return_loan(record.id)
        clock.advance(days=30)

        assert engine.get_loan(record.id).fine.amount == Decimal("4.00")

    def test_reservation_cannot_be_returned(self, engine, item, patron):
        hold = engine.reserve(patron.id, item.id)

        with pytest.raises(NotBorrowed):
            engine.return_loan(hold.id)
        assert available(engine, item.id) == 1


class TestPayFine:
    def test_pay_fine(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id, due_at=START - timedelta(days=3))
        engine.return_loan(record.id)
        clock.advance(hours=2)

        paid = engine.pay_fine(record.id)
        assert paid.fine.paid is True
        assert paid.fine.paid_at == clock.now
        assert paid.fine.amount == Decimal("6.00")
        assert paid.fine.outstanding == Decimal("0.00")
        assert paid.status == LoanStatus.RETURNED
        assert "Fine of 6.00 paid" in paid.notes

        with pytest.raises(AlreadyPaid):
            engine.pay_fine(record.id)

    def test_no_fine_due(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)

        with pytest.raises(NoFineDue):
            engine.pay_fine(record.id)
        engine.return_loan(record.id)
        with pytest.raises(NoFineDue):
            engine.pay_fine(record.id)

    def test_unknown_loan(self, engine):
        with pytest.raises(NotFoundError):
            engine.pay_fine("loan_000000000000")

    def test_holds_item_and_patron_locks(self, engine, monkeypatch, item, patron):
        record = engine.borrow(patron.id, item.id, due_at=START - timedelta(days=1))
        engine.return_loan(record.id)
        held = []
        hold = engine.locks.hold

        def recording_hold(*keys):
            held.append(set(keys))
            return hold(*keys)

        monkeypatch.setattr(engine.locks, "hold", recording_hold)
        engine.pay_fine(record.id)

        assert held == [{item_key(item.id), patron_key(patron.id)}]


class TestOverdue:
    def test_list_overdue_is_derived_and_ordered(self, engine, db, clock, make_item, make_patron):
        first = engine.borrow(make_patron().id, make_item().id, due_at=START + timedelta(days=2))
        second = engine.borrow(make_patron().id, make_item().id, due_at=START + timedelta(days=1))
        engine.borrow(make_patron().id, make_item().id)
        clock.advance(days=5)

        overdue = engine.list_overdue()
        assert [r.id for r in overdue] == [second.id, first.id]
        assert all(r.status == LoanStatus.OVERDUE for r in overdue)

        # Reading did not write the status
        with db.session_scope() as session:
            stored = LoanRepository(session).get(first.id)
        assert stored.status == LoanStatus.BORROWED

    def test_mark_overdue_persists_status(self, engine, db, clock, item, patron):
        record = engine.borrow(patron.id, item.id)
        clock.advance(days=15)

        marked = engine.mark_overdue()
        assert [r.id for r in marked] == [record.id]
        assert engine.mark_overdue() == []

        with db.session_scope() as session:
            stored = LoanRepository(session).get(record.id)
        assert stored.status == LoanStatus.OVERDUE
        assert "Marked overdue" in stored.notes

    def test_overdue_loan_still_counts_towards_limit(self, engine, clock, make_item, patron):
        for _ in range(3):
            engine.borrow(patron.id, make_item().id)
        clock.advance(days=20)
        engine.mark_overdue()

        assert len(engine.active_loans_for_patron(patron.id)) == 3
        with pytest.raises(HasOverdue):
            engine.borrow(patron.id, make_item().id)


class TestReservationExpiry:
    def test_sweep_expires_lapsed_holds(self, engine, clock, make_item, make_patron):
        item = make_item(copies=2)
        lapsed = engine.reserve(make_patron().id, item.id)
        clock.advance(days=1, hours=12)
        fresh = engine.reserve(make_patron().id, item.id)
        assert available(engine, item.id) == 0

        clock.advance(days=1)
        expired = engine.expire_reservations()

        assert [r.id for r in expired] == [lapsed.id]
        assert expired[0].status == LoanStatus.EXPIRED
        assert engine.get_loan(fresh.id).status == LoanStatus.RESERVED
        assert available(engine, item.id) == 1
        assert_consistent(engine, item.id)

    def test_expired_hold_is_terminal(self, engine, clock, item, patron):
        hold = engine.reserve(patron.id, item.id)
        engine.expire_reservations(now=START + timedelta(days=3))

        with pytest.raises(NotAReservation):
            engine.confirm(hold.id)
        with pytest.raises(NotActive):
            engine.return_loan(hold.id)
        with pytest.raises(NotActive):
            engine.renew(hold.id)
        assert available(engine, item.id) == 2

    def test_cancel_reservation(self, engine, item, patron):
        hold = engine.reserve(patron.id, item.id)

        cancelled = engine.cancel_reservation(hold.id)
        assert cancelled.status == LoanStatus.EXPIRED
        assert "cancelled" in cancelled.notes
        assert available(engine, item.id) == 2

        with pytest.raises(NotAReservation):
            engine.cancel_reservation(hold.id)


class TestAdministration:
    def test_update_due_date_rederives_status(self, engine, clock, item, patron):
        record = engine.borrow(patron.id, item.id)
        clock.advance(days=20)
        engine.mark_overdue()

        updated = engine.update_due_date(record.id, clock.now + timedelta(days=5))
        assert updated.status == LoanStatus.BORROWED
        assert updated.due_at == clock.now + timedelta(days=5)
        assert engine.renew(record.id).renewal_count == 1

    def test_update_due_date_on_returned_loan(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)
        engine.return_loan(record.id)

        with pytest.raises(NotActive):
            engine.update_due_date(record.id, START + timedelta(days=30))

    def test_remove_active_loan_releases_copy(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)
        assert available(engine, item.id) == 1

        engine.remove_loan(record.id)
        assert available(engine, item.id) == 2
        assert_consistent(engine, item.id)
        with pytest.raises(NotFoundError):
            engine.get_loan(record.id)

    def test_remove_returned_loan_leaves_count(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)
        engine.return_loan(record.id)

        engine.remove_loan(record.id)
        assert available(engine, item.id) == 2

    def test_resize_item(self, engine, make_item, make_patron):
        item = make_item(copies=3)
        engine.borrow(make_patron().id, item.id)
        engine.reserve(make_patron().id, item.id)

        resized = engine.resize_item(item.id, 6)
        assert (resized.total_copies, resized.available_copies) == (6, 4)

        resized = engine.resize_item(item.id, 2)
        assert (resized.total_copies, resized.available_copies) == (2, 0)
        assert_consistent(engine, item.id)

        with pytest.raises(InventoryShrinkBelowLoans):
            engine.resize_item(item.id, 1)

    def test_histories(self, engine, make_item, patron):
        first, second = make_item(), make_item()
        a = engine.borrow(patron.id, first.id)
        engine.return_loan(a.id)
        b = engine.borrow(patron.id, first.id)
        c = engine.reserve(patron.id, second.id)

        history = engine.patron_loans(patron.id)
        assert history.total == 3
        assert {r.id for r in history.items} == {a.id, b.id, c.id}

        returned = engine.patron_loans(patron.id, status=LoanStatus.RETURNED)
        assert [r.id for r in returned.items] == [a.id]

        assert engine.item_loans(first.id).total == 2
        with pytest.raises(NotFoundError):
            engine.patron_loans("patron_nobody")

    def test_status_counts(self, engine, clock, make_item, patron):
        a = engine.borrow(patron.id, make_item().id)
        engine.reserve(patron.id, make_item().id)
        engine.return_loan(a.id)
        engine.borrow(patron.id, make_item().id, due_at=START - timedelta(days=1))

        counts = engine.status_counts()
        assert counts == {
            "reserved": 1,
            "borrowed": 0,
            "returned": 1,
            "overdue": 1,
            "expired": 0,
        }


class TestConcurrency:
    def _race(self, n: int, call):
        barrier = threading.Barrier(n)

        def worker(i):
            barrier.wait()
            try:
                return call(i)
            except Exception as e:  # noqa: BLE001 - collected for assertions
                return e

        with ThreadPoolExecutor(max_workers=n) as pool:
            return list(pool.map(worker, range(n)))

    def test_last_copy_goes_to_exactly_one_borrower(self, engine, make_item, make_patron):
        item = make_item(copies=1)
        patrons = [make_patron() for _ in range(8)]

        results = self._race(8, lambda i: engine.borrow(patrons[i].id, item.id))

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 7
        assert all(isinstance(f, NoCopiesAvailable) for f in failures)
        assert available(engine, item.id) == 0
        assert_consistent(engine, item.id)

    def test_patron_limit_holds_under_concurrency(self, engine, make_item, patron):
        items = [make_item() for _ in range(6)]

        results = self._race(6, lambda i: engine.borrow(patron.id, items[i].id))

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 3
        assert all(
            isinstance(r, LoanLimitReached) for r in results if isinstance(r, Exception)
        )
        assert len(engine.active_loans_for_patron(patron.id)) == 3
        assert_consistent(engine, *(i.id for i in items))

    def test_concurrent_returns_increment_once(self, engine, item, patron):
        record = engine.borrow(patron.id, item.id)

        results = self._race(5, lambda _: engine.return_loan(record.id))

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert all(
            isinstance(r, AlreadyReturned) for r in results if isinstance(r, Exception)
        )
        assert available(engine, item.id) == 2

    def test_lock_table_empties_after_operations(self, engine, clock, make_item, make_patron):
        items = [make_item(copies=1) for _ in range(4)]
        patrons = [make_patron() for _ in range(4)]

        def cycle(i):
            due = START - timedelta(days=1)
            record = engine.borrow(patrons[i].id, items[i % 2].id, due_at=due)
            engine.return_loan(record.id)
            return engine.pay_fine(record.id)

        self._race(4, cycle)
        engine.reserve(patrons[0].id, items[3].id)
        clock.advance(days=30)
        assert len(engine.expire_reservations()) == 1

        assert len(engine.locks) == 0


class TestLockTable:
    def test_entry_dropped_when_last_holder_leaves(self):
        locks = LockTable()

        with locks.hold("item:a", "patron:p"):
            assert len(locks) == 2
            with locks.hold("item:b"):
                assert len(locks) == 3
            assert len(locks) == 2
        assert len(locks) == 0

    def test_waiter_keeps_entry_alive(self):
        locks = LockTable()
        entered = threading.Event()

        def waiter():
            with locks.hold("item:a"):
                entered.set()

        with locks.hold("item:a"):
            thread = threading.Thread(target=waiter)
            thread.start()
            assert not entered.wait(0.05)
            assert len(locks) == 1
        thread.join(timeout=5)

        assert entered.is_set()
        assert len(locks) == 0

    def test_released_after_error(self):
        locks = LockTable()

        with pytest.raises(ValueError), locks.hold("item:a", "item:b"):
            raise ValueError("boom")

        assert len(locks) == 0
