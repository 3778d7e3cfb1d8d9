"""Tests for the loan model and the pure state-machine rules."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from library_circulation.models import (
    Fine,
    Item,
    LoanRecord,
    LoanStatus,
    append_note,
    compute_fine,
    days_late,
    derive_status,
)

DUE = datetime(2026, 3, 16, 10, 0, 0)


class TestDeriveStatus:
    def test_borrowed_before_due_stays_borrowed(self):
        assert derive_status(LoanStatus.BORROWED, DUE, DUE - timedelta(hours=1)) == LoanStatus.BORROWED

    def test_borrowed_exactly_at_due_is_not_overdue(self):
        assert derive_status(LoanStatus.BORROWED, DUE, DUE) == LoanStatus.BORROWED

    def test_borrowed_past_due_reads_overdue(self):
        assert derive_status(LoanStatus.BORROWED, DUE, DUE + timedelta(seconds=1)) == LoanStatus.OVERDUE

    def test_stored_overdue_with_moved_due_date_reads_borrowed(self):
        assert derive_status(LoanStatus.OVERDUE, DUE, DUE - timedelta(days=1)) == LoanStatus.BORROWED

    @pytest.mark.parametrize(
        "status", [LoanStatus.RESERVED, LoanStatus.RETURNED, LoanStatus.EXPIRED]
    )
    def test_other_statuses_never_become_overdue(self, status):
        assert derive_status(status, DUE, DUE + timedelta(days=30)) == status

    def test_accepts_raw_values(self):
        assert derive_status("borrowed", DUE, DUE + timedelta(days=1)) == LoanStatus.OVERDUE


class TestFineComputation:
    def test_on_time_return_has_no_fine(self):
        assert compute_fine(DUE, DUE, Decimal("2.00")) == Decimal("0.00")

    def test_early_return_is_clamped_to_zero(self):
        assert days_late(DUE, DUE - timedelta(days=3)) == 0
        assert compute_fine(DUE, DUE - timedelta(days=3), Decimal("2.00")) == Decimal("0.00")

    def test_partial_days_are_floored(self):
        assert days_late(DUE, DUE + timedelta(days=2, hours=23)) == 2
        assert compute_fine(DUE, DUE + timedelta(hours=23), Decimal("2.00")) == Decimal("0.00")

    def test_five_days_late(self):
        assert compute_fine(DUE, DUE + timedelta(days=5), Decimal("2.00")) == Decimal("10.00")

    def test_custom_rate(self):
        assert compute_fine(DUE, DUE + timedelta(days=3), Decimal("0.25")) == Decimal("0.75")

    def test_outstanding_fine(self):
        assert Fine(amount=Decimal("4.00")).outstanding == Decimal("4.00")
        assert Fine(amount=Decimal("4.00"), paid=True).outstanding == Decimal("0.00")

    def test_negative_fine_rejected(self):
        with pytest.raises(ValidationError):
            Fine(amount=Decimal("-1.00"))


class TestLoanRecord:
    def _record(self, **overrides) -> LoanRecord:
        data = {
            "id": "loan_abc123def456",
            "patron_id": "patron_0001",
            "item_id": "item_0001",
            "created_at": DUE - timedelta(days=14),
            "due_at": DUE,
        }
        data.update(overrides)
        return LoanRecord(**data)

    def test_defaults(self):
        record = self._record()
        assert record.status == LoanStatus.BORROWED
        assert record.renewal_count == 0
        assert record.fine.amount == Decimal("0.00")
        assert record.is_active

    def test_returned_requires_timestamp(self):
        with pytest.raises(ValidationError, match="return timestamp"):
            self._record(status=LoanStatus.RETURNED)

    def test_return_before_start_rejected(self):
        with pytest.raises(ValidationError, match="before loan start"):
            self._record(
                status=LoanStatus.RETURNED, returned_at=DUE - timedelta(days=20)
            )

    def test_invalid_id_rejected(self):
        with pytest.raises(ValidationError):
            self._record(id="checkout_1")

    def test_days_overdue(self):
        record = self._record()
        assert record.days_overdue(DUE + timedelta(days=4, hours=2)) == 4
        returned = self._record(status=LoanStatus.RETURNED, returned_at=DUE + timedelta(days=9))
        assert returned.days_overdue(DUE + timedelta(days=30)) == 0
        assert not returned.is_active


class TestItem:
    def test_available_cannot_exceed_total(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            Item(id="item_0001", title="Kindred", total_copies=1, available_copies=2)

    def test_copies_out(self):
        item = Item(id="item_0001", title="Kindred", total_copies=3, available_copies=1)
        assert item.copies_out == 2
        assert item.is_available


def test_append_note_builds_timestamped_trail():
    first = append_note(None, "Borrowed", datetime(2026, 3, 2, 10, 0))
    second = append_note(first, "Returned", datetime(2026, 3, 9, 12, 30))
    assert second.splitlines() == [
        "[2026-03-02T10:00:00] Borrowed",
        "[2026-03-09T12:30:00] Returned",
    ]
