"""
Borrowing rules, as explicit checks.

Each ``check_*`` function takes plain values (already read from storage)
and raises the matching ``PolicyViolation`` or returns None. The engine
calls them at the start of every mutating operation, before anything is
written, so a rejected request leaves no trace.
"""

from datetime import datetime, timedelta

from ..config import LoanPolicy
from ..errors import (
    AlreadyPaid,
    AlreadyReturned,
    DuplicateHold,
    HasOverdue,
    InactivePatron,
    LoanLimitReached,
    LoanOverdue,
    NoCopiesAvailable,
    NoFineDue,
    NotAReservation,
    NotActive,
    NotBorrowed,
    RenewalCapReached,
)
from ..models.loan import Fine, LoanStatus


def check_can_borrow(
    policy: LoanPolicy,
    *,
    patron_active: bool,
    available_copies: int,
    has_overdue: bool,
    current_loans: int,
) -> None:
    if not patron_active:
        raise InactivePatron("Inactive patrons cannot borrow")
    if available_copies <= 0:
        raise NoCopiesAvailable("No copies of this item are available")
    if has_overdue:
        raise HasOverdue("Patron has overdue loans")
    if current_loans >= policy.max_concurrent_loans:
        raise LoanLimitReached(
            f"Patron has reached the limit of {policy.max_concurrent_loans} concurrent loans"
        )


def check_can_reserve(*, available_copies: int, has_overdue: bool, has_hold: bool) -> None:
    if available_copies <= 0:
        raise NoCopiesAvailable("No copies of this item are available to reserve")
    if has_overdue:
        raise HasOverdue("Patron has overdue loans")
    if has_hold:
        raise DuplicateHold("Patron already holds or borrows a copy of this item")


def check_can_confirm(policy: LoanPolicy, *, status: LoanStatus, current_loans: int) -> None:
    if status != LoanStatus.RESERVED:
        raise NotAReservation(f"Loan is {status.value}, not a reservation")
    if current_loans >= policy.max_concurrent_loans:
        raise LoanLimitReached(
            f"Patron has reached the limit of {policy.max_concurrent_loans} concurrent loans"
        )


def check_can_renew(policy: LoanPolicy, *, status: LoanStatus, renewal_count: int) -> None:
    """``status`` must be the derived status at the time of the request."""
    if status == LoanStatus.RETURNED:
        raise AlreadyReturned("Returned loans cannot be renewed")
    if status == LoanStatus.EXPIRED:
        raise NotActive("Expired reservations cannot be renewed")
    if status == LoanStatus.RESERVED:
        raise NotBorrowed("Reservations must be confirmed before they can be renewed")
    if status == LoanStatus.OVERDUE:
        raise LoanOverdue("Overdue loans cannot be renewed")
    if renewal_count >= policy.renewal_cap:
        raise RenewalCapReached(f"Maximum renewal limit ({policy.renewal_cap}) reached")


def check_can_return(*, status: LoanStatus) -> None:
    if status == LoanStatus.RETURNED:
        raise AlreadyReturned("This loan has already been returned")
    if status == LoanStatus.EXPIRED:
        raise NotActive("Expired reservations cannot be returned")
    if status == LoanStatus.RESERVED:
        raise NotBorrowed("Reservations must be confirmed or cancelled, not returned")


def check_can_pay(fine: Fine) -> None:
    if fine.amount <= 0:
        raise NoFineDue("There is no fine to pay on this loan")
    if fine.paid:
        raise AlreadyPaid("The fine on this loan has already been paid")


def check_is_active(status: LoanStatus) -> None:
    """Administrative edits are only allowed on records still holding a copy."""
    if status in (LoanStatus.RETURNED, LoanStatus.EXPIRED):
        raise NotActive(f"Loan is {status.value}")


def loan_due_date(policy: LoanPolicy, start: datetime) -> datetime:
    return start + timedelta(days=policy.loan_duration_days)


def hold_expiry(policy: LoanPolicy, start: datetime) -> datetime:
    return start + timedelta(days=policy.reservation_window_days)


def renewed_due_date(policy: LoanPolicy, due_at: datetime) -> datetime:
    return due_at + timedelta(days=policy.renewal_extension_days)
