"""
Error taxonomy for circulation operations.

Every failure a caller can observe is a ``CirculationError`` carrying a
machine-readable ``code``. The request layer turns these into error payloads;
raw SQLAlchemy or driver errors never leave the database layer.

Kinds:
- NotFound: a referenced patron, item or loan does not exist
- PolicyViolation: the operation is not allowed in the current state
- Conflict: a conditional write lost a race with another request
- StoreUnavailable: the datastore could not be reached
"""


class CirculationError(Exception):
    """Base class for all circulation errors."""

    code = "CirculationError"

    #: True when the caller can fix the request and try again
    client_correctable = True

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFoundError(CirculationError):
    """Raised when an entity is not found."""

    code = "NotFound"


class DuplicateError(CirculationError):
    """Raised when attempting to create a duplicate entity."""

    code = "Duplicate"


class ConflictError(CirculationError):
    """A concurrent mutation won; the caller may re-check state and retry."""

    code = "Conflict"
    client_correctable = False


class StoreUnavailable(CirculationError):
    """The datastore could not be reached. Fatal for the current request."""

    code = "StoreUnavailable"
    client_correctable = False


# === Policy violations ===


class PolicyViolation(CirculationError):
    """Base class for borrowing-rule rejections."""

    code = "PolicyViolation"


class InactivePatron(PolicyViolation):
    code = "InactivePatron"


class NoCopiesAvailable(PolicyViolation):
    code = "NoCopiesAvailable"


class HasOverdue(PolicyViolation):
    code = "HasOverdue"


class LoanLimitReached(PolicyViolation):
    code = "LoanLimitReached"


class DuplicateHold(PolicyViolation):
    code = "DuplicateHold"


class NotAReservation(PolicyViolation):
    code = "NotAReservation"


class RenewalCapReached(PolicyViolation):
    code = "RenewalCapReached"


class LoanOverdue(PolicyViolation):
    """Overdue loans cannot be renewed."""

    code = "Overdue"


class AlreadyReturned(PolicyViolation):
    code = "AlreadyReturned"


class NoFineDue(PolicyViolation):
    code = "NoFineDue"


class AlreadyPaid(PolicyViolation):
    code = "AlreadyPaid"


class NotBorrowed(PolicyViolation):
    """The record is still a hold; confirm it before renewing or returning."""

    code = "NotBorrowed"


class NotActive(PolicyViolation):
    """The loan is in a terminal state (Returned or Expired)."""

    code = "NotActive"


class InventoryShrinkBelowLoans(PolicyViolation):
    """Total copies cannot drop below the number currently out."""

    code = "InventoryShrinkBelowLoans"
