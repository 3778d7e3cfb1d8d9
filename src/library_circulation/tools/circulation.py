"""
Circulation tools for the Library Circulation service.

Patron-facing operations that move copies between the shelf and patrons:
1. borrow_item: lend a copy now
2. reserve_item / confirm_reservation / cancel_reservation: holds
3. renew_loan: extend a due date, up to the renewal cap
4. return_loan: take a copy back, assessing any late fine
5. pay_fine: record a fine as paid

Each handler validates its arguments with a pydantic input model, calls the
loan engine (which owns the transaction), and returns a structured payload
built in ``responses``.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..engine import get_engine
from ..models.loan import LoanRecord
from ..observability import trace_tool
from .responses import invalid_input, loan_result, run_tool

logger = logging.getLogger(__name__)

PATRON_ID_PATTERN = r"^patron_[a-zA-Z0-9_]{3,}$"
ITEM_ID_PATTERN = r"^item_[a-zA-Z0-9_]{3,}$"
LOAN_ID_PATTERN = r"^loan_[a-zA-Z0-9]{6,}$"


def naive_local(v: datetime | None) -> datetime | None:
    """Loan timestamps are naive local time; convert aware inputs."""
    if v is not None and v.tzinfo is not None:
        return v.astimezone().replace(tzinfo=None)
    return v


# =============================================================================
# INPUT SCHEMAS
# =============================================================================


class BorrowItemInput(BaseModel):
    """Input schema for the borrow_item tool."""

    patron_id: str = Field(
        ...,
        description="Identifier of the borrowing patron",
        pattern=PATRON_ID_PATTERN,
        examples=["patron_smith001"],
    )
    item_id: str = Field(
        ...,
        description="Identifier of the catalog item to lend",
        pattern=ITEM_ID_PATTERN,
        examples=["item_dune_1965"],
    )
    due_at: datetime | None = Field(
        default=None,
        description="Optional custom due date. Defaults to the standard loan period",
    )

    @field_validator("due_at")
    @classmethod
    def normalize_due_at(cls, v: datetime | None) -> datetime | None:
        return naive_local(v)


class ReserveItemInput(BaseModel):
    """Input schema for the reserve_item tool."""

    patron_id: str = Field(..., description="Identifier of the patron", pattern=PATRON_ID_PATTERN)
    item_id: str = Field(..., description="Identifier of the item to hold", pattern=ITEM_ID_PATTERN)


class LoanIdInput(BaseModel):
    """Input schema for tools that act on one loan record."""

    loan_id: str = Field(
        ...,
        description="Identifier of the loan record",
        pattern=LOAN_ID_PATTERN,
        examples=["loan_3f9a1c2b7d4e"],
    )


# =============================================================================
# HANDLERS
# =============================================================================


@trace_tool("borrow_item")
async def borrow_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Lend a copy of an item to a patron."""
    try:
        params = BorrowItemInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("borrow_item", e)

    def render(record: LoanRecord) -> dict[str, Any]:
        return loan_result(
            f"Patron {record.patron_id} borrowed item {record.item_id}. "
            f"Loan {record.id} is due {record.due_at:%Y-%m-%d %H:%M}.",
            record,
        )

    return run_tool(
        "borrow_item",
        lambda: get_engine().borrow(params.patron_id, params.item_id, params.due_at),
        render,
    )


@trace_tool("reserve_item")
async def reserve_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Hold a copy of an item for a patron."""
    try:
        params = ReserveItemInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("reserve_item", e)

    def render(record: LoanRecord) -> dict[str, Any]:
        return loan_result(
            f"Item {record.item_id} is held for patron {record.patron_id} "
            f"until {record.due_at:%Y-%m-%d %H:%M} (reservation {record.id}).",
            record,
        )

    return run_tool(
        "reserve_item",
        lambda: get_engine().reserve(params.patron_id, params.item_id),
        render,
    )


@trace_tool("confirm_reservation")
async def confirm_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Convert a reservation into a loan when the patron picks the copy up."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("confirm_reservation", e)

    def render(record: LoanRecord) -> dict[str, Any]:
        return loan_result(
            f"Reservation {record.id} confirmed. The loan is due {record.due_at:%Y-%m-%d %H:%M}.",
            record,
        )

    return run_tool("confirm_reservation", lambda: get_engine().confirm(params.loan_id), render)


@trace_tool("cancel_reservation")
async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Withdraw a reservation and put the held copy back on the shelf."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("cancel_reservation", e)

    return run_tool(
        "cancel_reservation",
        lambda: get_engine().cancel_reservation(params.loan_id),
        lambda record: loan_result(f"Reservation {record.id} cancelled.", record),
    )


@trace_tool("renew_loan")
async def renew_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Extend the due date of a borrowed item."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("renew_loan", e)

    engine = get_engine()

    def render(record: LoanRecord) -> dict[str, Any]:
        return loan_result(
            f"Loan {record.id} renewed ({record.renewal_count} of "
            f"{engine.policy.renewal_cap}). New due date: {record.due_at:%Y-%m-%d %H:%M}.",
            record,
        )

    return run_tool("renew_loan", lambda: engine.renew(params.loan_id), render)


@trace_tool("return_loan")
async def return_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Return a borrowed copy. Late returns are fined once, at return time."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("return_loan", e)

    def render(record: LoanRecord) -> dict[str, Any]:
        message = f"Loan {record.id} returned: item {record.item_id} is back on the shelf."
        if record.fine.amount > 0:
            message += f" Returned late. Fine assessed: {record.fine.amount:.2f}"
        else:
            message += " Returned on time - no fine."
        return loan_result(message, record)

    return run_tool("return_loan", lambda: get_engine().return_loan(params.loan_id), render)


@trace_tool("pay_fine")
async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Record the fine on a loan as paid."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("pay_fine", e)

    return run_tool(
        "pay_fine",
        lambda: get_engine().pay_fine(params.loan_id),
        lambda record: loan_result(
            f"Fine of {record.fine.amount:.2f} on loan {record.id} recorded as paid.", record
        ),
    )


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

borrow_item = {
    "name": "borrow_item",
    "description": (
        "Lend a copy of an item to a patron. Fails if the patron is inactive, has an "
        "overdue loan, is at the concurrent loan limit, or no copies are available."
    ),
    "input_model": BorrowItemInput,
    "handler": borrow_item_handler,
}

reserve_item = {
    "name": "reserve_item",
    "description": (
        "Hold an available copy for a patron. The hold expires after the reservation "
        "window unless confirmed."
    ),
    "input_model": ReserveItemInput,
    "handler": reserve_item_handler,
}

confirm_reservation = {
    "name": "confirm_reservation",
    "description": "Convert a reservation into a fresh loan with a new due date.",
    "input_model": LoanIdInput,
    "handler": confirm_reservation_handler,
}

cancel_reservation = {
    "name": "cancel_reservation",
    "description": "Cancel a reservation and release the held copy.",
    "input_model": LoanIdInput,
    "handler": cancel_reservation_handler,
}

renew_loan = {
    "name": "renew_loan",
    "description": "Extend a loan's due date. Overdue loans and loans at the renewal cap cannot be renewed.",
    "input_model": LoanIdInput,
    "handler": renew_loan_handler,
}

return_loan = {
    "name": "return_loan",
    "description": (
        "Return a borrowed copy. A late return is fined per full day late. "
        "Returning the same loan twice is rejected."
    ),
    "input_model": LoanIdInput,
    "handler": return_loan_handler,
}

pay_fine = {
    "name": "pay_fine",
    "description": "Record the fine on a returned loan as paid.",
    "input_model": LoanIdInput,
    "handler": pay_fine_handler,
}

circulation_tools = [
    borrow_item,
    reserve_item,
    confirm_reservation,
    cancel_reservation,
    renew_loan,
    return_loan,
    pay_fine,
]
