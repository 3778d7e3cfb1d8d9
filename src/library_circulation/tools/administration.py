"""
Staff tools for the Library Circulation service.

Reporting, sweeps and corrections that patrons never trigger themselves:
- list_overdue_loans: every overdue loan, oldest due date first
- expire_reservations / mark_overdue: batch sweeps
- update_due_date / remove_loan: ledger corrections
- resize_item / check_inventory: copy-count administration
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..engine import InventoryStatus, get_engine
from ..models.item import Item
from ..models.loan import LoanRecord
from ..observability import trace_tool
from .circulation import ITEM_ID_PATTERN, LOAN_ID_PATTERN, LoanIdInput, naive_local
from .responses import invalid_input, loan_data, loan_result, run_tool

logger = logging.getLogger(__name__)


class ListOverdueInput(BaseModel):
    """Input schema for the list_overdue_loans tool."""

    limit: int | None = Field(
        default=None, ge=1, le=500, description="Return at most this many loans"
    )


class SweepInput(BaseModel):
    """Sweeps take no arguments; extra keys are rejected."""

    model_config = {"extra": "forbid"}


class UpdateDueDateInput(BaseModel):
    """Input schema for the update_due_date tool."""

    loan_id: str = Field(..., description="Identifier of the loan record", pattern=LOAN_ID_PATTERN)
    due_at: datetime = Field(..., description="New due date (or hold expiry)")

    @field_validator("due_at")
    @classmethod
    def normalize_due_at(cls, v: datetime) -> datetime:
        return naive_local(v)


class ResizeItemInput(BaseModel):
    """Input schema for the resize_item tool."""

    item_id: str = Field(..., description="Identifier of the item", pattern=ITEM_ID_PATTERN)
    new_total: int = Field(..., ge=0, description="Number of copies the library now owns")


class ItemIdInput(BaseModel):
    item_id: str = Field(..., description="Identifier of the item", pattern=ITEM_ID_PATTERN)


def _loans_result(message: str, records: list[LoanRecord]) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": {"count": len(records), "loans": [loan_data(r) for r in records]},
    }


@trace_tool("list_overdue_loans")
async def list_overdue_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """List overdue loans, oldest due date first."""
    try:
        params = ListOverdueInput.model_validate(arguments or {})
    except ValidationError as e:
        return invalid_input("list_overdue_loans", e)

    def render(records: list[LoanRecord]) -> dict[str, Any]:
        if params.limit is not None:
            records = records[: params.limit]
        if not records:
            return _loans_result("No loans are overdue.", records)
        return _loans_result(f"{len(records)} overdue loans, oldest due date first.", records)

    return run_tool("list_overdue_loans", lambda: get_engine().list_overdue(), render)


@trace_tool("expire_reservations")
async def expire_reservations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Expire every lapsed reservation and release its copy."""
    try:
        SweepInput.model_validate(arguments or {})
    except ValidationError as e:
        return invalid_input("expire_reservations", e)

    return run_tool(
        "expire_reservations",
        lambda: get_engine().expire_reservations(),
        lambda records: _loans_result(f"Expired {len(records)} lapsed reservations.", records),
    )


@trace_tool("mark_overdue")
async def mark_overdue_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Persist the overdue status of every borrowed loan past its due date."""
    try:
        SweepInput.model_validate(arguments or {})
    except ValidationError as e:
        return invalid_input("mark_overdue", e)

    return run_tool(
        "mark_overdue",
        lambda: get_engine().mark_overdue(),
        lambda records: _loans_result(f"Marked {len(records)} loans overdue.", records),
    )


@trace_tool("update_due_date")
async def update_due_date_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Move the due date of an active loan or reservation."""
    try:
        params = UpdateDueDateInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("update_due_date", e)

    return run_tool(
        "update_due_date",
        lambda: get_engine().update_due_date(params.loan_id, params.due_at),
        lambda record: loan_result(
            f"Loan {record.id} is now due {record.due_at:%Y-%m-%d %H:%M} "
            f"(status: {record.status.value}).",
            record,
        ),
    )


@trace_tool("remove_loan")
async def remove_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Delete a ledger entry, releasing its copy first if it still holds one."""
    try:
        params = LoanIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("remove_loan", e)

    return run_tool(
        "remove_loan",
        lambda: get_engine().remove_loan(params.loan_id),
        lambda _: {
            "content": [{"type": "text", "text": f"Loan {params.loan_id} removed."}],
            "data": {"removed": params.loan_id},
        },
    )


@trace_tool("resize_item")
async def resize_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Change the number of copies the library owns of an item."""
    try:
        params = ResizeItemInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("resize_item", e)

    def render(item: Item) -> dict[str, Any]:
        return {
            "content": [
                {
                    "type": "text",
                    "text": (
                        f"Item {item.id} now has {item.total_copies} copies, "
                        f"{item.available_copies} on the shelf."
                    ),
                }
            ],
            "data": {"item": item.model_dump(mode="json")},
        }

    return run_tool(
        "resize_item",
        lambda: get_engine().resize_item(params.item_id, params.new_total),
        render,
    )


@trace_tool("check_inventory")
async def check_inventory_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Compare an item's copy counts with its active ledger entries."""
    try:
        params = ItemIdInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input("check_inventory", e)

    def render(status: InventoryStatus) -> dict[str, Any]:
        if status.consistent:
            text = (
                f"Item {status.item_id}: {status.available_copies} available + "
                f"{status.active_records} out = {status.total_copies} total."
            )
        else:
            logger.error("Inventory mismatch for item %s: %s", status.item_id, status)
            text = (
                f"Item {status.item_id} is inconsistent: {status.available_copies} available "
                f"and {status.active_records} out, but {status.total_copies} total."
            )
        data = status.model_dump()
        data["consistent"] = status.consistent
        return {"content": [{"type": "text", "text": text}], "data": {"inventory": data}}

    return run_tool(
        "check_inventory", lambda: get_engine().inventory_status(params.item_id), render
    )


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

list_overdue_loans = {
    "name": "list_overdue_loans",
    "description": "List every overdue loan, oldest due date first.",
    "input_model": ListOverdueInput,
    "handler": list_overdue_loans_handler,
}

expire_reservations = {
    "name": "expire_reservations",
    "description": "Expire reservations whose hold window has passed and release their copies.",
    "input_model": SweepInput,
    "handler": expire_reservations_handler,
}

mark_overdue = {
    "name": "mark_overdue",
    "description": "Record the overdue status on every borrowed loan past its due date.",
    "input_model": SweepInput,
    "handler": mark_overdue_handler,
}

update_due_date = {
    "name": "update_due_date",
    "description": "Change the due date of an active loan or the expiry of a reservation.",
    "input_model": UpdateDueDateInput,
    "handler": update_due_date_handler,
}

remove_loan = {
    "name": "remove_loan",
    "description": (
        "Administrative removal of a loan record. A record still holding a copy "
        "releases it first."
    ),
    "input_model": LoanIdInput,
    "handler": remove_loan_handler,
}

resize_item = {
    "name": "resize_item",
    "description": (
        "Change how many copies of an item the library owns. Copies out on loan "
        "stay counted; the total cannot drop below them."
    ),
    "input_model": ResizeItemInput,
    "handler": resize_item_handler,
}

check_inventory = {
    "name": "check_inventory",
    "description": "Check that an item's available copies plus active loans equal its total.",
    "input_model": ItemIdInput,
    "handler": check_inventory_handler,
}

administration_tools = [
    list_overdue_loans,
    expire_reservations,
    mark_overdue,
    update_due_date,
    remove_loan,
    resize_item,
    check_inventory,
]
