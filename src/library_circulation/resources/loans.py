"""Loan Resources for the Library Circulation service

Read-only views of the lending ledger. Statuses are derived at read time,
so a borrowed loan past its due date shows as overdue here even before any
sweep has written that status. Reading a resource never writes.

URIs:
- library://loans/overdue: every overdue loan, oldest due date first
- library://loans/summary: number of loans per status
- library://loans/{loan_id}: one loan with its fine and notes
- library://patrons/{patron_id}/loans: a patron's loan history, newest first
- library://items/{item_id}/loans: an item's loan history and copy counts
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.repository import PaginationParams
from ..engine import get_engine
from ..errors import CirculationError, NotFoundError
from ..observability import trace_resource
from ..tools.responses import loan_data

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 100


def _history(result) -> dict[str, Any]:
    return {
        "loans": [loan_data(record) for record in result.items],
        "total": result.total,
        "has_next": result.has_next,
    }


@trace_resource("loans.overdue")
async def list_overdue_loans_resource() -> dict[str, Any]:
    """Every overdue loan, oldest due date first."""
    try:
        records = get_engine().list_overdue()
    except CirculationError as e:
        logger.exception("Error in loans/overdue resource")
        raise ResourceError(f"Failed to retrieve overdue loans: {e.message}") from e
    return {"loans": [loan_data(r) for r in records], "count": len(records)}


@trace_resource("loans.summary")
async def loan_summary_resource() -> dict[str, Any]:
    try:
        counts = get_engine().status_counts()
    except CirculationError as e:
        logger.exception("Error in loans/summary resource")
        raise ResourceError(f"Failed to summarize loans: {e.message}") from e
    return {"by_status": counts, "total": sum(counts.values())}


@trace_resource("loans.detail")
async def get_loan_resource(loan_id: str) -> dict[str, Any]:
    """One loan record, with its derived status."""
    try:
        record = get_engine().get_loan(loan_id)
    except NotFoundError as e:
        raise ResourceError(f"Loan not found: {loan_id}") from e
    except CirculationError as e:
        logger.exception("Error in loans/%s resource", loan_id)
        raise ResourceError(f"Failed to retrieve loan: {e.message}") from e
    return {"loan": loan_data(record)}


@trace_resource("patrons.loans")
async def get_patron_loans_resource(patron_id: str) -> dict[str, Any]:
    """A patron's loans, active first, then the full history newest first."""
    engine = get_engine()
    try:
        active = engine.active_loans_for_patron(patron_id)
        history = engine.patron_loans(
            patron_id, pagination=PaginationParams(page_size=HISTORY_PAGE_SIZE)
        )
    except NotFoundError as e:
        raise ResourceError(f"Patron not found: {patron_id}") from e
    except CirculationError as e:
        logger.exception("Error in patrons/%s/loans resource", patron_id)
        raise ResourceError(f"Failed to retrieve patron loans: {e.message}") from e

    return {
        "patron_id": patron_id,
        "active": [loan_data(r) for r in active],
        "history": _history(history),
    }


@trace_resource("items.loans")
async def get_item_loans_resource(item_id: str) -> dict[str, Any]:
    """An item's copy counts, its active loans and its history."""
    engine = get_engine()
    try:
        inventory = engine.inventory_status(item_id)
        active = engine.active_loans_for_item(item_id)
        history = engine.item_loans(
            item_id, pagination=PaginationParams(page_size=HISTORY_PAGE_SIZE)
        )
    except NotFoundError as e:
        raise ResourceError(f"Item not found: {item_id}") from e
    except CirculationError as e:
        logger.exception("Error in items/%s/loans resource", item_id)
        raise ResourceError(f"Failed to retrieve item loans: {e.message}") from e

    return {
        "item_id": item_id,
        "total_copies": inventory.total_copies,
        "available_copies": inventory.available_copies,
        "active": [loan_data(r) for r in active],
        "history": _history(history),
    }


# =============================================================================
# RESOURCE REGISTRATION
# =============================================================================

loan_resources: list[dict[str, Any]] = [
    {
        "uri": "library://loans/overdue",
        "name": "Overdue Loans",
        "description": "Every overdue loan, oldest due date first.",
        "mime_type": "application/json",
        "handler": list_overdue_loans_resource,
    },
    {
        "uri": "library://loans/summary",
        "name": "Loan Summary",
        "description": "Number of loan records in each status.",
        "mime_type": "application/json",
        "handler": loan_summary_resource,
    },
    {
        "uri_template": "library://loans/{loan_id}",
        "name": "Loan Record",
        "description": "A single loan record with its due date, fine and audit notes.",
        "mime_type": "application/json",
        "handler": get_loan_resource,
    },
    {
        "uri_template": "library://patrons/{patron_id}/loans",
        "name": "Patron Loans",
        "description": "A patron's active loans and holds, plus their loan history.",
        "mime_type": "application/json",
        "handler": get_patron_loans_resource,
    },
    {
        "uri_template": "library://items/{item_id}/loans",
        "name": "Item Loans",
        "description": "An item's copy counts, active loans and holds, and loan history.",
        "mime_type": "application/json",
        "handler": get_item_loans_resource,
    },
]
