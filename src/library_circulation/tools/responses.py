"""
Result payloads shared by the circulation tools.

Every tool returns either

    {"content": [{"type": "text", "text": ...}], "data": {...}}

or an error payload

    {"isError": True, "content": [...], "error": {"code": ..., "message": ...}}

The ``error.code`` is the machine-readable circulation error code
(``NoCopiesAvailable``, ``NotFound``, ``InvalidInput``...), so a client can
branch on it without parsing the text.
"""

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ..errors import CirculationError
from ..models.loan import LoanRecord

logger = logging.getLogger(__name__)

INVALID_INPUT = "InvalidInput"
INTERNAL_ERROR = "InternalError"


def error_payload(code: str, message: str) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": message}],
        "error": {"code": code, "message": message},
    }


def invalid_input(tool_name: str, error: ValidationError) -> dict[str, Any]:
    """Turn a pydantic validation failure into an ``InvalidInput`` payload."""
    logger.warning("Invalid %s parameters: %s", tool_name, error)
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in error.errors()
    )
    return error_payload(INVALID_INPUT, f"Invalid {tool_name} parameters: {problems}")


def loan_data(record: LoanRecord) -> dict[str, Any]:
    """JSON-ready view of a loan record (decimals as strings, datetimes ISO)."""
    data = record.model_dump(mode="json")
    data["fine"]["outstanding"] = str(record.fine.outstanding)
    return data


def loan_result(message: str, record: LoanRecord) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": {"loan": loan_data(record)},
    }


def run_tool(
    tool_name: str,
    operation: Callable[[], Any],
    render: Callable[[Any], dict[str, Any]],
) -> dict[str, Any]:
    """
    Call an engine operation and render its result or its error.

    Circulation errors become error payloads with their code. Anything else
    is a bug or an infrastructure failure: it is logged with its traceback
    and reported as ``InternalError``.
    """
    try:
        result = operation()
    except CirculationError as e:
        if e.client_correctable:
            logger.info("%s rejected: %s (%s)", tool_name, e.code, e.message)
        else:
            logger.error("%s failed: %s (%s)", tool_name, e.code, e.message)
        return error_payload(e.code, e.message)
    except Exception as e:
        logger.exception("Unexpected error in %s tool", tool_name)
        return error_payload(INTERNAL_ERROR, f"An unexpected error occurred: {e!s}")
    return render(result)
