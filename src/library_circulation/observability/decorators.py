"""Decorators for tracing MCP tools and resources."""

import functools
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire

from .config import get_config

# Argument keys copied onto spans as ``input.<key>``
_TRACED_ARGUMENTS = ("loan_id", "patron_id", "item_id", "new_total")


def trace_tool(tool_name: str):
    """Decorator to trace MCP tool execution.

    Tool handlers take a single ``arguments`` dict and return an MCP result
    payload. Error payloads are recorded with their error code; they are
    results, not exceptions.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any], *args, **kwargs):
            with logfire.span(
                f"tool.execution.{tool_name}",
                tool_name=tool_name,
                tool_category=_categorize_tool(tool_name),
            ) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", arguments or {})

                try:
                    result = await func(arguments, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("tool.success", False)
                    span.set_attribute("tool.error", str(e))
                    raise

                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                _add_tool_result_metrics(span, result)
                return result

        return wrapper

    return decorator


def trace_resource(resource_type: str):
    """Lightweight decorator for resource reads."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span(
                f"resource.read.{resource_type}",
                resource_type=resource_type,
            ) as span:
                _add_attributes(span, "input", kwargs)
                result = await func(*args, **kwargs)

                loans = result.get("loans") if isinstance(result, dict) else None
                if loans is not None:
                    span.set_attribute("result.loan_count", len(loans))

                return result

        return wrapper

    return decorator


def _categorize_tool(tool_name: str) -> str:
    if tool_name in ("expire_reservations", "mark_overdue", "remove_loan", "update_due_date"):
        return "administration"
    if tool_name in ("resize_item", "check_inventory"):
        return "inventory"
    if tool_name.startswith("list_"):
        return "reporting"
    return "circulation"


def _add_attributes(span, prefix: str, data: dict) -> None:
    for key in _TRACED_ARGUMENTS:
        if key == "patron_id" and not get_config().record_patron_ids:
            continue
        value = data.get(key)
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)


def _add_tool_result_metrics(span, result: Any) -> None:
    if not isinstance(result, dict):
        return
    is_error = bool(result.get("isError"))
    span.set_attribute("tool.success", not is_error)
    if is_error:
        error = result.get("error") or {}
        span.set_attribute("tool.error_code", error.get("code", "unknown"))
