"""
Tracing for the MCP handlers.

Tool handlers answer circulation failures in-band, so a tool call can
"succeed" at the protocol level while the loan was refused. ``trace_tool``
reads the result kind out of the answer and records it, which keeps
``OutOfStock`` and ``Busy`` visible in traces and metrics.
"""

import functools
import time
from collections.abc import Callable
from typing import Any

import logfire

from .metrics import record_resource_read, record_tool_result

# Arguments that identify circulation entities; copied onto tool spans
ENTITY_ARGUMENTS = ("member_id", "book_id", "transaction_id", "reservation_id", "staff_id")


def trace_tool(tool_name: str):
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any], *args, **kwargs):
            with logfire.span("tool {tool_name}", tool_name=tool_name) as span:
                for key in ENTITY_ARGUMENTS:
                    value = arguments.get(key) if isinstance(arguments, dict) else None
                    if isinstance(value, int | str):
                        span.set_attribute(key, value)

                started = time.perf_counter()
                try:
                    result = await func(arguments, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("kind", "InternalError")
                    span.record_exception(e)
                    record_tool_result(tool_name, "InternalError")
                    raise

                kind = result.get("data", {}).get("kind", "ok") if result.get("isError") else "ok"
                span.set_attribute("kind", kind)
                span.set_attribute("duration_ms", (time.perf_counter() - started) * 1000)
                record_tool_result(tool_name, kind)
                return result

        return wrapper

    return decorator


def trace_resource(resource_name: str):
    """Trace a resource read and count its rows."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span("resource {resource_name}", resource_name=resource_name) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception:
                    record_resource_read(resource_name, "error")
                    raise
                span.set_attribute("row_count", result.get("count", 0))
                record_resource_read(resource_name, "ok")
                return result

        return wrapper

    return decorator
