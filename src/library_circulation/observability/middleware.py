"""FastMCP middleware that traces tool calls and resource reads at the protocol level."""

import logging
from typing import Any

import logfire
from fastmcp.server.middleware import Middleware, MiddlewareContext

from . import get_observability_config

logger = logging.getLogger(__name__)


class CirculationTracingMiddleware(Middleware):
    """
    Opens an ``mcp`` span around every tool call and resource read.

    The handler decorators record the circulation outcome; this layer covers
    what happens before a handler runs (unknown tool names, malformed
    requests) and the MCP session the call arrived on.
    """

    def __init__(self):
        self.enabled = get_observability_config().enabled

    async def on_call_tool(self, context: MiddlewareContext, call_next) -> Any:
        name = getattr(context.message, "name", "unknown")
        return await self._traced(context, call_next, "tools/call", tool_name=name)

    async def on_read_resource(self, context: MiddlewareContext, call_next) -> Any:
        uri = str(getattr(context.message, "uri", "unknown"))
        return await self._traced(context, call_next, "resources/read", resource_uri=uri)

    async def _traced(self, context: MiddlewareContext, call_next, method: str, **attributes):
        if not self.enabled:
            return await call_next(context)

        with logfire.span("mcp {method}", method=method, source=context.source, **attributes):
            try:
                return await call_next(context)
            except Exception as e:
                logger.warning("%s failed before a result was produced: %s", method, e)
                raise
