"""Custom metrics for the Library Circulation engine."""

import logfire

# Circulation outcomes
circulation_events = logfire.metric_counter(
    "library.circulation.events",
    description="Circulation operations by operation and outcome",
)

operation_duration = logfire.metric_histogram(
    "library.circulation.duration_ms",
    unit="milliseconds",
    description="Engine operation duration including retries",
)

# Contention
busy_retries = logfire.metric_counter(
    "library.circulation.busy_retries",
    description="Units of work retried after lock or database contention",
)

# Integrity
consistency_faults = logfire.metric_counter(
    "library.circulation.consistency_faults",
    description="Invariant violations detected by the engine",
)

# Money
fines_assessed = logfire.metric_counter(
    "library.fines.assessed_cents", unit="cents", description="Late fees charged"
)

fines_paid = logfire.metric_counter(
    "library.fines.paid_cents", unit="cents", description="Fine payments received"
)


def record_circulation_event(operation: str, outcome: str):
    """Record the outcome of one engine operation."""
    circulation_events.add(1, {"operation": operation, "outcome": outcome})


def record_duration(operation: str, duration_ms: float):
    operation_duration.record(duration_ms, {"operation": operation})


def record_busy_retry(operation: str, reason: str):
    busy_retries.add(1, {"operation": operation, "reason": reason})


def record_consistency_fault(operation: str, entity: str):
    consistency_faults.add(1, {"operation": operation, "entity": entity})


def record_fine_assessed(cents: int):
    if cents > 0:
        fines_assessed.add(cents)


def record_fine_paid(cents: int, method: str):
    fines_paid.add(cents, {"method": method})


# Front end
tool_results = logfire.metric_counter(
    "library.mcp.tool_results",
    description="MCP tool calls by tool and result kind",
)

resource_reads = logfire.metric_counter(
    "library.mcp.resource_reads",
    description="MCP resource reads by resource and outcome",
)


def record_tool_result(tool: str, kind: str):
    tool_results.add(1, {"tool": tool, "kind": kind})


def record_resource_read(resource: str, outcome: str):
    resource_reads.add(1, {"resource": resource, "outcome": outcome})
