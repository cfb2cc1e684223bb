"""Library Circulation MCP Resources Package

Resources are the read-only side of the server: each one publishes a read
projection of the circulation store. Changes go through the tools.
"""

from .reports import report_resources

all_resources = report_resources

__all__ = [
    "all_resources",
    "report_resources",
]
