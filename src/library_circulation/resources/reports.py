"""Circulation Report Resources

Exposes the three read projections as read-only resources.

Resources:
- library://books/available - Titles with a copy on the open shelf
- library://loans/active - Open loans with days overdue
- library://members/summary - Borrowing totals and fines per member
"""

import asyncio
import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..circulation.engine import get_engine
from ..observability.decorators import trace_resource

logger = logging.getLogger(__name__)


@trace_resource("books_available")
async def available_books_handler() -> dict[str, Any]:
    """Returns every book with at least one copy on the shelf, by title."""
    try:
        books = await asyncio.to_thread(get_engine().available_books)
    except Exception as e:
        logger.exception("Error in books/available resource")
        raise ResourceError(f"Failed to retrieve available books: {e!s}") from e

    return {"books": [book.model_dump(mode="json") for book in books], "count": len(books)}


@trace_resource("loans_active")
async def active_loans_handler() -> dict[str, Any]:
    """Returns open loans ordered by due date.

    ``days_overdue`` is measured against today and is negative for loans
    that are not yet due.
    """
    try:
        loans = await asyncio.to_thread(get_engine().active_borrowings)
    except Exception as e:
        logger.exception("Error in loans/active resource")
        raise ResourceError(f"Failed to retrieve active loans: {e!s}") from e

    return {
        "loans": [loan.model_dump(mode="json") for loan in loans],
        "count": len(loans),
        "overdue_count": sum(1 for loan in loans if loan.days_overdue > 0),
    }


@trace_resource("members_summary")
async def member_summary_handler() -> dict[str, Any]:
    """Returns borrowing totals and outstanding fines for every member."""
    try:
        members = await asyncio.to_thread(get_engine().member_summary)
    except Exception as e:
        logger.exception("Error in members/summary resource")
        raise ResourceError(f"Failed to retrieve member summary: {e!s}") from e

    return {
        "members": [member.model_dump(mode="json") for member in members],
        "count": len(members),
    }


report_resources: list[dict[str, Any]] = [
    {
        "uri": "library://books/available",
        "name": "Available Books",
        "description": (
            "Books with at least one copy on the open shelf, with primary author, "
            "category, publisher and shelf location."
        ),
        "mime_type": "application/json",
        "handler": available_books_handler,
    },
    {
        "uri": "library://loans/active",
        "name": "Active Loans",
        "description": (
            "Open loans (active and overdue) ordered by due date, with the member, the "
            "book and how many days each loan is overdue."
        ),
        "mime_type": "application/json",
        "handler": active_loans_handler,
    },
    {
        "uri": "library://members/summary",
        "name": "Member Summary",
        "description": (
            "Per member: total books borrowed, books currently out and outstanding fines."
        ),
        "mime_type": "application/json",
        "handler": member_summary_handler,
    },
]
