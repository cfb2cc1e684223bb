"""
MCP tools for the Library Circulation server.

Tools are the operations with side effects: every circulation change a
client can make goes through one of these, and through the engine behind it.
"""

from .circulation import (
    borrow_book,
    cancel_reservation,
    pay_fine,
    renew_loan,
    reserve_book,
    return_book,
    run_circulation_sweep,
)

# Export all tools for server registration
all_tools = [
    borrow_book,
    return_book,
    renew_loan,
    reserve_book,
    cancel_reservation,
    pay_fine,
    run_circulation_sweep,
]

__all__ = [
    "all_tools",
    "borrow_book",
    "cancel_reservation",
    "pay_fine",
    "renew_loan",
    "reserve_book",
    "return_book",
    "run_circulation_sweep",
]
