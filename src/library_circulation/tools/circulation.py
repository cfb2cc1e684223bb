"""
Circulation tools for the Library Circulation MCP server.

Each tool is a thin adapter over one ``CirculationEngine`` operation:

1. borrow_book / return_book / renew_loan: the loan lifecycle
2. reserve_book / cancel_reservation: the waitlist and hold shelf
3. pay_fine: payments against a member's balance
4. run_circulation_sweep: overdue relabelling and reservation expiry

Handlers validate their arguments with Pydantic, run the engine call in a
worker thread (it may wait on locks) and answer in the MCP tool format.
Circulation failures come back in-band as ``isError`` results carrying the
error kind, so clients can tell ``OutOfStock`` from ``Busy`` and react.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..circulation.engine import get_engine
from ..errors import CirculationError, NotFoundError
from ..models.enums import PaymentMethod
from ..observability.decorators import trace_tool

logger = logging.getLogger(__name__)


def _text(message: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": message}], "data": data}


def _error(kind: str, message: str, **context: Any) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": message}],
        "data": {"kind": kind, **context},
    }


async def _call_engine(tool: str, fn, *args, **kwargs) -> tuple[Any, dict[str, Any] | None]:
    """Run an engine call off the event loop, mapping failures to tool errors."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs), None
    except NotFoundError as e:
        logger.info("%s failed - entity not found: %s", tool, e)
        return None, _error("NotFound", str(e))
    except CirculationError as e:
        logger.info("%s failed - %s: %s", tool, e.kind, e)
        context = {k: v for k, v in e.context.items() if isinstance(v, str | int | float | bool)}
        return None, _error(e.kind, str(e), **context)
    except ValueError as e:
        logger.info("%s rejected - invalid argument: %s", tool, e)
        return None, _error("InvalidInput", str(e))
    except Exception as e:
        logger.exception("Unexpected error in %s tool", tool)
        return None, _error("InternalError", f"An unexpected error occurred: {e!s}")


def _invalid(tool: str, e: ValidationError) -> dict[str, Any]:
    logger.warning("Invalid %s parameters: %s", tool, e)
    return _error("InvalidInput", f"Invalid {tool} parameters: {e}")


# =============================================================================
# LOAN LIFECYCLE
# =============================================================================


class BorrowBookInput(BaseModel):
    """Input schema for the borrow_book tool."""

    member_id: int = Field(..., ge=1, description="Member borrowing the book")
    book_id: int = Field(..., ge=1, description="Book to lend")
    staff_id: int | None = Field(None, ge=1, description="Staff member processing the loan")
    loan_period_days: int | None = Field(
        None, ge=1, le=365, description="Loan length; defaults to the library's loan period"
    )
    notes: str | None = Field(None, max_length=500)


@trace_tool("borrow_book")
async def borrow_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Lend a book to a member."""
    try:
        params = BorrowBookInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("borrow_book", e)

    loan, error = await _call_engine(
        "borrow_book",
        get_engine().borrow,
        params.member_id,
        params.book_id,
        staff_id=params.staff_id,
        loan_period_days=params.loan_period_days,
        notes=params.notes,
    )
    if error:
        return error

    return _text(
        f"Loan {loan.id}: book {loan.book_id} lent to member {loan.member_id}, "
        f"due {loan.due_date.strftime('%B %d, %Y')}",
        {"loan": loan.model_dump(mode="json")},
    )


class ReturnBookInput(BaseModel):
    """Input schema for the return_book tool."""

    transaction_id: int = Field(..., ge=1, description="Loan (Borrow transaction) being returned")


@trace_tool("return_book")
async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Return a loaned book, charging any late fee."""
    try:
        params = ReturnBookInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("return_book", e)

    result, error = await _call_engine(
        "return_book", get_engine().return_book, params.transaction_id
    )
    if error:
        return error

    message = f"Loan {result.loan.id} returned."
    if result.fine_assessed > 0:
        message += f" Late fee charged: ${result.fine_assessed:.2f}."
    if result.fulfilled_reservation:
        message += (
            f" The copy is now on hold for member {result.fulfilled_reservation.member_id}"
            f" (reservation {result.fulfilled_reservation.id})."
        )
    return _text(message, {"return": result.model_dump(mode="json")})


class RenewLoanInput(BaseModel):
    """Input schema for the renew_loan tool."""

    transaction_id: int = Field(..., ge=1, description="Loan to renew")
    extra_days: int | None = Field(
        None, ge=1, le=365, description="Extension; defaults to the library's renewal period"
    )


@trace_tool("renew_loan")
async def renew_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Extend an active loan."""
    try:
        params = RenewLoanInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("renew_loan", e)

    loan, error = await _call_engine(
        "renew_loan", get_engine().renew, params.transaction_id, params.extra_days
    )
    if error:
        return error

    return _text(
        f"Loan {loan.id} renewed ({loan.renewal_count} renewal(s)), "
        f"now due {loan.due_date.strftime('%B %d, %Y')}",
        {"loan": loan.model_dump(mode="json")},
    )


# =============================================================================
# RESERVATIONS
# =============================================================================


class ReserveBookInput(BaseModel):
    """Input schema for the reserve_book tool."""

    member_id: int = Field(..., ge=1)
    book_id: int = Field(..., ge=1)
    priority: int = Field(1, ge=1, le=5, description="1 is served first, 5 last")
    expiry_days: int | None = Field(None, ge=1, le=365)


@trace_tool("reserve_book")
async def reserve_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Join a book's waitlist."""
    try:
        params = ReserveBookInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("reserve_book", e)

    engine = get_engine()
    reservation, error = await _call_engine(
        "reserve_book",
        engine.reserve,
        params.member_id,
        params.book_id,
        params.priority,
        params.expiry_days,
    )
    if error:
        return error

    queue, error = await _call_engine("reserve_book", engine.reservation_queue, params.book_id)
    if error:
        return error
    position = next((i for i, r in enumerate(queue, start=1) if r.id == reservation.id), None)

    return _text(
        f"Reservation {reservation.id} placed for book {reservation.book_id}"
        + (f", position {position} in the queue" if position else "")
        + f". Expires {reservation.expiry_date.isoformat()}.",
        {"reservation": reservation.model_dump(mode="json"), "queue_position": position},
    )


class CancelReservationInput(BaseModel):
    """Input schema for the cancel_reservation tool."""

    reservation_id: int = Field(..., ge=1)


@trace_tool("cancel_reservation")
async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Cancel a reservation or an uncollected hold."""
    try:
        params = CancelReservationInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("cancel_reservation", e)

    reservation, error = await _call_engine(
        "cancel_reservation", get_engine().cancel_reservation, params.reservation_id
    )
    if error:
        return error

    return _text(
        f"Reservation {reservation.id} cancelled",
        {"reservation": reservation.model_dump(mode="json")},
    )


# =============================================================================
# FINES AND HOUSEKEEPING
# =============================================================================


class PayFineInput(BaseModel):
    """Input schema for the pay_fine tool."""

    member_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., description="Amount paid, in dollars", examples=["2.50"])
    payment_method: PaymentMethod = PaymentMethod.CASH
    transaction_id: int | None = Field(None, ge=1, description="Loan the payment settles")
    staff_id: int | None = Field(None, ge=1)


@trace_tool("pay_fine")
async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Pay towards a member's outstanding fines."""
    try:
        params = PayFineInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("pay_fine", e)

    payment, error = await _call_engine(
        "pay_fine",
        get_engine().pay_fine,
        params.member_id,
        params.amount,
        params.payment_method,
        transaction_id=params.transaction_id,
        staff_id=params.staff_id,
    )
    if error:
        return error

    return _text(
        f"Received ${payment.payment_amount:.2f} from member {payment.member_id}, "
        f"receipt {payment.receipt_number}",
        {"payment": payment.model_dump(mode="json")},
    )


class CirculationSweepInput(BaseModel):
    """Input schema for the run_circulation_sweep tool."""

    as_of: datetime | None = Field(None, description="Reference time; defaults to now")


@trace_tool("run_circulation_sweep")
async def run_circulation_sweep_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Mark overdue loans and expire lapsed reservations and holds."""
    try:
        params = CirculationSweepInput.model_validate(arguments)
    except ValidationError as e:
        return _invalid("run_circulation_sweep", e)

    report, error = await _call_engine(
        "run_circulation_sweep", get_engine().run_sweep, params.as_of
    )
    if error:
        return error

    return _text(
        f"Sweep complete: {report.loans_marked_overdue} loan(s) marked overdue, "
        f"{report.reservations_expired} reservation(s) and {report.holds_expired} hold(s) expired",
        {"sweep": report.model_dump(mode="json")},
    )


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

borrow_book: dict[str, Any] = {
    "name": "borrow_book",
    "description": (
        "Lend a book to a member. Checks the member's eligibility (active, current "
        "membership, fines under the cap, within the borrowing limit) and takes a copy "
        "from the shelf, or collects the member's own hold."
    ),
    "inputSchema": BorrowBookInput.model_json_schema(),
    "handler": borrow_book_handler,
}

return_book: dict[str, Any] = {
    "name": "return_book",
    "description": (
        "Return a loaned book. Charges a late fee when past due and hands the copy to "
        "the next member waiting for the book, if any."
    ),
    "inputSchema": ReturnBookInput.model_json_schema(),
    "handler": return_book_handler,
}

renew_loan: dict[str, Any] = {
    "name": "renew_loan",
    "description": (
        "Extend an active loan. Refused for overdue loans, at the renewal limit, or when "
        "another member with equal or better priority is waiting for the book."
    ),
    "inputSchema": RenewLoanInput.model_json_schema(),
    "handler": renew_loan_handler,
}

reserve_book: dict[str, Any] = {
    "name": "reserve_book",
    "description": (
        "Join the waitlist for a book. Reservations are served by priority (1 first), "
        "then in order of arrival."
    ),
    "inputSchema": ReserveBookInput.model_json_schema(),
    "handler": reserve_book_handler,
}

cancel_reservation: dict[str, Any] = {
    "name": "cancel_reservation",
    "description": (
        "Cancel a waiting reservation, or release an uncollected hold back to the queue."
    ),
    "inputSchema": CancelReservationInput.model_json_schema(),
    "handler": cancel_reservation_handler,
}

pay_fine: dict[str, Any] = {
    "name": "pay_fine",
    "description": (
        "Record a fine payment. The amount must be positive and not exceed the member's "
        "outstanding balance. Returns the receipt number."
    ),
    "inputSchema": PayFineInput.model_json_schema(),
    "handler": pay_fine_handler,
}

run_circulation_sweep: dict[str, Any] = {
    "name": "run_circulation_sweep",
    "description": (
        "Housekeeping: mark loans past due as overdue, expire old reservations and "
        "pass uncollected holds on to the next member in line."
    ),
    "inputSchema": CirculationSweepInput.model_json_schema(),
    "handler": run_circulation_sweep_handler,
}
