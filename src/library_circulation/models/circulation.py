"""
Circulation models for the Library Circulation engine.

These models represent the circulation of books:
- Transaction: a loan (type Borrow) or one of its Return/Renew events
- Reservation: a member's place in a book's waitlist, or a hold once fulfilled
- FinePayment: money received against a member's fine balance

A Borrow transaction moves through ``Active -> Overdue -> Completed`` or
directly ``Active -> Completed``. Completed is terminal.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import (
    OPEN_LOAN_STATUSES,
    PaymentMethod,
    ReservationStatus,
    TransactionStatus,
    TransactionType,
)


class Transaction(BaseModel):
    """
    Represents a circulation transaction.

    Loans are ``Borrow`` rows. ``Return`` and ``Renew`` rows are audit
    entries linked to their loan through ``loan_id``.
    """

    id: int = Field(..., description="Transaction identifier")
    member_id: int
    book_id: int
    staff_id: int | None = None
    loan_id: int | None = Field(None, description="Loan this Return/Renew event belongs to")

    transaction_type: TransactionType
    status: TransactionStatus = TransactionStatus.ACTIVE

    transaction_date: datetime = Field(..., description="When the transaction was recorded")
    due_date: date | None = Field(None, description="Date the loan must be returned by")
    return_date: date | None = Field(None, description="Date the copy came back")

    fine_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    renewal_count: int = Field(default=0, ge=0)
    notes: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_dates(self) -> "Transaction":
        """A copy cannot come back before it went out."""
        if self.return_date and self.return_date < self.transaction_date.date():
            raise ValueError("Return date cannot be before transaction date")
        return self

    @property
    def is_loan(self) -> bool:
        return self.transaction_type == TransactionType.BORROW

    @property
    def is_open(self) -> bool:
        """A loan that still holds a physical copy."""
        return self.is_loan and self.status in OPEN_LOAN_STATUSES

    def days_overdue(self, as_of: date | None = None) -> int:
        """Whole days past due, measured at return or at ``as_of`` while open."""
        if not self.is_loan or self.due_date is None:
            return 0
        end = self.return_date or as_of or date.today()
        return max(0, (end - self.due_date).days)

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "member_id": 1,
                "book_id": 1,
                "transaction_type": "Borrow",
                "status": "Active",
                "transaction_date": "2024-01-01T10:30:00",
                "due_date": "2024-01-15",
                "fine_amount": "0.00",
            }
        },
    )


class Reservation(BaseModel):
    """
    Represents a reservation on a book.

    An Active reservation waits in the queue. Once a copy is released to it,
    it becomes Fulfilled and the copy sits on the hold shelf until
    ``hold_expires_at`` or until the member borrows it (``collected_at``).
    """

    id: int
    member_id: int
    book_id: int
    reservation_date: datetime
    expiry_date: date
    status: ReservationStatus = ReservationStatus.ACTIVE
    priority_level: int = Field(default=1, ge=1, le=5, description="1 is the highest priority")
    fulfilled_at: datetime | None = None
    hold_expires_at: datetime | None = None
    collected_at: datetime | None = None

    @property
    def is_waiting(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    @property
    def is_pending_hold(self) -> bool:
        """Fulfilled, with the copy still waiting on the hold shelf."""
        return self.status == ReservationStatus.FULFILLED and self.collected_at is None

    model_config = ConfigDict(from_attributes=True)


class FinePayment(BaseModel):
    """A payment against a member's fine balance."""

    id: int
    member_id: int
    transaction_id: int | None = None
    staff_id: int | None = None
    payment_amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: datetime
    payment_method: PaymentMethod
    receipt_number: str = Field(..., max_length=50)

    model_config = ConfigDict(from_attributes=True)


class ReturnResult(BaseModel):
    """Outcome of a return: the closed loan and the hold it may have filled."""

    loan: Transaction
    fine_assessed: Decimal = Decimal("0.00")
    fulfilled_reservation: Reservation | None = None
