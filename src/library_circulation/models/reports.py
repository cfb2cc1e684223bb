"""Read projections: the three reporting views as Pydantic rows.

These carry no invariants of their own; they are pure projections over
books, members and transactions.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import MembershipType, MemberStatus, TransactionStatus


class AvailableBook(BaseModel):
    """A title with at least one copy on the open shelf."""

    book_id: int
    isbn: str | None
    title: str
    author_name: str | None = Field(None, description="Primary author, when recorded")
    category_name: str
    publisher_name: str | None
    publication_year: int | None
    available_copies: int
    location_shelf: str | None


class ActiveBorrowing(BaseModel):
    """An open loan with its lateness measured against a reference date."""

    transaction_id: int
    member_id: int
    member_name: str
    membership_number: str
    book_id: int
    book_title: str
    transaction_date: datetime
    due_date: date
    status: TransactionStatus
    days_overdue: int = Field(..., description="Days past due; negative while still in time")
    fine_amount: Decimal


class MemberSummary(BaseModel):
    """Borrowing totals and outstanding fines for one member."""

    member_id: int
    membership_number: str
    full_name: str
    email: str | None
    membership_type: MembershipType
    status: MemberStatus
    books_borrowed: int
    currently_borrowed: int
    outstanding_fines: Decimal


class SweepReport(BaseModel):
    """What one housekeeping sweep changed."""

    as_of: datetime
    loans_marked_overdue: int = 0
    reservations_expired: int = 0
    holds_expired: int = 0
