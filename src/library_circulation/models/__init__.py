"""
Library Circulation Models.

Pydantic models for the entities the engine returns:

- Catalog: Book, Author, Category, Publisher
- Membership: Member, Staff
- Circulation: Transaction, Reservation, FinePayment, ReturnResult
- Reports: AvailableBook, ActiveBorrowing, MemberSummary, SweepReport
"""

from .catalog import Author, Book, Category, Publisher
from .circulation import FinePayment, Reservation, ReturnResult, Transaction
from .enums import (
    AuthorRole,
    MembershipType,
    MemberStatus,
    PaymentMethod,
    ReservationStatus,
    StaffStatus,
    TransactionStatus,
    TransactionType,
)
from .member import Member, Staff
from .reports import ActiveBorrowing, AvailableBook, MemberSummary, SweepReport

__all__ = [
    "ActiveBorrowing",
    "Author",
    "AuthorRole",
    "AvailableBook",
    "Book",
    "Category",
    "FinePayment",
    "Member",
    "MemberStatus",
    "MemberSummary",
    "MembershipType",
    "PaymentMethod",
    "Publisher",
    "Reservation",
    "ReservationStatus",
    "ReturnResult",
    "Staff",
    "StaffStatus",
    "SweepReport",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
]
