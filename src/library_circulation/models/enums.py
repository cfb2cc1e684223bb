"""Enumerations shared by the database schema and the Pydantic models.

Values match the labels stored in the database so that rows written by other
tools against the same schema read back unchanged.
"""

from enum import Enum


class MemberStatus(str, Enum):
    """Membership status."""

    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


class MembershipType(str, Enum):
    """Membership category."""

    STUDENT = "Student"
    FACULTY = "Faculty"
    STAFF = "Staff"
    PUBLIC = "Public"


class StaffStatus(str, Enum):
    """Employment status of a staff member."""

    ACTIVE = "Active"
    ON_LEAVE = "On Leave"
    TERMINATED = "Terminated"


class AuthorRole(str, Enum):
    """Role of an author on a book."""

    PRIMARY = "Primary Author"
    CO_AUTHOR = "Co-Author"
    EDITOR = "Editor"
    TRANSLATOR = "Translator"


class TransactionType(str, Enum):
    """Kind of circulation transaction."""

    BORROW = "Borrow"
    RETURN = "Return"
    RENEW = "Renew"


class TransactionStatus(str, Enum):
    """Status of a circulation transaction."""

    ACTIVE = "Active"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


# Loans that still hold a physical copy
OPEN_LOAN_STATUSES = (TransactionStatus.ACTIVE, TransactionStatus.OVERDUE)


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    ACTIVE = "Active"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class PaymentMethod(str, Enum):
    """Accepted fine payment methods."""

    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    ONLINE = "Online"
    CHECK = "Check"
