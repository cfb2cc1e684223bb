"""
Error taxonomy for the circulation engine.

Business-rule failures (``MemberIneligible`` through ``InvalidAmount``) are
reported to the caller verbatim and never retried. ``Busy`` is transient and
only surfaces after the engine's own retries are exhausted.
``ConsistencyFault`` means an invariant was found broken; the enclosing unit
of work is rolled back and the fault is logged for an operator.
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""


class DuplicateError(RepositoryException):
    """Raised when attempting to create a duplicate entity."""


class CirculationError(RepositoryException):
    """Base class for circulation failures.

    ``kind`` is the stable name front ends report to their callers.
    """

    kind = "CirculationError"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context


class MemberIneligible(CirculationError):
    """The member does not satisfy the borrowing/reservation conditions."""

    kind = "MemberIneligible"


class OutOfStock(CirculationError):
    """No loanable copy of the book is available."""

    kind = "OutOfStock"


class DuplicateReservation(CirculationError):
    """The member already holds an Active reservation for the book."""

    kind = "DuplicateReservation"


class NotActive(CirculationError):
    """The loan or reservation is not in a state that allows the operation."""

    kind = "NotActive"


class RenewalBlocked(CirculationError):
    """Renewal refused: someone is waiting, or the renewal limit is reached."""

    kind = "RenewalBlocked"


class InvalidAmount(CirculationError):
    """Payment amount is not positive, or exceeds the outstanding balance."""

    kind = "InvalidAmount"


class Cancelled(CirculationError):
    """The caller aborted the operation before it committed."""

    kind = "Cancelled"


class Busy(CirculationError):
    """Locks or the database stayed contended through every retry."""

    kind = "Busy"


class ConsistencyFault(CirculationError):
    """An engine invariant does not hold. Never corrected silently."""

    kind = "ConsistencyFault"


BUSINESS_ERRORS: tuple[type[CirculationError], ...] = (
    MemberIneligible,
    OutOfStock,
    DuplicateReservation,
    NotActive,
    RenewalBlocked,
    InvalidAmount,
)
