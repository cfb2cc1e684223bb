"""
Reservation queue: per-book waitlists and the hold shelf.

Waiting reservations are served in ``(priority_level, reservation_date, id)``
order, priority 1 first. When the ledger releases a copy, the first waiting
reservation that has not expired is fulfilled and the copy goes onto the
hold shelf for that member until ``hold_expires_at``. A hold that is not
collected in time expires and its copy is released again, which hands it to
the next member in line or back to the open shelf.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database.catalog_repository import BookRepository
from ..database.circulation_repository import CirculationRepository
from ..database.member_repository import MemberRepository
from ..database.schema import Book as BookDB
from ..database.schema import ReservationRecord as ReservationDB
from ..errors import DuplicateReservation, NotActive, RepositoryException
from ..models.enums import ReservationStatus
from .ledger import InventoryLedger

logger = logging.getLogger(__name__)

HIGHEST_PRIORITY = 1
# Also the standing of a borrower who has no reservation of their own
LOWEST_PRIORITY = 5

# Partial unique index allowing one Active reservation per member and book
ACTIVE_RESERVATION_INDEX = "uq_active_reservation"


def _is_active_reservation_conflict(error: IntegrityError) -> bool:
    """SQLite names the indexed columns, other databases name the index."""
    message = str(error.orig)
    return ACTIVE_RESERVATION_INDEX in message or (
        "UNIQUE" in message and "reservations.member_id" in message
    )


class ReservationQueue:
    """Reservation transitions for one unit of work."""

    def __init__(
        self,
        session: Session,
        ledger: InventoryLedger,
        config: EngineConfig,
        now: datetime,
    ):
        self.session = session
        self.ledger = ledger
        self.config = config
        self.now = now
        self.members = MemberRepository(session)
        self.books = BookRepository(session)
        self.circulation = CirculationRepository(session)
        # Reservations fulfilled during this unit of work
        self.fulfilled: list[ReservationDB] = []

        ledger.add_release_listener(self.on_copy_released)

    def reserve(
        self,
        member_id: int,
        book_id: int,
        priority: int = 1,
        expiry_days: int | None = None,
    ) -> ReservationDB:
        """
        Place a member in a book's waitlist.

        Raises:
            NotFoundError: If the member or book does not exist
            MemberIneligible: If the membership is not Active or has expired
            DuplicateReservation: If the member is already waiting for the book
        """
        if not HIGHEST_PRIORITY <= priority <= LOWEST_PRIORITY:
            raise ValueError(
                f"priority must be between {HIGHEST_PRIORITY} and {LOWEST_PRIORITY}, got {priority}"
            )
        if expiry_days is not None and expiry_days < 1:
            raise ValueError("expiry_days must be at least 1")
        member = self.members.get_for_update(member_id)
        self.members.check_membership_current(member, self.now.date())
        self.books.require(book_id)

        if self.circulation.active_reservation(member_id, book_id) is not None:
            raise DuplicateReservation(
                f"Member {member.membership_number} already has an active reservation "
                f"for book {book_id}",
                member_id=member_id,
                book_id=book_id,
            )

        days = expiry_days if expiry_days is not None else self.config.reservation_expiry_days
        reservation = ReservationDB(
            member_id=member_id,
            book_id=book_id,
            reservation_date=self.now,
            expiry_date=self.now.date() + timedelta(days=days),
            status=ReservationStatus.ACTIVE,
            priority_level=priority,
        )
        self.session.add(reservation)
        try:
            self.session.flush()
        except IntegrityError as e:
            if not _is_active_reservation_conflict(e):
                raise RepositoryException(f"Failed to create reservation: {e.orig}") from e
            raise DuplicateReservation(
                f"Member {member_id} already has an active reservation for book {book_id}",
                member_id=member_id,
                book_id=book_id,
            ) from e
        return reservation

    def on_copy_released(self, book: BookDB) -> ReservationDB | None:
        """
        Earmark a just-released copy for the next member in line.

        Waiting reservations found past their expiry date are expired on the
        way. Returns the fulfilled reservation, or None when nobody waits.
        """
        today = self.now.date()
        for reservation in self.circulation.waiting(book.id):
            if reservation.expiry_date < today:
                reservation.status = ReservationStatus.EXPIRED
                continue

            reservation.status = ReservationStatus.FULFILLED
            reservation.fulfilled_at = self.now
            reservation.hold_expires_at = self.now + timedelta(days=self.config.hold_pickup_days)
            self.ledger.reserve_copy(book.id)
            self.fulfilled.append(reservation)
            logger.info(
                "Reservation %s fulfilled: copy of book %s held for member %s until %s",
                reservation.id,
                book.id,
                reservation.member_id,
                reservation.hold_expires_at.isoformat(),
            )
            return reservation

        self.session.flush()
        return None

    def claim_hold(self, member_id: int, book_id: int) -> ReservationDB | None:
        """Collect the member's hold on the book, if there is one."""
        hold = self.circulation.pending_hold(member_id, book_id)
        if hold is None:
            return None
        hold.collected_at = self.now
        self.session.flush()
        return hold

    def close_own_reservation(self, member_id: int, book_id: int) -> ReservationDB | None:
        """A member who borrows a shelf copy no longer waits for the book."""
        reservation = self.circulation.active_reservation(member_id, book_id)
        if reservation is None:
            return None
        reservation.status = ReservationStatus.FULFILLED
        reservation.fulfilled_at = self.now
        reservation.collected_at = self.now
        self.session.flush()
        return reservation

    def blocking_reservation(self, book_id: int, holder_id: int) -> ReservationDB | None:
        """
        First reservation by another member that outranks the holder of a loan.

        The holder's standing is the priority of their own waiting
        reservation for the book, otherwise the lowest level. Anyone else
        waiting at that priority or better blocks a renewal.
        """
        today = self.now.date()
        waiting = [r for r in self.circulation.waiting(book_id) if r.expiry_date >= today]
        standing = next(
            (r.priority_level for r in waiting if r.member_id == holder_id), LOWEST_PRIORITY
        )
        return next(
            (
                r
                for r in waiting
                if r.member_id != holder_id and r.priority_level <= standing
            ),
            None,
        )

    def cancel(self, reservation_id: int) -> ReservationDB:
        """
        Cancel a waiting reservation or an uncollected hold.

        Raises:
            NotActive: If the reservation is already closed
        """
        reservation = self.circulation.get_reservation_for_update(reservation_id)
        if reservation.status == ReservationStatus.ACTIVE:
            reservation.status = ReservationStatus.CANCELLED
            self.session.flush()
            return reservation

        if reservation.status == ReservationStatus.FULFILLED and reservation.collected_at is None:
            reservation.status = ReservationStatus.CANCELLED
            self.session.flush()
            self.ledger.release_copy(reservation.book_id)
            return reservation

        raise NotActive(
            f"Reservation {reservation_id} is {ReservationStatus(reservation.status).value} "
            "and cannot be cancelled",
            reservation_id=reservation_id,
        )

    def sweep_expired(self, book_id: int) -> tuple[int, int]:
        """
        Expire a book's lapsed reservations and holds.

        Returns:
            (waiting reservations expired, holds expired)
        """
        today = self.now.date()
        expired_waiting = 0
        for reservation in self.circulation.waiting(book_id):
            if reservation.expiry_date < today:
                reservation.status = ReservationStatus.EXPIRED
                expired_waiting += 1
        self.session.flush()

        expired_holds = 0
        for hold in self.circulation.pending_holds(book_id):
            if hold.hold_expires_at is not None and hold.hold_expires_at < self.now:
                hold.status = ReservationStatus.EXPIRED
                self.session.flush()
                expired_holds += 1
                logger.info("Hold %s for member %s lapsed", hold.id, hold.member_id)
                self.ledger.release_copy(book_id)

        return expired_waiting, expired_holds
