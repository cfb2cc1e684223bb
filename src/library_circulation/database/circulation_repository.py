"""
Circulation repository for the Library Circulation engine.

This repository is the read side of circulation:

1. **Lookups**: loans and reservations by id, row-locked for the engine
2. **Reservation queue**: a book's waitlist in service order
3. **Read projections**: available books, active borrowings and the member
   summary, the three reporting views the MCP resources publish

Nothing here changes circulation state. Borrow, return, renew and the
reservation transitions live in ``library_circulation.circulation``.
"""

from datetime import date, datetime

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, joinedload, selectinload

from ..database.schema import Book as BookDB
from ..database.schema import BookAuthor as BookAuthorDB
from ..database.schema import Member as MemberDB
from ..database.schema import ReservationRecord as ReservationDB
from ..database.schema import TransactionRecord as TransactionDB
from ..models.circulation import Reservation as ReservationModel
from ..models.circulation import Transaction as TransactionModel
from ..models.enums import (
    OPEN_LOAN_STATUSES,
    AuthorRole,
    ReservationStatus,
    TransactionStatus,
    TransactionType,
)
from ..models.reports import ActiveBorrowing, AvailableBook, MemberSummary
from .repository import NotFoundError
from .session import safe_query

# Service order of a book's waitlist: priority first, then first come
QUEUE_ORDER = (
    ReservationDB.priority_level.asc(),
    ReservationDB.reservation_date.asc(),
    ReservationDB.id.asc(),
)


class CirculationRepository:
    """
    Repository for circulation lookups and reporting.

    The ``*_for_update`` lookups return ORM rows for the engine's unit of
    work; everything else returns Pydantic models.
    """

    def __init__(self, session: Session):
        self.session = session

    # === Transactions ===

    def get_transaction(self, transaction_id: int) -> TransactionModel | None:
        record = self.session.get(TransactionDB, transaction_id)
        return TransactionModel.model_validate(record) if record else None

    def get_loan_for_update(self, transaction_id: int) -> TransactionDB:
        """
        Load a Borrow transaction for modification.

        Raises:
            NotFoundError: If no loan with this id exists
        """
        loan = safe_query(
            self.session,
            lambda s: s.execute(
                select(TransactionDB)
                .where(
                    TransactionDB.id == transaction_id,
                    TransactionDB.transaction_type == TransactionType.BORROW,
                )
                .with_for_update()
            ).scalar_one_or_none(),
            "Failed to lock loan",
        )
        if loan is None:
            raise NotFoundError(f"Loan {transaction_id} not found")
        return loan

    def loan_history(self, loan_id: int) -> list[TransactionModel]:
        """The Return and Renew events recorded against a loan, oldest first."""
        events = safe_query(
            self.session,
            lambda s: s.execute(
                select(TransactionDB)
                .where(TransactionDB.loan_id == loan_id)
                .order_by(TransactionDB.transaction_date, TransactionDB.id)
            )
            .scalars()
            .all(),
            "Failed to get loan history",
        )
        return [TransactionModel.model_validate(event) for event in events]

    def overdue_candidates(self, as_of: date) -> list[TransactionDB]:
        """Active loans whose due date has passed."""
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(
                    select(TransactionDB).where(
                        TransactionDB.transaction_type == TransactionType.BORROW,
                        TransactionDB.status == TransactionStatus.ACTIVE,
                        TransactionDB.due_date < as_of,
                    )
                )
                .scalars()
                .all(),
                "Failed to find overdue loans",
            )
        )

    def count_open_loans(self, book_id: int) -> int:
        count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(TransactionDB)
                .where(
                    TransactionDB.book_id == book_id,
                    TransactionDB.transaction_type == TransactionType.BORROW,
                    TransactionDB.status.in_(OPEN_LOAN_STATUSES),
                )
            ).scalar(),
            "Failed to count open loans",
        )
        return count or 0

    # === Reservations ===

    def get_reservation(self, reservation_id: int) -> ReservationModel | None:
        record = self.session.get(ReservationDB, reservation_id)
        return ReservationModel.model_validate(record) if record else None

    def get_reservation_for_update(self, reservation_id: int) -> ReservationDB:
        reservation = safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB).where(ReservationDB.id == reservation_id).with_for_update()
            ).scalar_one_or_none(),
            "Failed to lock reservation",
        )
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    def active_reservation(self, member_id: int, book_id: int) -> ReservationDB | None:
        """The member's Active reservation for the book, if any."""
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB).where(
                    ReservationDB.member_id == member_id,
                    ReservationDB.book_id == book_id,
                    ReservationDB.status == ReservationStatus.ACTIVE,
                )
            ).scalar_one_or_none(),
            "Failed to check existing reservation",
        )

    def pending_hold(self, member_id: int, book_id: int) -> ReservationDB | None:
        """The member's fulfilled but not yet collected reservation for the book."""
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB)
                .where(
                    ReservationDB.member_id == member_id,
                    ReservationDB.book_id == book_id,
                    ReservationDB.status == ReservationStatus.FULFILLED,
                    ReservationDB.collected_at.is_(None),
                )
                .order_by(ReservationDB.fulfilled_at)
                .limit(1)
            ).scalar_one_or_none(),
            "Failed to find pending hold",
        )

    def waiting(self, book_id: int) -> list[ReservationDB]:
        """Active reservations for a book in service order."""
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(
                    select(ReservationDB)
                    .where(
                        ReservationDB.book_id == book_id,
                        ReservationDB.status == ReservationStatus.ACTIVE,
                    )
                    .order_by(*QUEUE_ORDER)
                )
                .scalars()
                .all(),
                "Failed to get reservation queue",
            )
        )

    def pending_holds(self, book_id: int | None = None) -> list[ReservationDB]:
        """Uncollected holds, optionally for one book."""
        query = select(ReservationDB).where(
            ReservationDB.status == ReservationStatus.FULFILLED,
            ReservationDB.collected_at.is_(None),
        )
        if book_id is not None:
            query = query.where(ReservationDB.book_id == book_id)
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query.order_by(ReservationDB.id)).scalars().all(),
                "Failed to get pending holds",
            )
        )

    def open_reservations(self, member_id: int) -> list[ReservationDB]:
        """A member's waiting reservations and uncollected holds, waiting ones first."""
        still_waiting = ReservationDB.status == ReservationStatus.ACTIVE
        on_hold = (ReservationDB.status == ReservationStatus.FULFILLED) & (
            ReservationDB.collected_at.is_(None)
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(
                    select(ReservationDB)
                    .where(ReservationDB.member_id == member_id, still_waiting | on_hold)
                    .order_by(ReservationDB.status, ReservationDB.id)
                )
                .scalars()
                .all(),
                "Failed to get member reservations",
            )
        )

    def books_with_lapsed_reservations(self, now: datetime) -> list[int]:
        """Books that have a reservation or hold due for expiry at ``now``."""
        lapsed_waiting = select(ReservationDB.book_id).where(
            ReservationDB.status == ReservationStatus.ACTIVE,
            ReservationDB.expiry_date < now.date(),
        )
        lapsed_holds = select(ReservationDB.book_id).where(
            ReservationDB.status == ReservationStatus.FULFILLED,
            ReservationDB.collected_at.is_(None),
            ReservationDB.hold_expires_at < now,
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(lapsed_waiting.union(lapsed_holds)).scalars().all(),
            "Failed to find lapsed reservations",
        )
        return sorted(set(rows))

    def reservation_queue(self, book_id: int) -> list[ReservationModel]:
        """A book's waitlist in service order, as models."""
        return [ReservationModel.model_validate(r) for r in self.waiting(book_id)]

    # === Read projections ===

    def available_books(self) -> list[AvailableBook]:
        """Books with at least one copy on the shelf, ordered by title."""
        books = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB)
                .options(
                    joinedload(BookDB.category),
                    joinedload(BookDB.publisher),
                    selectinload(BookDB.author_links).joinedload(BookAuthorDB.author),
                )
                .where(BookDB.available_copies > 0)
                .order_by(BookDB.title, BookDB.id)
            )
            .scalars()
            .all(),
            "Failed to list available books",
        )

        rows = []
        for book in books:
            primary = next(
                (
                    link.author
                    for link in book.author_links
                    if link.author_role == AuthorRole.PRIMARY
                ),
                None,
            )
            rows.append(
                AvailableBook(
                    book_id=book.id,
                    isbn=book.isbn,
                    title=book.title,
                    author_name=primary.full_name if primary else None,
                    category_name=book.category.category_name,
                    publisher_name=book.publisher.publisher_name if book.publisher else None,
                    publication_year=book.publication_year,
                    available_copies=book.available_copies,
                    location_shelf=book.location_shelf,
                )
            )
        return rows

    def active_borrowings(self, as_of: date) -> list[ActiveBorrowing]:
        """
        Open loans (Active and Overdue) ordered by due date.

        ``days_overdue`` is ``as_of - due_date`` and is negative while the
        loan is still in time.
        """
        loans = safe_query(
            self.session,
            lambda s: s.execute(
                select(TransactionDB)
                .options(joinedload(TransactionDB.member), joinedload(TransactionDB.book))
                .where(
                    TransactionDB.transaction_type == TransactionType.BORROW,
                    TransactionDB.status.in_(OPEN_LOAN_STATUSES),
                )
                .order_by(TransactionDB.due_date, TransactionDB.id)
            )
            .scalars()
            .all(),
            "Failed to list active borrowings",
        )
        return [
            ActiveBorrowing(
                transaction_id=loan.id,
                member_id=loan.member_id,
                member_name=loan.member.full_name,
                membership_number=loan.member.membership_number,
                book_id=loan.book_id,
                book_title=loan.book.title,
                transaction_date=loan.transaction_date,
                due_date=loan.due_date,
                status=loan.status,
                days_overdue=(as_of - loan.due_date).days,
                fine_amount=loan.fine_amount,
            )
            for loan in loans
        ]

    def member_summary(self, member_id: int | None = None) -> list[MemberSummary]:
        """
        Borrowing totals per member, ordered by last then first name.

        ``books_borrowed`` counts every Borrow ever made; ``currently_borrowed``
        counts the open ones.
        """
        is_open = case((TransactionDB.status.in_(OPEN_LOAN_STATUSES), 1), else_=0)
        query = (
            select(
                MemberDB,
                func.count(TransactionDB.id).label("books_borrowed"),
                func.coalesce(func.sum(is_open), 0).label("currently_borrowed"),
            )
            .outerjoin(
                TransactionDB,
                (TransactionDB.member_id == MemberDB.id)
                & (TransactionDB.transaction_type == TransactionType.BORROW),
            )
            .group_by(MemberDB.id)
            .order_by(MemberDB.last_name, MemberDB.first_name, MemberDB.id)
        )
        if member_id is not None:
            query = query.where(MemberDB.id == member_id)

        rows = safe_query(
            self.session,
            lambda s: s.execute(query).all(),
            "Failed to build member summary",
        )
        return [
            MemberSummary(
                member_id=member.id,
                membership_number=member.membership_number,
                full_name=member.full_name,
                email=member.email,
                membership_type=member.membership_type,
                status=member.status,
                books_borrowed=books_borrowed,
                currently_borrowed=currently_borrowed,
                outstanding_fines=member.fine_balance,
            )
            for member, books_borrowed, currently_borrowed in rows
        ]
