"""
Circulation state machine: borrow, return, renew and overdue relabelling.

A loan is a Borrow transaction with this lifecycle:

    Active --due date passes--> Overdue --return--> Completed
    Active --return--> Completed

Completed is terminal. Returns and renewals are also written as Completed
Return/Renew rows pointing back at the loan, so a loan's history can be
read without reconstructing it from updates.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database.catalog_repository import BookRepository
from ..database.circulation_repository import CirculationRepository
from ..database.member_repository import MemberRepository
from ..database.schema import ZERO
from ..database.schema import TransactionRecord as TransactionDB
from ..errors import Cancelled, NotActive, RenewalBlocked
from ..models.enums import OPEN_LOAN_STATUSES, TransactionStatus, TransactionType
from .fines import FineEngine
from .ledger import InventoryLedger
from .reservations import ReservationQueue

logger = logging.getLogger(__name__)


class CirculationStateMachine:
    """Loan transitions for one unit of work."""

    def __init__(
        self,
        session: Session,
        config: EngineConfig,
        ledger: InventoryLedger,
        queue: ReservationQueue,
        fines: FineEngine,
        now: datetime,
    ):
        self.session = session
        self.config = config
        self.ledger = ledger
        self.queue = queue
        self.fines = fines
        self.now = now
        self.members = MemberRepository(session)
        self.books = BookRepository(session)
        self.circulation = CirculationRepository(session)

    @property
    def today(self) -> date:
        return self.now.date()

    def borrow(
        self,
        member_id: int,
        book_id: int,
        staff_id: int | None = None,
        loan_period_days: int | None = None,
        notes: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TransactionDB:
        """
        Lend a copy of a book to a member.

        A member collecting their own hold takes the copy already set aside;
        anyone else needs a copy from the open shelf.

        Raises:
            NotFoundError: If the member or book does not exist
            MemberIneligible: If the member fails a borrowing condition
            OutOfStock: If no copy is on the shelf
            Cancelled: If ``cancel_event`` was set before the loan was written
        """
        if loan_period_days is not None and loan_period_days < 1:
            raise ValueError("loan_period_days must be at least 1")
        member = self.members.get_for_update(member_id)
        self.members.check_eligibility(member, self.today, self.config.fine_balance_cap)
        self.books.require(book_id)

        hold = self.queue.claim_hold(member_id, book_id)
        took_shelf_copy = hold is None
        if took_shelf_copy:
            self.ledger.reserve_copy(book_id)
            self.queue.close_own_reservation(member_id, book_id)

        if cancel_event is not None and cancel_event.is_set():
            if took_shelf_copy:
                self.ledger.release_copy(book_id)
            raise Cancelled(
                f"Borrow of book {book_id} by member {member_id} cancelled by caller",
                member_id=member_id,
                book_id=book_id,
            )

        period = loan_period_days if loan_period_days is not None else self.config.loan_period_days
        loan = TransactionDB(
            member_id=member_id,
            book_id=book_id,
            staff_id=staff_id,
            transaction_type=TransactionType.BORROW,
            status=TransactionStatus.ACTIVE,
            transaction_date=self.now,
            due_date=self.today + timedelta(days=period),
            fine_amount=ZERO,
            renewal_count=0,
            notes=notes or (f"Collected hold {hold.id}" if hold else None),
        )
        self.session.add(loan)
        self.session.flush()
        logger.info(
            "Loan %s: member %s borrowed book %s, due %s",
            loan.id,
            member_id,
            book_id,
            loan.due_date.isoformat(),
        )
        return loan

    def relabel_if_overdue(self, loan: TransactionDB, as_of: date | None = None) -> bool:
        """Mark an Active loan past its due date as Overdue. No fine is charged."""
        if loan.status == TransactionStatus.ACTIVE and loan.due_date < (as_of or self.today):
            loan.status = TransactionStatus.OVERDUE
            return True
        return False

    def _record_event(
        self, loan: TransactionDB, kind: TransactionType, notes: str | None = None
    ) -> TransactionDB:
        event = TransactionDB(
            member_id=loan.member_id,
            book_id=loan.book_id,
            staff_id=loan.staff_id,
            loan_id=loan.id,
            transaction_type=kind,
            status=TransactionStatus.COMPLETED,
            transaction_date=self.now,
            due_date=loan.due_date,
            return_date=loan.return_date if kind == TransactionType.RETURN else None,
            fine_amount=ZERO,
            renewal_count=loan.renewal_count,
            notes=notes,
        )
        self.session.add(event)
        return event

    def return_loan(self, transaction_id: int) -> tuple[TransactionDB, Decimal]:
        """
        Close a loan and put its copy back.

        The returned copy goes to the next member waiting for the book, if
        any. Returns ``(loan, fee)`` where fee is the late fee charged.

        Raises:
            NotFoundError: If the loan does not exist
            NotActive: If the loan was already returned
        """
        loan = self.circulation.get_loan_for_update(transaction_id)
        self.relabel_if_overdue(loan)
        if loan.status not in OPEN_LOAN_STATUSES:
            raise NotActive(
                f"Loan {transaction_id} is {TransactionStatus(loan.status).value}, "
                "nothing to return",
                transaction_id=transaction_id,
            )

        loan.return_date = self.today
        fee = self.fines.assess_late_fee(loan)
        loan.status = TransactionStatus.COMPLETED
        self._record_event(
            loan, TransactionType.RETURN, notes=f"Late fee {fee}" if fee > ZERO else None
        )
        self.session.flush()

        self.ledger.release_copy(loan.book_id)
        logger.info("Loan %s returned, fee %s", loan.id, fee)
        return loan, fee

    def renew(self, transaction_id: int, extra_days: int | None = None) -> TransactionDB:
        """
        Extend an Active loan.

        Raises:
            NotFoundError: If the loan does not exist
            NotActive: If the loan is Overdue or already returned
            RenewalBlocked: If the renewal limit is reached or another member
                with equal or better standing is waiting for the book
        """
        if extra_days is not None and extra_days < 1:
            raise ValueError("extra_days must be at least 1")
        loan = self.circulation.get_loan_for_update(transaction_id)
        self.relabel_if_overdue(loan)
        if loan.status != TransactionStatus.ACTIVE:
            raise NotActive(
                f"Loan {transaction_id} is {TransactionStatus(loan.status).value} "
                "and cannot be renewed",
                transaction_id=transaction_id,
            )

        if loan.renewal_count >= self.config.max_renewals:
            raise RenewalBlocked(
                f"Loan {transaction_id} has reached the limit of "
                f"{self.config.max_renewals} renewals",
                transaction_id=transaction_id,
            )

        blocker = self.queue.blocking_reservation(loan.book_id, loan.member_id)
        if blocker is not None:
            raise RenewalBlocked(
                f"Loan {transaction_id} cannot be renewed: reservation {blocker.id} "
                f"(priority {blocker.priority_level}) is waiting for the book",
                transaction_id=transaction_id,
                reservation_id=blocker.id,
            )

        days = extra_days if extra_days is not None else self.config.renewal_days
        loan.due_date = loan.due_date + timedelta(days=days)
        loan.renewal_count += 1
        self._record_event(loan, TransactionType.RENEW)
        self.session.flush()
        logger.info("Loan %s renewed until %s", loan.id, loan.due_date.isoformat())
        return loan

    def mark_overdue(self, loans: list[TransactionDB], as_of: date) -> int:
        """Relabel the given loans that are past due on ``as_of``. Returns how many changed."""
        changed = sum(1 for loan in loans if self.relabel_if_overdue(loan, as_of))
        self.session.flush()
        return changed
