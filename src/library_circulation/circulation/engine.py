"""
Circulation engine: the public face of the circulation components.

Every operation runs as one unit of work:

1. Take the locks of the entities it touches (sorted, bounded wait)
2. Open one database session, ``BEGIN IMMEDIATE`` on SQLite
3. Run the ledger, queue, fine engine and state machine against it
4. Commit, or roll back on any error

Lock timeouts and database lock conflicts are retried with exponential
backoff; when the attempts run out the caller gets ``Busy``. Business-rule
errors are never retried. A ``ConsistencyFault`` rolls the unit of work back,
is logged at CRITICAL and is counted.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar

import logfire
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import EngineConfig, get_config
from ..database.circulation_repository import CirculationRepository
from ..database.member_repository import MemberRepository
from ..database.schema import ReservationRecord as ReservationDB
from ..database.schema import TransactionRecord as TransactionDB
from ..database.session import DatabaseManager, get_db_manager, is_contention
from ..errors import Busy, CirculationError, ConsistencyFault, NotFoundError
from ..models.catalog import Book
from ..models.circulation import FinePayment, Reservation, ReturnResult, Transaction
from ..models.enums import PaymentMethod
from ..models.reports import ActiveBorrowing, AvailableBook, MemberSummary, SweepReport
from ..observability import get_observability_config
from ..observability.metrics import (
    record_busy_retry,
    record_circulation_event,
    record_consistency_fault,
    record_duration,
    record_fine_assessed,
    record_fine_paid,
)
from .fines import FineEngine
from .ledger import InventoryLedger
from .locks import (
    LockManager,
    LockTimeout,
    book_key,
    member_key,
    reservation_key,
    transaction_key,
)
from .reservations import ReservationQueue
from .state_machine import CirculationStateMachine

logger = logging.getLogger(__name__)

T = TypeVar("T")

Keys = Iterable[str] | Callable[[], Iterable[str]]


@dataclass
class UnitOfWork:
    """The components wired to one session."""

    session: Session
    now: datetime
    ledger: InventoryLedger
    queue: ReservationQueue
    fines: FineEngine
    machine: CirculationStateMachine
    circulation: CirculationRepository


class CirculationEngine:
    """
    Thread-safe facade over the circulation components.

    ``clock`` supplies "now" for every unit of work; tests substitute a
    fixed clock to move through loan periods.
    """

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        config: EngineConfig | None = None,
        lock_manager: LockManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or get_config()
        self.db = db_manager or get_db_manager()
        self.locks = lock_manager or LockManager(timeout=self.config.lock_timeout)
        self.clock = clock or datetime.now

    # === Unit of work ===

    def _unit_of_work(self, session: Session, now: datetime) -> UnitOfWork:
        ledger = InventoryLedger(session)
        queue = ReservationQueue(session, ledger, self.config, now)
        fines = FineEngine(session, self.config, now)
        machine = CirculationStateMachine(session, self.config, ledger, queue, fines, now)
        return UnitOfWork(
            session=session,
            now=now,
            ledger=ledger,
            queue=queue,
            fines=fines,
            machine=machine,
            circulation=CirculationRepository(session),
        )

    def _lookup(self, fn: Callable[[Session], T]) -> T:
        """Short read used to find the lock keys of an operation."""
        with self.db.session_scope() as session:
            return fn(session)

    def _run(
        self,
        operation: str,
        keys: Keys,
        work: Callable[[UnitOfWork], T],
        now: datetime | None = None,
        **attributes: Any,
    ) -> T:
        started = time.perf_counter()
        attempts = self.config.busy_retry_attempts
        last_error: Exception | None = None

        with logfire.span("circulation {operation}", operation=operation, **attributes) as span:
            for attempt in range(attempts):
                if attempt:
                    time.sleep(self.config.backoff_delay(attempt - 1))
                try:
                    lock_keys = tuple(keys() if callable(keys) else keys)
                    with self.locks.hold(*lock_keys, timeout=self.config.lock_timeout):
                        with self.db.session_scope() as session:
                            result = work(self._unit_of_work(session, now or self.clock()))
                except (LockTimeout, OperationalError) as e:
                    if isinstance(e, OperationalError) and not is_contention(e):
                        logger.exception("%s failed with a database error", operation)
                        self._finish(span, operation, type(e).__name__, started)
                        raise
                    last_error = e
                    reason = "lock" if isinstance(e, LockTimeout) else "database"
                    logger.warning(
                        "%s contended (%s) on attempt %d/%d: %s",
                        operation,
                        reason,
                        attempt + 1,
                        attempts,
                        e,
                    )
                    record_busy_retry(operation, reason)
                    continue
                except ConsistencyFault as e:
                    logger.critical("Consistency fault in %s: %s %s", operation, e, e.context)
                    record_consistency_fault(operation, _entity_of(e))
                    self._finish(span, operation, e.kind, started)
                    raise
                except CirculationError as e:
                    logger.info("%s refused: %s", operation, e)
                    self._finish(span, operation, e.kind, started)
                    raise
                except NotFoundError:
                    self._finish(span, operation, "NotFound", started)
                    raise
                except Exception as e:
                    self._finish(span, operation, type(e).__name__, started)
                    raise

                self._finish(span, operation, "ok", started, attempts=attempt + 1)
                return result

            self._finish(span, operation, Busy.kind, started, attempts=attempts)
            raise Busy(
                f"{operation} did not complete after {attempts} attempts: {last_error}",
                operation=operation,
            ) from last_error

    @staticmethod
    def _finish(span, operation: str, outcome: str, started: float, **attributes: Any) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        span.set_attribute("outcome", outcome)
        for key, value in attributes.items():
            span.set_attribute(key, value)
        record_circulation_event(operation, outcome)
        record_duration(operation, duration_ms)
        if duration_ms > get_observability_config().slow_operation_ms:
            logger.warning("Slow %s (%s): %.0f ms", operation, outcome, duration_ms)

    # === Circulation ===

    def borrow(
        self,
        member_id: int,
        book_id: int,
        staff_id: int | None = None,
        loan_period_days: int | None = None,
        notes: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Transaction:
        """Lend a copy of ``book_id`` to ``member_id``."""

        def work(uow: UnitOfWork) -> Transaction:
            loan = uow.machine.borrow(
                member_id,
                book_id,
                staff_id=staff_id,
                loan_period_days=loan_period_days,
                notes=notes,
                cancel_event=cancel_event,
            )
            return Transaction.model_validate(loan)

        return self._run(
            "borrow",
            (book_key(book_id), member_key(member_id)),
            work,
            member_id=member_id,
            book_id=book_id,
        )

    def _loan_keys(self, transaction_id: int, with_member: bool) -> Callable[[], list[str]]:
        def keys() -> list[str]:
            loan = self._lookup(lambda s: s.get(TransactionDB, transaction_id))
            if loan is None:
                raise NotFoundError(f"Loan {transaction_id} not found")
            found = [transaction_key(loan.id), book_key(loan.book_id)]
            if with_member:
                found.append(member_key(loan.member_id))
            return found

        return keys

    def return_book(self, transaction_id: int) -> ReturnResult:
        """Close a loan; the copy may go straight to a waiting reservation."""

        def work(uow: UnitOfWork) -> ReturnResult:
            loan, fee = uow.machine.return_loan(transaction_id)
            fulfilled = uow.queue.fulfilled[-1] if uow.queue.fulfilled else None
            return ReturnResult(
                loan=Transaction.model_validate(loan),
                fine_assessed=fee,
                fulfilled_reservation=Reservation.model_validate(fulfilled) if fulfilled else None,
            )

        result = self._run(
            "return",
            self._loan_keys(transaction_id, with_member=True),
            work,
            transaction_id=transaction_id,
        )
        record_fine_assessed(int(result.fine_assessed * 100))
        return result

    def renew(self, transaction_id: int, extra_days: int | None = None) -> Transaction:
        """Extend an Active loan by ``extra_days`` (default: configured renewal period)."""
        return self._run(
            "renew",
            self._loan_keys(transaction_id, with_member=False),
            lambda uow: Transaction.model_validate(uow.machine.renew(transaction_id, extra_days)),
            transaction_id=transaction_id,
        )

    def mark_overdue(self, as_of: date | None = None) -> int:
        """Relabel every Active loan past due on ``as_of``, one book at a time."""
        as_of = as_of or self.clock().date()
        book_ids = self._run(
            "mark_overdue.scan",
            (),
            lambda uow: sorted(
                {loan.book_id for loan in uow.circulation.overdue_candidates(as_of)}
            ),
        )

        changed = 0
        for book_id in book_ids:

            def work(uow: UnitOfWork, book_id: int = book_id) -> int:
                loans = [
                    loan
                    for loan in uow.circulation.overdue_candidates(as_of)
                    if loan.book_id == book_id
                ]
                return uow.machine.mark_overdue(loans, as_of)

            changed += self._run("mark_overdue", (book_key(book_id),), work, book_id=book_id)

        if changed:
            logger.info("Marked %d loan(s) overdue as of %s", changed, as_of.isoformat())
        return changed

    # === Reservations ===

    def reserve(
        self,
        member_id: int,
        book_id: int,
        priority: int = 1,
        expiry_days: int | None = None,
    ) -> Reservation:
        """Put a member in a book's waitlist."""
        return self._run(
            "reserve",
            (book_key(book_id), member_key(member_id)),
            lambda uow: Reservation.model_validate(
                uow.queue.reserve(member_id, book_id, priority, expiry_days)
            ),
            member_id=member_id,
            book_id=book_id,
        )

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        """Cancel a waiting reservation or an uncollected hold."""

        def keys() -> list[str]:
            reservation = self._lookup(lambda s: s.get(ReservationDB, reservation_id))
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found")
            return [reservation_key(reservation.id), book_key(reservation.book_id)]

        return self._run(
            "cancel_reservation",
            keys,
            lambda uow: Reservation.model_validate(uow.queue.cancel(reservation_id)),
            reservation_id=reservation_id,
        )

    def sweep_reservations(self, now: datetime | None = None) -> SweepReport:
        """Expire lapsed reservations and holds, one book at a time."""
        now = now or self.clock()
        book_ids = self._run(
            "sweep_reservations.scan",
            (),
            lambda uow: uow.circulation.books_with_lapsed_reservations(now),
            now=now,
        )

        report = SweepReport(as_of=now)
        for book_id in book_ids:
            expired, holds = self._run(
                "sweep_reservations",
                (book_key(book_id),),
                lambda uow, book_id=book_id: uow.queue.sweep_expired(book_id),
                now=now,
                book_id=book_id,
            )
            report.reservations_expired += expired
            report.holds_expired += holds
        return report

    def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """Overdue relabelling followed by the reservation sweep."""
        now = now or self.clock()
        report = self.sweep_reservations(now)
        report.loans_marked_overdue = self.mark_overdue(now.date())
        return report

    # === Fines ===

    def pay_fine(
        self,
        member_id: int,
        amount: Decimal,
        method: PaymentMethod = PaymentMethod.CASH,
        transaction_id: int | None = None,
        staff_id: int | None = None,
        receipt_number: str | None = None,
    ) -> FinePayment:
        """Record a fine payment and reduce the member's balance."""
        payment = self._run(
            "pay_fine",
            (member_key(member_id),),
            lambda uow: FinePayment.model_validate(
                uow.fines.pay_fine(
                    member_id,
                    amount,
                    method,
                    transaction_id=transaction_id,
                    staff_id=staff_id,
                    receipt_number=receipt_number,
                )
            ),
            member_id=member_id,
        )
        record_fine_paid(int(payment.payment_amount * 100), payment.payment_method.value)
        return payment

    def verify_member_balance(self, member_id: int) -> Decimal:
        """Recompute a member's balance; raises ``ConsistencyFault`` on mismatch."""
        return self._run(
            "verify_member_balance",
            (member_key(member_id),),
            lambda uow: uow.fines.verify_balance(member_id),
            member_id=member_id,
        )

    # === Members ===

    def delete_member(self, member_id: int) -> bool:
        """
        Remove a member and their history.

        Waiting reservations are cancelled first, then uncollected holds, so
        each held copy passes to the next member in line or back to the
        shelf. Returns False if the member does not exist.

        Raises:
            RepositoryException: If the member still has books out
        """

        def keys() -> list[str]:
            reservations = self._lookup(
                lambda s: CirculationRepository(s).open_reservations(member_id)
            )
            found = [member_key(member_id)]
            for reservation in reservations:
                found += [reservation_key(reservation.id), book_key(reservation.book_id)]
            return found

        def work(uow: UnitOfWork) -> bool:
            for reservation in uow.circulation.open_reservations(member_id):
                uow.queue.cancel(reservation.id)
            return MemberRepository(uow.session).delete(member_id)

        deleted = self._run("delete_member", keys, work, member_id=member_id)
        if deleted:
            logger.info("Member %s deleted", member_id)
        return deleted

    # === Inventory ===

    def add_copies(self, book_id: int, count: int) -> Book:
        """Acquire new copies; waiting reservations are served first."""
        return self._run(
            "add_copies",
            (book_key(book_id),),
            lambda uow: Book.model_validate(uow.ledger.add_copies(book_id, count)),
            book_id=book_id,
        )

    def withdraw_copies(self, book_id: int, count: int) -> Book:
        """Remove copies from the open shelf and from stock."""
        return self._run(
            "withdraw_copies",
            (book_key(book_id),),
            lambda uow: Book.model_validate(uow.ledger.withdraw_copies(book_id, count)),
            book_id=book_id,
        )

    def verify_book(self, book_id: int) -> Book:
        """Recompute a book's availability; raises ``ConsistencyFault`` on mismatch."""
        return self._run(
            "verify_book",
            (book_key(book_id),),
            lambda uow: Book.model_validate(uow.ledger.verify(book_id)),
            book_id=book_id,
        )

    # === Read projections ===

    def available_books(self) -> list[AvailableBook]:
        return self._run("available_books", (), lambda uow: uow.circulation.available_books())

    def active_borrowings(self, as_of: date | None = None) -> list[ActiveBorrowing]:
        as_of = as_of or self.clock().date()
        return self._run(
            "active_borrowings", (), lambda uow: uow.circulation.active_borrowings(as_of)
        )

    def member_summary(self, member_id: int | None = None) -> list[MemberSummary]:
        return self._run(
            "member_summary", (), lambda uow: uow.circulation.member_summary(member_id)
        )

    def reservation_queue(self, book_id: int) -> list[Reservation]:
        """A book's waiting reservations in the order they will be served."""
        return self._run(
            "reservation_queue", (), lambda uow: uow.circulation.reservation_queue(book_id)
        )


def _entity_of(fault: ConsistencyFault) -> str:
    for field in ("book_id", "member_id"):
        if field in fault.context:
            return f"{field.removesuffix('_id')}:{fault.context[field]}"
    return "unknown"


# Global engine instance
_engine: CirculationEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> CirculationEngine:
    """Get the global circulation engine, creating it on first use."""
    global _engine  # noqa: PLW0603
    with _engine_lock:
        if _engine is None:
            _engine = CirculationEngine()
        return _engine


def set_engine(engine: CirculationEngine | None) -> None:
    """Install a specific engine (useful for testing)."""
    global _engine  # noqa: PLW0603
    with _engine_lock:
        _engine = engine


def reset_engine() -> None:
    set_engine(None)
