"""
Tests for the loan lifecycle: borrow, return, renew and overdue relabelling.

The engine's clock starts at 2024-01-01 10:00 (see conftest) and is moved
forward by the tests.
"""

import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from library_circulation.database.circulation_repository import CirculationRepository
from library_circulation.errors import (
    Cancelled,
    MemberIneligible,
    NotActive,
    NotFoundError,
    OutOfStock,
    RenewalBlocked,
)
from library_circulation.models.enums import (
    MemberStatus,
    ReservationStatus,
    TransactionStatus,
    TransactionType,
)


class TestBorrow:
    def test_borrow_creates_active_loan(self, library, engine):
        member = library.add_member()
        book = library.add_book(copies=2)

        loan = engine.borrow(member.id, book.id, notes="Front desk")

        assert loan.transaction_type == TransactionType.BORROW
        assert loan.status == TransactionStatus.ACTIVE
        assert loan.transaction_date == datetime(2024, 1, 1, 10, 0)
        assert loan.due_date == date(2024, 1, 15)
        assert loan.fine_amount == Decimal("0.00")
        assert loan.notes == "Front desk"
        assert library.available(book.id) == 1

    def test_custom_loan_period(self, library, engine):
        loan = engine.borrow(library.add_member().id, library.add_book().id, loan_period_days=7)

        assert loan.due_date == date(2024, 1, 8)

    def test_last_copy_then_out_of_stock(self, library, engine):
        book = library.add_book(copies=1)
        engine.borrow(library.add_member().id, book.id)

        with pytest.raises(OutOfStock):
            engine.borrow(library.add_member().id, book.id)
        assert library.available(book.id) == 0

    def test_ineligible_member_takes_nothing(self, library, engine):
        member = library.add_member(status=MemberStatus.SUSPENDED)
        book = library.add_book()

        with pytest.raises(MemberIneligible):
            engine.borrow(member.id, book.id)
        assert library.available(book.id) == 1

    def test_fines_at_cap_block_borrowing(self, library, engine):
        member = library.add_member()
        library.set_balance(member.id, Decimal("10.00"))

        with pytest.raises(MemberIneligible, match="cap"):
            engine.borrow(member.id, library.add_book().id)

    def test_unknown_member_or_book(self, library, engine):
        member = library.add_member()
        book = library.add_book()

        with pytest.raises(NotFoundError):
            engine.borrow(999, book.id)
        with pytest.raises(NotFoundError):
            engine.borrow(member.id, 999)

    def test_cancelled_borrow_leaves_inventory_unchanged(self, library, engine, db_manager):
        member = library.add_member()
        book = library.add_book(copies=1)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(Cancelled):
            engine.borrow(member.id, book.id, cancel_event=cancel)

        assert library.available(book.id) == 1
        with db_manager.session_scope() as session:
            assert CirculationRepository(session).count_open_loans(book.id) == 0

    def test_borrowing_shelf_copy_closes_own_reservation(self, library, engine):
        member = library.add_member()
        book = library.add_book(copies=1)
        reservation = engine.reserve(member.id, book.id)

        engine.borrow(member.id, book.id)

        assert engine.reservation_queue(book.id) == []
        with library.db.session_scope() as session:
            closed = CirculationRepository(session).get_reservation(reservation.id)
        assert closed.status == ReservationStatus.FULFILLED
        assert closed.collected_at is not None


    @pytest.mark.parametrize("days", [0, -1])
    def test_non_positive_loan_period_rejected(self, library, engine, days):
        book = library.add_book()

        with pytest.raises(ValueError, match="loan_period_days"):
            engine.borrow(library.add_member().id, book.id, loan_period_days=days)

        assert library.available(book.id) == 1


class TestReturn:
    def test_on_time_return(self, library, engine):
        member = library.add_member()
        book = library.add_book()
        loan = engine.borrow(member.id, book.id)

        result = engine.return_book(loan.id)

        assert result.loan.status == TransactionStatus.COMPLETED
        assert result.loan.return_date == date(2024, 1, 1)
        assert result.fine_assessed == Decimal("0.00")
        assert result.fulfilled_reservation is None
        assert library.available(book.id) == 1
        assert library.balance(member.id) == Decimal("0.00")

    def test_late_return_charges_fee(self, library, engine, clock):
        member = library.add_member()
        book = library.add_book()
        loan = engine.borrow(member.id, book.id, loan_period_days=9)
        assert loan.due_date == date(2024, 1, 10)

        clock.set(date(2024, 1, 15))
        result = engine.return_book(loan.id)

        assert result.fine_assessed == Decimal("2.50")
        assert result.loan.fine_amount == Decimal("2.50")
        assert library.balance(member.id) == Decimal("2.50")
        assert engine.verify_member_balance(member.id) == Decimal("2.50")

    def test_fee_is_capped_per_loan(self, library, engine, clock):
        member = library.add_member()
        loan = engine.borrow(member.id, library.add_book().id)

        clock.set(date(2024, 6, 1))
        result = engine.return_book(loan.id)

        assert result.fine_assessed == Decimal("25.00")

    def test_return_twice_is_not_active(self, library, engine):
        loan = engine.borrow(library.add_member().id, library.add_book().id)
        engine.return_book(loan.id)

        with pytest.raises(NotActive):
            engine.return_book(loan.id)

    def test_return_unknown_loan(self, engine):
        with pytest.raises(NotFoundError):
            engine.return_book(12345)

    def test_return_writes_audit_event(self, library, engine, db_manager):
        loan = engine.borrow(library.add_member().id, library.add_book().id)
        engine.return_book(loan.id)

        with db_manager.session_scope() as session:
            history = CirculationRepository(session).loan_history(loan.id)

        assert [e.transaction_type for e in history] == [TransactionType.RETURN]
        assert history[0].status == TransactionStatus.COMPLETED


class TestRenew:
    def test_renew_extends_due_date(self, library, engine, db_manager):
        loan = engine.borrow(library.add_member().id, library.add_book().id)

        renewed = engine.renew(loan.id)

        assert renewed.due_date == date(2024, 1, 29)
        assert renewed.renewal_count == 1
        with db_manager.session_scope() as session:
            history = CirculationRepository(session).loan_history(loan.id)
        assert [e.transaction_type for e in history] == [TransactionType.RENEW]

    def test_renewal_limit(self, library, engine):
        loan = engine.borrow(library.add_member().id, library.add_book().id)
        for _ in range(3):
            engine.renew(loan.id, extra_days=7)

        with pytest.raises(RenewalBlocked, match="limit"):
            engine.renew(loan.id)

    def test_overdue_loan_cannot_be_renewed(self, library, engine, clock):
        loan = engine.borrow(library.add_member().id, library.add_book().id)

        clock.set(date(2024, 1, 20))
        with pytest.raises(NotActive):
            engine.renew(loan.id)

    def test_waiting_member_blocks_renewal(self, library, engine):
        book = library.add_book(copies=1)
        loan = engine.borrow(library.add_member().id, book.id)
        engine.reserve(library.add_member().id, book.id, priority=5)

        with pytest.raises(RenewalBlocked) as exc_info:
            engine.renew(loan.id)
        assert exc_info.value.kind == "RenewalBlocked"

    def test_holder_with_better_standing_may_renew(self, library, engine):
        holder = library.add_member()
        book = library.add_book(copies=1)
        loan = engine.borrow(holder.id, book.id)
        engine.reserve(holder.id, book.id, priority=1)
        engine.reserve(library.add_member().id, book.id, priority=3)

        assert engine.renew(loan.id).renewal_count == 1

    @pytest.mark.parametrize("extra_days", [0, -5])
    def test_non_positive_extension_rejected(self, library, engine, db_manager, extra_days):
        loan = engine.borrow(library.add_member().id, library.add_book().id)

        with pytest.raises(ValueError, match="extra_days"):
            engine.renew(loan.id, extra_days=extra_days)

        with db_manager.session_scope() as session:
            unchanged = CirculationRepository(session).get_transaction(loan.id)
        assert unchanged.due_date == date(2024, 1, 15)
        assert unchanged.renewal_count == 0


class TestOverdue:
    def test_mark_overdue(self, library, engine, clock):
        member = library.add_member()
        late = engine.borrow(member.id, library.add_book(title="A").id, loan_period_days=3)
        engine.borrow(member.id, library.add_book(title="B").id, loan_period_days=30)

        assert engine.mark_overdue(date(2024, 1, 10)) == 1
        assert engine.mark_overdue(date(2024, 1, 10)) == 0

        borrowings = {b.transaction_id: b for b in engine.active_borrowings(date(2024, 1, 10))}
        assert borrowings[late.id].status == TransactionStatus.OVERDUE
        assert borrowings[late.id].days_overdue == 6
        # No fine until the book comes back
        assert library.balance(member.id) == Decimal("0.00")

    def test_overdue_loan_can_be_returned(self, library, engine, clock):
        member = library.add_member()
        loan = engine.borrow(member.id, library.add_book().id)
        engine.mark_overdue(date(2024, 1, 16))

        clock.set(date(2024, 1, 17))
        result = engine.return_book(loan.id)

        assert result.loan.status == TransactionStatus.COMPLETED
        assert result.fine_assessed == Decimal("1.00")
