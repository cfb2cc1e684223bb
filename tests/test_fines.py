"""Tests for late fees, payments and balance reconciliation."""

import re
from datetime import date, datetime
from decimal import Decimal

import pytest

from library_circulation.circulation.fines import (
    generate_receipt_number,
    late_fee,
    to_money,
)
from library_circulation.database.schema import Member as MemberDB
from library_circulation.errors import (
    ConsistencyFault,
    InvalidAmount,
    MemberIneligible,
    NotFoundError,
)
from library_circulation.models.enums import PaymentMethod

PER_DAY = Decimal("0.50")
CAP = Decimal("25.00")


class TestLateFee:
    @pytest.mark.parametrize(
        "days,expected",
        [
            (-3, "0.00"),
            (0, "0.00"),
            (1, "0.50"),
            (5, "2.50"),
            (50, "25.00"),
            (51, "25.00"),
        ],
    )
    def test_late_fee(self, days, expected):
        assert late_fee(days, PER_DAY, CAP) == Decimal(expected)

    def test_to_money_rounds_half_up(self):
        assert to_money(0.125) == Decimal("0.13")
        assert to_money("2.5") == Decimal("2.50")
        assert to_money(3) == Decimal("3.00")

    def test_receipt_number_format(self):
        receipt = generate_receipt_number(datetime(2024, 1, 15, 9, 30))

        assert re.fullmatch(r"RCP-20240115-[0-9A-F]{12}", receipt)


@pytest.fixture
def fined_member(library, engine, clock):
    """A member who returned a book 5 days late and owes 2.50."""
    member = library.add_member()
    loan = engine.borrow(member.id, library.add_book().id, loan_period_days=9)
    clock.set(date(2024, 1, 15))
    engine.return_book(loan.id)
    return member, loan


class TestPayFine:
    def test_partial_then_full_payment(self, library, engine, fined_member):
        member, loan = fined_member

        first = engine.pay_fine(member.id, Decimal("1.00"), PaymentMethod.CASH)
        assert library.balance(member.id) == Decimal("1.50")

        second = engine.pay_fine(
            member.id, Decimal("1.50"), PaymentMethod.CREDIT_CARD, transaction_id=loan.id
        )
        assert library.balance(member.id) == Decimal("0.00")

        assert second.transaction_id == loan.id
        assert second.payment_method == PaymentMethod.CREDIT_CARD
        assert second.payment_date == datetime(2024, 1, 15, 10, 0)
        assert first.receipt_number != second.receipt_number
        assert engine.verify_member_balance(member.id) == Decimal("0.00")

    def test_overpayment_rejected(self, library, engine, fined_member):
        member, _ = fined_member

        with pytest.raises(InvalidAmount, match="exceeds"):
            engine.pay_fine(member.id, Decimal("2.51"))

        assert library.balance(member.id) == Decimal("2.50")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00")])
    def test_non_positive_amount_rejected(self, library, engine, fined_member, amount):
        member, _ = fined_member

        with pytest.raises(InvalidAmount, match="positive"):
            engine.pay_fine(member.id, amount)

        assert library.balance(member.id) == Decimal("2.50")

    def test_payment_against_someone_elses_loan(self, library, engine, fined_member):
        member, _ = fined_member
        other = library.add_member()
        other_loan = engine.borrow(other.id, library.add_book(title="Other").id)

        with pytest.raises(InvalidAmount, match="does not belong"):
            engine.pay_fine(member.id, Decimal("1.00"), transaction_id=other_loan.id)

    def test_unknown_member(self, engine):
        with pytest.raises(NotFoundError):
            engine.pay_fine(777, Decimal("1.00"))

    def test_paying_down_restores_borrowing(self, library, engine, clock):
        member = library.add_member()
        loan = engine.borrow(member.id, library.add_book().id)
        clock.set(date(2024, 2, 5))
        engine.return_book(loan.id)
        assert library.balance(member.id) == Decimal("10.50")

        book = library.add_book(title="Next")
        with pytest.raises(MemberIneligible, match="cap"):
            engine.borrow(member.id, book.id)

        engine.pay_fine(member.id, Decimal("0.51"))
        assert engine.borrow(member.id, book.id).book_id == book.id


class TestBalanceReconciliation:
    def test_balance_matches_history(self, engine, fined_member):
        member, _ = fined_member

        assert engine.verify_member_balance(member.id) == Decimal("2.50")

    def test_drift_is_reported(self, library, engine, fined_member):
        member, _ = fined_member
        with library.db.session_scope() as session:
            session.get(MemberDB, member.id).fine_balance = Decimal("4.00")

        with pytest.raises(ConsistencyFault) as exc_info:
            engine.verify_member_balance(member.id)

        assert exc_info.value.context["stored"] == "4.00"
        assert exc_info.value.context["expected"] == "2.50"
