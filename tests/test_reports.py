"""Tests for the read projections and the MCP resources that publish them."""

from datetime import date
from decimal import Decimal

import pytest
from fastmcp.exceptions import ResourceError

from library_circulation.circulation.engine import set_engine
from library_circulation.models.enums import TransactionStatus
from library_circulation.resources.reports import (
    active_loans_handler,
    available_books_handler,
    member_summary_handler,
)


class TestAvailableBooks:
    def test_lists_books_on_the_shelf_by_title(self, library, engine):
        member = library.add_member()
        gone = library.add_book(title="Animal Farm", copies=1)
        library.add_book(title="Burmese Days", copies=2)
        library.add_book(title="Coming Up for Air", copies=1, with_author=False)
        engine.borrow(member.id, gone.id)

        books = engine.available_books()

        assert [b.title for b in books] == ["Burmese Days", "Coming Up for Air"]
        assert books[0].author_name == "George Orwell"
        assert books[0].category_name == "Fiction"
        assert books[0].publisher_name == "Secker & Warburg"
        assert books[0].available_copies == 2
        assert books[1].author_name is None


class TestActiveBorrowings:
    def test_ordered_by_due_date_with_days_overdue(self, library, engine):
        member = library.add_member(first_name="Eric", last_name="Blair")
        later = engine.borrow(member.id, library.add_book(title="A").id, loan_period_days=20)
        sooner = engine.borrow(member.id, library.add_book(title="B").id, loan_period_days=5)
        returned = engine.borrow(member.id, library.add_book(title="C").id)
        engine.return_book(returned.id)

        rows = engine.active_borrowings(date(2024, 1, 10))

        assert [r.transaction_id for r in rows] == [sooner.id, later.id]
        assert rows[0].days_overdue == 4
        assert rows[1].days_overdue == -11
        assert rows[0].member_name == "Eric Blair"
        assert rows[0].book_title == "B"
        assert rows[0].status == TransactionStatus.ACTIVE


class TestMemberSummary:
    def test_totals_per_member(self, library, engine, clock):
        busy = library.add_member(first_name="Zed", last_name="Alpha")
        idle = library.add_member(first_name="Amy", last_name="Zulu")
        first = engine.borrow(busy.id, library.add_book(title="A").id)
        engine.borrow(busy.id, library.add_book(title="B").id)
        clock.set(date(2024, 1, 20))
        engine.return_book(first.id)

        summary = engine.member_summary()

        assert [s.member_id for s in summary] == [busy.id, idle.id]
        assert summary[0].books_borrowed == 2
        assert summary[0].currently_borrowed == 1
        assert summary[0].outstanding_fines == Decimal("2.50")
        assert summary[1].books_borrowed == 0
        assert summary[1].currently_borrowed == 0

    def test_single_member(self, library, engine):
        member = library.add_member()
        library.add_member()

        summary = engine.member_summary(member.id)

        assert len(summary) == 1
        assert summary[0].full_name == member.full_name


class TestReportResources:
    async def test_available_books_resource(self, library, engine):
        library.add_book(title="Keep the Aspidistra Flying", copies=2)

        result = await available_books_handler()

        assert result["count"] == 1
        assert result["books"][0]["title"] == "Keep the Aspidistra Flying"

    async def test_active_loans_resource(self, library, engine, clock):
        member = library.add_member()
        engine.borrow(member.id, library.add_book().id)

        clock.set(date(2024, 2, 1))
        result = await active_loans_handler()

        assert result["count"] == 1
        assert result["overdue_count"] == 1
        assert result["loans"][0]["days_overdue"] == 17

    async def test_member_summary_resource(self, library, engine):
        library.add_member()

        result = await member_summary_handler()

        assert result["count"] == 1
        assert result["members"][0]["outstanding_fines"] == "0.00"

    async def test_resource_failure_raises_resource_error(self, library, engine):
        class BrokenEngine:
            def available_books(self):
                raise RuntimeError("database unavailable")

        set_engine(BrokenEngine())

        with pytest.raises(ResourceError, match="database unavailable"):
            await available_books_handler()
