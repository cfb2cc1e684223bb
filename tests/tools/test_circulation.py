"""
Tests for the circulation tools.

These tests exercise each MCP tool the way a client would:
1. Input validation
2. Success responses and their structured data
3. Circulation failures reported in-band with their kind
"""

from datetime import date

from library_circulation.tools import all_tools
from library_circulation.tools.circulation import (
    borrow_book_handler,
    cancel_reservation_handler,
    pay_fine_handler,
    renew_loan_handler,
    reserve_book_handler,
    return_book_handler,
    run_circulation_sweep_handler,
)


def _is_error(result):
    return result.get("isError", False)


class TestToolRegistry:
    def test_all_tools_have_handlers_and_schemas(self):
        names = {tool["name"] for tool in all_tools}

        assert names == {
            "borrow_book",
            "return_book",
            "renew_loan",
            "reserve_book",
            "cancel_reservation",
            "pay_fine",
            "run_circulation_sweep",
        }
        for tool in all_tools:
            assert callable(tool["handler"])
            assert tool["inputSchema"]["type"] == "object"


class TestBorrowBookTool:
    async def test_borrow_success(self, library, engine):
        member = library.add_member()
        book = library.add_book(copies=2)

        result = await borrow_book_handler({"member_id": member.id, "book_id": book.id})

        assert not _is_error(result)
        assert "due January 15, 2024" in result["content"][0]["text"]
        assert result["data"]["loan"]["status"] == "Active"
        assert result["data"]["loan"]["due_date"] == "2024-01-15"
        assert library.available(book.id) == 1

    async def test_borrow_invalid_input(self, engine):
        result = await borrow_book_handler({"member_id": "abc", "book_id": 1})

        assert _is_error(result)
        assert result["data"]["kind"] == "InvalidInput"
        assert "member_id" in result["content"][0]["text"]

    async def test_borrow_out_of_stock(self, library, engine):
        book = library.add_book(copies=1)
        await borrow_book_handler({"member_id": library.add_member().id, "book_id": book.id})

        result = await borrow_book_handler(
            {"member_id": library.add_member().id, "book_id": book.id}
        )

        assert _is_error(result)
        assert result["data"]["kind"] == "OutOfStock"
        assert result["data"]["book_id"] == book.id

    async def test_borrow_unknown_member(self, library, engine):
        result = await borrow_book_handler({"member_id": 999, "book_id": library.add_book().id})

        assert _is_error(result)
        assert result["data"]["kind"] == "NotFound"

    async def test_ineligible_member_reasons_stay_out_of_data(self, library, engine):
        member = library.add_member(expiry_date=date(2023, 6, 30))

        result = await borrow_book_handler(
            {"member_id": member.id, "book_id": library.add_book().id}
        )

        assert result["data"]["kind"] == "MemberIneligible"
        assert result["data"]["member_id"] == member.id
        assert "reasons" not in result["data"]
        assert "expired" in result["content"][0]["text"]


class TestReturnAndRenewTools:
    async def test_late_return_reports_fee(self, library, engine, clock):
        loan = engine.borrow(library.add_member().id, library.add_book().id)
        clock.set(date(2024, 1, 19))

        result = await return_book_handler({"transaction_id": loan.id})

        assert not _is_error(result)
        assert "Late fee charged: $2.00" in result["content"][0]["text"]
        assert result["data"]["return"]["fine_assessed"] == "2.00"
        assert result["data"]["return"]["loan"]["status"] == "Completed"

    async def test_return_reports_hold(self, library, engine):
        book = library.add_book()
        loan = engine.borrow(library.add_member().id, book.id)
        waiter = library.add_member()
        engine.reserve(waiter.id, book.id)

        result = await return_book_handler({"transaction_id": loan.id})

        assert f"on hold for member {waiter.id}" in result["content"][0]["text"]
        assert result["data"]["return"]["fulfilled_reservation"]["member_id"] == waiter.id

    async def test_second_return_is_not_active(self, library, engine):
        loan = engine.borrow(library.add_member().id, library.add_book().id)
        await return_book_handler({"transaction_id": loan.id})

        result = await return_book_handler({"transaction_id": loan.id})

        assert result["data"]["kind"] == "NotActive"

    async def test_renew(self, library, engine):
        loan = engine.borrow(library.add_member().id, library.add_book().id)

        result = await renew_loan_handler({"transaction_id": loan.id, "extra_days": 7})

        assert not _is_error(result)
        assert result["data"]["loan"]["due_date"] == "2024-01-22"
        assert result["data"]["loan"]["renewal_count"] == 1

    async def test_renew_blocked_by_waiting_member(self, library, engine):
        book = library.add_book()
        loan = engine.borrow(library.add_member().id, book.id)
        reservation = engine.reserve(library.add_member().id, book.id)

        result = await renew_loan_handler({"transaction_id": loan.id})

        assert result["data"]["kind"] == "RenewalBlocked"
        assert result["data"]["reservation_id"] == reservation.id


class TestReservationTools:
    async def test_reserve_reports_queue_position(self, library, engine):
        book = library.add_book()
        engine.borrow(library.add_member().id, book.id)
        engine.reserve(library.add_member().id, book.id, priority=1)

        result = await reserve_book_handler(
            {"member_id": library.add_member().id, "book_id": book.id, "priority": 2}
        )

        assert not _is_error(result)
        assert result["data"]["queue_position"] == 2
        assert "position 2" in result["content"][0]["text"]

    async def test_reserve_priority_out_of_range(self, engine):
        result = await reserve_book_handler({"member_id": 1, "book_id": 1, "priority": 9})

        assert result["data"]["kind"] == "InvalidInput"

    async def test_duplicate_reservation(self, library, engine):
        member = library.add_member()
        book = library.add_book()
        await reserve_book_handler({"member_id": member.id, "book_id": book.id})

        result = await reserve_book_handler({"member_id": member.id, "book_id": book.id})

        assert result["data"]["kind"] == "DuplicateReservation"

    async def test_cancel_reservation(self, library, engine):
        reservation = engine.reserve(library.add_member().id, library.add_book().id)

        result = await cancel_reservation_handler({"reservation_id": reservation.id})

        assert not _is_error(result)
        assert result["data"]["reservation"]["status"] == "Cancelled"


class TestFineAndSweepTools:
    async def test_pay_fine(self, library, engine, clock):
        member = library.add_member()
        loan = engine.borrow(member.id, library.add_book().id)
        clock.set(date(2024, 1, 21))
        engine.return_book(loan.id)

        result = await pay_fine_handler(
            {"member_id": member.id, "amount": "3.00", "payment_method": "Online"}
        )

        assert not _is_error(result)
        assert result["data"]["payment"]["payment_method"] == "Online"
        assert result["data"]["payment"]["receipt_number"].startswith("RCP-20240121-")

    async def test_overpayment(self, library, engine):
        member = library.add_member()

        result = await pay_fine_handler({"member_id": member.id, "amount": "1.00"})

        assert result["data"]["kind"] == "InvalidAmount"

    async def test_unknown_payment_method(self, engine):
        result = await pay_fine_handler(
            {"member_id": 1, "amount": "1.00", "payment_method": "Barter"}
        )

        assert result["data"]["kind"] == "InvalidInput"

    async def test_sweep(self, library, engine):
        member = library.add_member()
        engine.borrow(member.id, library.add_book().id)

        result = await run_circulation_sweep_handler({"as_of": "2024-02-01T09:00:00"})

        assert not _is_error(result)
        assert result["data"]["sweep"]["loans_marked_overdue"] == 1
        assert "1 loan(s) marked overdue" in result["content"][0]["text"]
