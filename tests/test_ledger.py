"""
Tests for the inventory ledger.

The ledger owns ``available_copies``. These tests drive it directly inside
a session and through the engine's inventory operations.
"""

import pytest

from library_circulation.circulation.ledger import InventoryLedger
from library_circulation.database.schema import Book as BookDB
from library_circulation.errors import ConsistencyFault, OutOfStock


class TestInventoryLedger:
    def test_reserve_and_release(self, library, db_manager):
        book = library.add_book(copies=2)

        with db_manager.session_scope() as session:
            ledger = InventoryLedger(session)
            assert ledger.reserve_copy(book.id).available_copies == 1
            assert ledger.reserve_copy(book.id).available_copies == 0
            with pytest.raises(OutOfStock) as exc_info:
                ledger.reserve_copy(book.id)
            assert exc_info.value.context["book_id"] == book.id
            assert ledger.release_copy(book.id).available_copies == 1

        assert library.available(book.id) == 1

    def test_release_beyond_total_is_a_fault(self, library, db_manager):
        book = library.add_book(copies=1)

        with db_manager.session_scope() as session:
            with pytest.raises(ConsistencyFault):
                InventoryLedger(session).release_copy(book.id)

    def test_release_notifies_listeners(self, library, db_manager):
        book = library.add_book(copies=1)
        released = []

        with db_manager.session_scope() as session:
            ledger = InventoryLedger(session)
            ledger.add_release_listener(lambda b: released.append(b.id))
            ledger.reserve_copy(book.id)
            ledger.release_copy(book.id)

        assert released == [book.id]

    def test_verify_detects_drift(self, library, engine, db_manager):
        member = library.add_member()
        book = library.add_book(copies=3)
        engine.borrow(member.id, book.id)

        assert engine.verify_book(book.id).available_copies == 2

        # Corrupt the count behind the ledger's back
        with db_manager.session_scope() as session:
            session.get(BookDB, book.id).available_copies = 3

        with pytest.raises(ConsistencyFault) as exc_info:
            engine.verify_book(book.id)
        assert exc_info.value.context["stored"] == 3
        assert exc_info.value.context["expected"] == 2


class TestInventoryOperations:
    def test_add_copies(self, library, engine):
        book = library.add_book(copies=1)

        updated = engine.add_copies(book.id, 2)

        assert updated.total_copies == 3
        assert updated.available_copies == 3

    def test_add_copies_serves_waiting_reservation(self, library, engine):
        borrower = library.add_member()
        waiter = library.add_member()
        book = library.add_book(copies=1)
        engine.borrow(borrower.id, book.id)
        engine.reserve(waiter.id, book.id)

        updated = engine.add_copies(book.id, 1)

        # The new copy went to the hold shelf, not the open shelf
        assert updated.total_copies == 2
        assert updated.available_copies == 0
        assert engine.reservation_queue(book.id) == []
        engine.verify_book(book.id)

    def test_withdraw_copies(self, library, engine):
        member = library.add_member()
        book = library.add_book(copies=3)
        engine.borrow(member.id, book.id)

        updated = engine.withdraw_copies(book.id, 2)
        assert (updated.total_copies, updated.available_copies) == (1, 0)

        with pytest.raises(OutOfStock):
            engine.withdraw_copies(book.id, 1)
        engine.verify_book(book.id)

    def test_add_copies_requires_positive_count(self, library, engine):
        book = library.add_book()

        with pytest.raises(ValueError):
            engine.add_copies(book.id, 0)
