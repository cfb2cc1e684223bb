"""
Inventory ledger: the only code that changes a book's copy counts.

For every book the ledger keeps

    available_copies == total_copies - open loans - uncollected holds

Copies move off the shelf through ``reserve_copy`` and back through
``release_copy``. A released copy is first offered to the release listeners
(the reservation queue), which may put it straight back on the hold shelf.
"""

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from ..database.catalog_repository import BookRepository
from ..database.circulation_repository import CirculationRepository
from ..database.schema import Book as BookDB
from ..errors import ConsistencyFault, OutOfStock

logger = logging.getLogger(__name__)

ReleaseListener = Callable[[BookDB], None]


class InventoryLedger:
    """Copy accounting for one unit of work. Callers hold the book's lock."""

    def __init__(self, session: Session):
        self.session = session
        self.books = BookRepository(session)
        self.circulation = CirculationRepository(session)
        self._listeners: list[ReleaseListener] = []

    def add_release_listener(self, listener: ReleaseListener) -> None:
        self._listeners.append(listener)

    def reserve_copy(self, book_id: int) -> BookDB:
        """
        Take one copy off the open shelf.

        Raises:
            NotFoundError: If the book does not exist
            OutOfStock: If no copy is available
        """
        book = self.books.get_for_update(book_id)
        if book.available_copies <= 0:
            raise OutOfStock(
                f"No copies of '{book.title}' are available "
                f"({book.total_copies} owned, all on loan or on hold)",
                book_id=book.id,
            )
        book.available_copies -= 1
        self.session.flush()
        logger.debug("Reserved copy of book %s, %s left", book.id, book.available_copies)
        return book

    def release_copy(self, book_id: int) -> BookDB:
        """
        Put one copy back and offer it to the release listeners.

        Raises:
            ConsistencyFault: If the release would exceed the copies owned
        """
        book = self.books.get_for_update(book_id)
        if book.available_copies + 1 > book.total_copies:
            raise ConsistencyFault(
                f"Release of book {book.id} would make {book.available_copies + 1} "
                f"copies available out of {book.total_copies}",
                book_id=book.id,
            )
        book.available_copies += 1
        self.session.flush()
        logger.debug("Released copy of book %s, %s available", book.id, book.available_copies)

        for listener in self._listeners:
            listener(book)
        return book

    def add_copies(self, book_id: int, count: int) -> BookDB:
        """Acquire ``count`` new copies; each is released so waiters are served first."""
        if count < 1:
            raise ValueError("count must be at least 1")
        book = self.books.get_for_update(book_id)
        book.total_copies += count
        self.session.flush()
        for _ in range(count):
            self.release_copy(book_id)
        return book

    def withdraw_copies(self, book_id: int, count: int) -> BookDB:
        """
        Remove ``count`` copies from the open shelf and from the stock.

        Raises:
            OutOfStock: If fewer than ``count`` copies are on the shelf
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        book = self.books.get_for_update(book_id)
        if count > book.available_copies:
            raise OutOfStock(
                f"Cannot withdraw {count} copies of '{book.title}': "
                f"only {book.available_copies} on the shelf",
                book_id=book.id,
            )
        book.total_copies -= count
        book.available_copies -= count
        self.session.flush()
        return book

    def expected_available(self, book: BookDB) -> int:
        open_loans = self.circulation.count_open_loans(book.id)
        holds = len(self.circulation.pending_holds(book.id))
        return book.total_copies - open_loans - holds

    def verify(self, book_id: int) -> BookDB:
        """
        Recompute availability from loans and holds.

        Raises:
            ConsistencyFault: If the stored count disagrees
        """
        book = self.books.get_for_update(book_id)
        expected = self.expected_available(book)
        if book.available_copies != expected:
            raise ConsistencyFault(
                f"Book {book.id} shows {book.available_copies} available copies, "
                f"loans and holds account for {expected}",
                book_id=book.id,
                stored=book.available_copies,
                expected=expected,
            )
        return book
