"""Tests for the demo data seeder."""

import random
from datetime import date

from sqlalchemy import func, select

from library_circulation.circulation.engine import CirculationEngine
from library_circulation.database.schema import Book, Member, TransactionRecord
from library_circulation.database.seed import generate_isbn13, seed_database
from library_circulation.database.session import DatabaseManager
from library_circulation.models.enums import TransactionType


def _seed(db_manager, config):
    return seed_database(
        db_manager,
        config,
        num_authors=8,
        num_books=12,
        num_members=6,
        num_loans=20,
        today=date(2024, 1, 1),
    )


class TestIsbn:
    def test_check_digit_is_valid(self):
        isbn = generate_isbn13(random.Random(7))
        total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(isbn))

        assert len(isbn) == 13
        assert isbn.startswith("978")
        assert total % 10 == 0


class TestSeedDatabase:
    def test_counts(self, db_manager, test_config):
        report = _seed(db_manager, test_config)

        assert report.categories == 8
        assert report.authors == 8
        assert report.books == 12
        assert report.members == 6
        assert report.staff == 3
        with db_manager.session_scope() as session:
            assert session.scalar(select(func.count()).select_from(Book)) == 12
            assert session.scalar(select(func.count()).select_from(Member)) == 6
            loans = session.scalar(
                select(func.count())
                .select_from(TransactionRecord)
                .where(TransactionRecord.transaction_type == TransactionType.BORROW)
            )
        assert loans == report.loans

    def test_seeded_library_is_consistent(self, db_manager, test_config, clock):
        _seed(db_manager, test_config)
        engine = CirculationEngine(db_manager=db_manager, config=test_config, clock=clock)

        with db_manager.session_scope() as session:
            book_ids = session.scalars(select(Book.id)).all()
            member_ids = session.scalars(select(Member.id)).all()

        for book_id in book_ids:
            engine.verify_book(book_id)
        for member_id in member_ids:
            engine.verify_member_balance(member_id)

    def test_same_seed_same_library(self, db_manager, test_config, tmp_path):
        _seed(db_manager, test_config)
        other = DatabaseManager(f"sqlite:///{tmp_path / 'other.db'}")
        other.init_database()
        try:
            _seed(other, test_config)
            titles = []
            for manager in (db_manager, other):
                with manager.session_scope() as session:
                    titles.append(session.scalars(select(Book.title).order_by(Book.id)).all())
        finally:
            other.close()

        assert titles[0] == titles[1]
