"""Test configuration and fixtures for the Library Circulation engine.

Every test gets:
1. An isolated SQLite database file under ``tmp_path``
2. A circulation engine with a settable clock, so loans can be moved past
   their due dates without waiting
3. A ``library`` helper that catalogues books and enrols members
"""

from collections.abc import Generator
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from library_circulation.circulation.engine import CirculationEngine, reset_engine, set_engine
from library_circulation.config import EngineConfig, reset_config
from library_circulation.database.catalog_repository import (
    AuthorCreateSchema,
    AuthorRepository,
    BookCreateSchema,
    BookRepository,
    CategoryCreateSchema,
    CategoryRepository,
    PublisherCreateSchema,
    PublisherRepository,
)
from library_circulation.database.member_repository import (
    MemberCreateSchema,
    MemberRepository,
)
from library_circulation.database.schema import Book as BookDB
from library_circulation.database.schema import Member as MemberDB
from library_circulation.database.session import DatabaseManager, reset_db_manager
from library_circulation.models.catalog import Book, BookAuthorLink
from library_circulation.models.member import Member
from library_circulation.observability import initialize_observability
from library_circulation.observability.config import ObservabilityConfig

START = datetime(2024, 1, 1, 10, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def quiet_observability():
    """Configure Logfire locally: no console output, nothing sent."""
    initialize_observability(
        ObservabilityConfig(token="", enabled=True, console_output=False, send_to_logfire=False)
    )


@pytest.fixture(autouse=True)
def isolated_globals() -> Generator[None, None, None]:
    """No test sees the configuration, engine or database manager of another."""
    reset_config()
    reset_engine()
    reset_db_manager()
    yield
    reset_engine()
    reset_db_manager()
    reset_config()


# === Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_library.db"


@pytest.fixture
def test_config(test_db_path: Path) -> EngineConfig:
    """Engine configuration with short backoff so contention tests stay fast."""
    return EngineConfig(
        database_path=test_db_path,
        lock_timeout=2.0,
        busy_retry_attempts=5,
        busy_backoff_base=0.01,
        busy_backoff_max=0.05,
    )


@pytest.fixture
def db_manager(
    test_db_path: Path, test_config: EngineConfig
) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(f"sqlite:///{test_db_path}", busy_timeout=5.0)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager):
    """A plain session for setting up and inspecting rows directly."""
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


# === Engine Fixtures ===


@dataclass
class FakeClock:
    """A clock tests can move forward."""

    now: datetime = START

    def __call__(self) -> datetime:
        return self.now

    def set(self, moment: datetime | date) -> None:
        if not isinstance(moment, datetime):
            moment = datetime.combine(moment, START.time())
        self.now = moment


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(db_manager: DatabaseManager, test_config: EngineConfig, clock: FakeClock):
    """A circulation engine bound to the test database and clock."""
    circulation = CirculationEngine(db_manager=db_manager, config=test_config, clock=clock)
    set_engine(circulation)
    return circulation


# === Catalog and Member Fixtures ===


class Library:
    """Seeds catalog and member rows through the repositories."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self._category_id: int | None = None
        self._author_id: int | None = None
        self._publisher_id: int | None = None
        self._counter = 0

    def _defaults(self) -> None:
        if self._category_id is not None:
            return
        with self.db.session_scope() as session:
            self._category_id = (
                CategoryRepository(session)
                .create(CategoryCreateSchema(category_name="Fiction"))
                .id
            )
            self._author_id = (
                AuthorRepository(session)
                .create(AuthorCreateSchema(first_name="George", last_name="Orwell"))
                .id
            )
            self._publisher_id = (
                PublisherRepository(session)
                .create(PublisherCreateSchema(publisher_name="Secker & Warburg"))
                .id
            )

    def add_book(self, title: str = "1984", copies: int = 1, with_author: bool = True) -> Book:
        self._defaults()
        self._counter += 1
        with self.db.session_scope() as session:
            return BookRepository(session).create(
                BookCreateSchema(
                    isbn=f"978000000{self._counter:04d}",
                    title=title,
                    publication_year=1949,
                    category_id=self._category_id,
                    publisher_id=self._publisher_id,
                    total_copies=copies,
                    location_shelf=f"A1-{self._counter:03d}",
                    authors=[BookAuthorLink(author_id=self._author_id)] if with_author else [],
                )
            )

    def add_member(
        self, first_name: str = "Ada", last_name: str | None = None, **overrides
    ) -> Member:
        self._counter += 1
        values = {
            "membership_number": f"MEM{self._counter:04d}",
            "first_name": first_name,
            "last_name": last_name or f"Member{self._counter}",
            "email": f"member{self._counter}@example.com",
            "membership_date": date(2023, 1, 1),
            "expiry_date": date(2030, 12, 31),
        }
        values.update(overrides)
        with self.db.session_scope() as session:
            return MemberRepository(session).create(MemberCreateSchema(**values))

    def book_row(self, book_id: int) -> BookDB:
        with self.db.session_scope() as session:
            return session.get(BookDB, book_id)

    def member_row(self, member_id: int) -> MemberDB:
        with self.db.session_scope() as session:
            return session.get(MemberDB, member_id)

    def available(self, book_id: int) -> int:
        return self.book_row(book_id).available_copies

    def balance(self, member_id: int) -> Decimal:
        return self.member_row(member_id).fine_balance

    def set_balance(self, member_id: int, amount: Decimal) -> None:
        """Direct write, for eligibility tests only."""
        with self.db.session_scope() as session:
            session.get(MemberDB, member_id).fine_balance = amount


@pytest.fixture
def library(db_manager: DatabaseManager) -> Library:
    return Library(db_manager)
