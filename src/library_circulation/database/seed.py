"""
Demo data for the Library Circulation engine.

Fills an empty database with a small, repeatable library: categories,
authors, publishers, books, staff and members, followed by some circulation
history. The catalog and people go in through the repositories; loans,
returns and reservations go through the circulation engine so the copy
counts and fine balances come out consistent.

Run with ``library-circulation-seed`` or ``python -m library_circulation.database.seed``.
"""

import logging
import random
import sys
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from faker import Faker

from ..circulation.engine import CirculationEngine
from ..config import EngineConfig, get_config
from ..errors import DuplicateReservation, MemberIneligible, OutOfStock
from ..models.catalog import BookAuthorLink
from ..models.enums import AuthorRole, MembershipType, MemberStatus
from .catalog_repository import (
    AuthorCreateSchema,
    AuthorRepository,
    BookCreateSchema,
    BookRepository,
    CategoryCreateSchema,
    CategoryRepository,
    PublisherCreateSchema,
    PublisherRepository,
)
from .member_repository import (
    MemberCreateSchema,
    MemberRepository,
    StaffCreateSchema,
    StaffRepository,
)
from .session import DatabaseManager, get_db_manager

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Fiction",
    "Mystery",
    "Science Fiction",
    "Biography",
    "History",
    "Science",
    "Philosophy",
    "Children's",
]


@dataclass
class SeedReport:
    """Counts of what the seeder wrote."""

    categories: int = 0
    authors: int = 0
    publishers: int = 0
    books: int = 0
    staff: int = 0
    members: int = 0
    loans: int = 0
    returns: int = 0
    reservations: int = 0
    skipped: list[str] = field(default_factory=list)


def generate_isbn13(rng: random.Random) -> str:
    """Generate a valid ISBN-13 number."""
    body = "978" + "".join(str(rng.randint(0, 9)) for _ in range(9))
    total = sum(int(digit) * (3 if i % 2 else 1) for i, digit in enumerate(body))
    return f"{body}{(10 - total % 10) % 10}"


def seed_catalog(
    db: DatabaseManager,
    fake: Faker,
    rng: random.Random,
    num_authors: int,
    num_books: int,
    report: SeedReport,
) -> list[int]:
    """Create categories, authors, publishers and books. Returns the book ids."""
    with db.session_scope() as session:
        categories = CategoryRepository(session)
        authors = AuthorRepository(session)
        publishers = PublisherRepository(session)
        books = BookRepository(session)

        category_ids = [
            categories.create(CategoryCreateSchema(category_name=name)).id for name in CATEGORIES
        ]
        report.categories = len(category_ids)

        author_ids = []
        for _ in range(num_authors):
            author = authors.create(
                AuthorCreateSchema(
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    birth_date=fake.date_of_birth(minimum_age=25, maximum_age=90),
                    nationality=fake.country()[:50],
                    biography=fake.text(max_nb_chars=300),
                )
            )
            author_ids.append(author.id)
        report.authors = len(author_ids)

        publisher_ids = []
        for i in range(max(1, num_authors // 4)):
            publisher = publishers.create(
                PublisherCreateSchema(
                    publisher_name=f"{fake.company()} {i + 1}"[:100],
                    address=fake.address(),
                    phone=fake.numerify("###-###-####"),
                    email=f"editor{i + 1}@{fake.domain_name()}",
                    website=fake.url(),
                )
            )
            publisher_ids.append(publisher.id)
        report.publishers = len(publisher_ids)

        book_ids = []
        for _ in range(num_books):
            links = [BookAuthorLink(author_id=rng.choice(author_ids))]
            # Roughly one book in five has a second credit
            if rng.random() < 0.2:
                second = rng.choice(author_ids)
                if second != links[0].author_id:
                    links.append(BookAuthorLink(author_id=second, author_role=AuthorRole.CO_AUTHOR))
            book = books.create(
                BookCreateSchema(
                    isbn=generate_isbn13(rng),
                    title=fake.catch_phrase().title()[:255],
                    publication_year=rng.randint(1900, 2024),
                    pages=rng.randint(80, 900),
                    category_id=rng.choice(category_ids),
                    publisher_id=rng.choice(publisher_ids),
                    total_copies=rng.randint(1, 5),
                    location_shelf=f"{rng.choice('ABCDEFGH')}-{rng.randint(1, 40):02d}",
                    authors=links,
                )
            )
            book_ids.append(book.id)
        report.books = len(book_ids)

    return book_ids


def seed_people(
    db: DatabaseManager,
    fake: Faker,
    rng: random.Random,
    num_members: int,
    today: date,
    report: SeedReport,
) -> tuple[list[int], list[int]]:
    """Create staff and members. Returns (member ids, staff ids)."""
    with db.session_scope() as session:
        staff_repo = StaffRepository(session)
        member_repo = MemberRepository(session)

        staff_ids = []
        for i in range(3):
            staff = staff_repo.create(
                StaffCreateSchema(
                    employee_id=f"EMP{i + 1:04d}",
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    email=f"staff{i + 1}@library.example.com",
                    position="Librarian",
                    department="Circulation",
                    hire_date=today - timedelta(days=rng.randint(200, 4000)),
                )
            )
            staff_ids.append(staff.id)
        report.staff = len(staff_ids)

        member_ids = []
        for i in range(num_members):
            joined = today - timedelta(days=rng.randint(30, 1500))
            # Most memberships are current; a few are lapsed or suspended
            roll = rng.random()
            if roll < 0.1:
                expiry, status = today - timedelta(days=rng.randint(1, 90)), MemberStatus.EXPIRED
            elif roll < 0.15:
                expiry, status = today + timedelta(days=365), MemberStatus.SUSPENDED
            else:
                expiry, status = today + timedelta(days=rng.randint(30, 730)), MemberStatus.ACTIVE
            member = member_repo.create(
                MemberCreateSchema(
                    membership_number=f"MEM{i + 1:05d}",
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    email=f"member{i + 1}@example.com",
                    phone=fake.numerify("###-###-####"),
                    address=fake.address(),
                    date_of_birth=fake.date_of_birth(minimum_age=8, maximum_age=85),
                    membership_type=rng.choice(list(MembershipType)),
                    membership_date=joined,
                    expiry_date=max(expiry, joined),
                    status=status,
                )
            )
            member_ids.append(member.id)
        report.members = len(member_ids)

    return member_ids, staff_ids


def seed_circulation(
    engine: CirculationEngine,
    rng: random.Random,
    member_ids: list[int],
    book_ids: list[int],
    staff_ids: list[int],
    num_loans: int,
    report: SeedReport,
) -> None:
    """
    Drive loans, returns and reservations through the engine.

    Members the engine refuses (expired, suspended, at their limit, over
    the fine cap) are simply skipped; the refusal is noted in the report.
    """
    open_loans = []
    for _ in range(num_loans):
        member_id = rng.choice(member_ids)
        book_id = rng.choice(book_ids)
        try:
            loan = engine.borrow(member_id, book_id, staff_id=rng.choice(staff_ids))
        except OutOfStock as e:
            if rng.random() < 0.5:
                try:
                    engine.reserve(member_id, book_id, priority=rng.randint(1, 5))
                    report.reservations += 1
                except (MemberIneligible, DuplicateReservation) as reserve_error:
                    report.skipped.append(str(reserve_error))
            else:
                report.skipped.append(str(e))
            continue
        except MemberIneligible as e:
            report.skipped.append(str(e))
            continue
        report.loans += 1
        open_loans.append(loan.id)

        if rng.random() < 0.4:
            engine.return_book(open_loans.pop(rng.randrange(len(open_loans))))
            report.returns += 1


def seed_database(
    db: DatabaseManager | None = None,
    config: EngineConfig | None = None,
    *,
    num_authors: int = 40,
    num_books: int = 120,
    num_members: int = 30,
    num_loans: int = 80,
    seed: int = 42,
    today: date | None = None,
) -> SeedReport:
    """
    Seed an initialized, empty database with a repeatable demo library.

    The same ``seed`` always produces the same library.
    """
    db = db or get_db_manager()
    today = today or date.today()
    fake = Faker()
    fake.seed_instance(seed)
    rng = random.Random(seed)
    report = SeedReport()

    logger.info("Seeding catalog (%d authors, %d books)", num_authors, num_books)
    book_ids = seed_catalog(db, fake, rng, num_authors, num_books, report)

    logger.info("Seeding people (%d members)", num_members)
    member_ids, staff_ids = seed_people(db, fake, rng, num_members, today, report)

    logger.info("Seeding circulation history (%d loan attempts)", num_loans)
    engine = CirculationEngine(
        db_manager=db,
        config=config,
        clock=lambda: datetime.combine(today, datetime.min.time()).replace(hour=10),
    )
    seed_circulation(engine, rng, member_ids, book_ids, staff_ids, num_loans, report)

    logger.info(
        "Seeding complete: %d books, %d members, %d loans, %d returns, %d reservations",
        report.books,
        report.members,
        report.loans,
        report.returns,
        report.reservations,
    )
    return report


def main() -> None:
    """Create the schema if needed and seed the configured database."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    config = get_config()
    db = get_db_manager(config.get_database_url())

    try:
        db.init_database()
        report = seed_database(db, config)
    except Exception:
        logger.exception("Error during seeding")
        sys.exit(1)
    finally:
        db.close()

    print("=" * 50)
    print("DATABASE SEEDING COMPLETE")
    print("=" * 50)
    print(f"Database:      {config.database_path}")
    print(f"Categories:    {report.categories}")
    print(f"Authors:       {report.authors}")
    print(f"Publishers:    {report.publishers}")
    print(f"Books:         {report.books}")
    print(f"Staff:         {report.staff}")
    print(f"Members:       {report.members}")
    print(f"Loans:         {report.loans}")
    print(f"Returns:       {report.returns}")
    print(f"Reservations:  {report.reservations}")
    print(f"Refused:       {len(report.skipped)}")


if __name__ == "__main__":
    main()
