"""
SQLAlchemy database schema for the Library Circulation engine.

The tables are the persistent store the circulation engine reads from and
writes to. Declarative constraints (CHECK, UNIQUE, foreign keys with their
ON DELETE actions) are kept in the schema so that the database rejects rows
no engine path should ever produce; the engine itself checks every business
rule before it mutates anything.

Referential actions:
- book_authors cascade with both their book and their author
- transactions, reservations and fine_payments cascade with their member
- reservations cascade with their book; a book with transactions is RESTRICTed
- a category with books is RESTRICTed
- publisher and staff references are nulled when the row they point to goes away
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.enums import (
    AuthorRole,
    MembershipType,
    MemberStatus,
    PaymentMethod,
    ReservationStatus,
    StaffStatus,
    TransactionStatus,
    TransactionType,
)

# Base class for all SQLAlchemy models
Base = declarative_base()

ZERO = Decimal("0.00")


def _enum_column_type(enum_cls) -> Enum:
    """Store enum *values* ("Active", "Credit Card") rather than member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=20,
    )


MONEY = Numeric(10, 2, asdecimal=True)


class Category(Base):
    """Categories table - book categorization."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    # RESTRICT is enforced by the database; the ORM must not null out children
    books = relationship("Book", back_populates="category", passive_deletes="all")


class Author(Base):
    """Authors table."""

    __tablename__ = "authors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    birth_date = Column(Date, nullable=True)
    nationality = Column(String(50), nullable=True)
    biography = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    book_links = relationship(
        "BookAuthor", back_populates="author", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("first_name", "last_name", "birth_date", name="unique_author"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Publisher(Base):
    """Publishers table."""

    __tablename__ = "publishers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    publisher_name = Column(String(100), nullable=False, unique=True)
    address = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True, unique=True)
    website = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    books = relationship("Book", back_populates="publisher", passive_deletes=True)


class Book(Base):
    """
    Books table - the catalog and its copy counts.

    ``available_copies`` is written only by the inventory ledger.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(20), nullable=True, unique=True)
    title = Column(String(255), nullable=False)
    publication_year = Column(Integer, nullable=True)
    edition = Column(String(50), nullable=True)
    pages = Column(Integer, nullable=True)
    language = Column(String(30), nullable=False, default="English")
    category_id = Column(
        Integer, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False
    )
    publisher_id = Column(
        Integer, ForeignKey("publishers.id", ondelete="SET NULL"), nullable=True
    )
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    location_shelf = Column(String(20), nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    category = relationship("Category", back_populates="books")
    publisher = relationship("Publisher", back_populates="books")
    author_links = relationship(
        "BookAuthor", back_populates="book", cascade="all, delete-orphan", passive_deletes=True
    )
    transactions = relationship("TransactionRecord", back_populates="book", passive_deletes="all")
    reservations = relationship(
        "ReservationRecord",
        back_populates="book",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_books_title", "title"),
        Index("idx_books_category", "category_id"),
        CheckConstraint("pages IS NULL OR pages > 0", name="chk_pages_positive"),
        CheckConstraint("total_copies >= 0", name="chk_total_copies_non_negative"),
        CheckConstraint("available_copies >= 0", name="chk_available_copies_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="chk_available_copies"),
    )


class BookAuthor(Base):
    """Book/author association with the author's role."""

    __tablename__ = "book_authors"

    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True)
    author_id = Column(Integer, ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True)
    author_role = Column(
        _enum_column_type(AuthorRole), nullable=False, default=AuthorRole.PRIMARY
    )

    book = relationship("Book", back_populates="author_links")
    author = relationship("Author", back_populates="book_links")


class Member(Base):
    """
    Members table - library patrons.

    ``fine_balance`` is written only by the fine engine.
    """

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    membership_number = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=True, unique=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    membership_type = Column(
        _enum_column_type(MembershipType), nullable=False, default=MembershipType.PUBLIC
    )
    membership_date = Column(Date, nullable=False, default=func.current_date())
    expiry_date = Column(Date, nullable=False)
    status = Column(_enum_column_type(MemberStatus), nullable=False, default=MemberStatus.ACTIVE)
    max_books_allowed = Column(Integer, nullable=False, default=5)
    fine_balance = Column(MONEY, nullable=False, default=ZERO)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    transactions = relationship(
        "TransactionRecord",
        back_populates="member",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    reservations = relationship(
        "ReservationRecord",
        back_populates="member",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    payments = relationship(
        "FinePayment", back_populates="member", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_members_status", "status"),
        CheckConstraint("max_books_allowed > 0", name="chk_max_books_positive"),
        CheckConstraint("fine_balance >= 0", name="chk_fine_balance_non_negative"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Staff(Base):
    """Staff table - library employees who process circulation."""

    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(20), nullable=True)
    position = Column(String(100), nullable=True)
    department = Column(String(100), nullable=True)
    hire_date = Column(Date, nullable=False)
    salary = Column(Numeric(12, 2, asdecimal=True), nullable=True)
    status = Column(_enum_column_type(StaffStatus), nullable=False, default=StaffStatus.ACTIVE)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("salary IS NULL OR salary >= 0", name="chk_salary"),)


class TransactionRecord(Base):
    """
    Transactions table - loans and their Return/Renew events.

    A Borrow row is the loan itself and carries the loan's status, due date
    and fine. Return and Renew rows are Completed audit entries that point at
    their loan through ``loan_id``.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="RESTRICT"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)
    loan_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True)
    transaction_type = Column(_enum_column_type(TransactionType), nullable=False)
    transaction_date = Column(DateTime, nullable=False, default=func.now())
    due_date = Column(Date, nullable=True)
    return_date = Column(Date, nullable=True)
    fine_amount = Column(MONEY, nullable=False, default=ZERO)
    renewal_count = Column(Integer, nullable=False, default=0)
    status = Column(
        _enum_column_type(TransactionStatus), nullable=False, default=TransactionStatus.ACTIVE
    )
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="transactions")
    book = relationship("Book", back_populates="transactions")
    staff = relationship("Staff")

    __table_args__ = (
        Index("idx_transactions_member", "member_id"),
        Index("idx_transactions_book", "book_id"),
        Index("idx_transactions_status", "status"),
        Index("idx_transactions_due_date", "due_date"),
        CheckConstraint("fine_amount >= 0", name="chk_fine_amount_non_negative"),
        CheckConstraint("renewal_count >= 0", name="chk_renewal_count_non_negative"),
        CheckConstraint(
            "return_date IS NULL OR return_date >= DATE(transaction_date)",
            name="chk_return_date",
        ),
    )


class ReservationRecord(Base):
    """
    Reservations table - the per-book waitlist.

    A Fulfilled reservation whose ``collected_at`` is empty is a hold: one
    copy of the book is set aside for the member until ``hold_expires_at``.
    """

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    reservation_date = Column(DateTime, nullable=False, default=func.now())
    expiry_date = Column(Date, nullable=False)
    status = Column(
        _enum_column_type(ReservationStatus), nullable=False, default=ReservationStatus.ACTIVE
    )
    priority_level = Column(Integer, nullable=False, default=1)
    fulfilled_at = Column(DateTime, nullable=True)
    hold_expires_at = Column(DateTime, nullable=True)
    collected_at = Column(DateTime, nullable=True)

    member = relationship("Member", back_populates="reservations")
    book = relationship("Book", back_populates="reservations")

    __table_args__ = (
        Index("idx_reservations_book", "book_id"),
        Index("idx_reservations_status", "status"),
        # At most one Active reservation per (member, book); closed ones may repeat
        Index(
            "uq_active_reservation",
            "member_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'Active'"),
            postgresql_where=text("status = 'Active'"),
        ),
        CheckConstraint("priority_level BETWEEN 1 AND 5", name="chk_priority_level"),
    )


class FinePayment(Base):
    """Fine payments table."""

    __tablename__ = "fine_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    transaction_id = Column(
        Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    staff_id = Column(Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)
    payment_amount = Column(MONEY, nullable=False)
    payment_date = Column(DateTime, nullable=False, default=func.now())
    payment_method = Column(_enum_column_type(PaymentMethod), nullable=False)
    receipt_number = Column(String(50), nullable=False, unique=True)

    member = relationship("Member", back_populates="payments")

    __table_args__ = (
        Index("idx_fine_payments_member", "member_id"),
        CheckConstraint("payment_amount > 0", name="chk_payment_amount_positive"),
    )
