"""
Database package for the Library Circulation engine.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- Repositories for the catalog, members and circulation read side

The database layer is where the engine's invariants are anchored:
1. Unique and check constraints reject rows no engine path should produce
2. ON DELETE actions keep references valid when records are removed
3. One session per unit of work gives each operation all-or-nothing commits
"""

from .catalog_repository import (
    AuthorRepository,
    BookRepository,
    CategoryRepository,
    PublisherRepository,
)
from .circulation_repository import CirculationRepository
from .member_repository import MemberRepository, StaffRepository
from .repository import (
    BaseRepository,
    DuplicateError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    RepositoryException,
)
from .schema import (
    Author,
    Base,
    Book,
    BookAuthor,
    Category,
    FinePayment,
    Member,
    Publisher,
    ReservationRecord,
    Staff,
    TransactionRecord,
)
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)

__all__ = [
    "Author",
    "AuthorRepository",
    "Base",
    "BaseRepository",
    "Book",
    "BookAuthor",
    "BookRepository",
    "Category",
    "CategoryRepository",
    "CirculationRepository",
    "DatabaseManager",
    "DuplicateError",
    "FinePayment",
    "Member",
    "MemberRepository",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "Publisher",
    "PublisherRepository",
    "RepositoryException",
    "ReservationRecord",
    "Staff",
    "StaffRepository",
    "TransactionRecord",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
