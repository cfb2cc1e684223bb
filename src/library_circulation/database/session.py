"""
Database session management for the Library Circulation engine.

Each circulation operation is one unit of work: one session, one database
transaction, committed at the end or rolled back on any error. Sessions are
short-lived and never shared between threads.

SQLite notes:
- ``PRAGMA foreign_keys=ON`` is issued on every connection so that the
  ON DELETE actions declared in the schema are enforced.
- Every transaction starts with ``BEGIN IMMEDIATE``. Concurrent writers then
  queue on the database write lock (bounded by ``sqlite_busy_timeout``)
  instead of deadlocking when a reader tries to upgrade to a writer.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import RepositoryException
from .schema import Base

T = TypeVar("T")

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and sessions for the circulation engine.

    This class provides:
    - Engine creation with SQLite pragmas and immediate transactions
    - Session factory with explicit transaction control
    - Schema initialization for development and tests
    """

    def __init__(self, database_url: str | None = None, busy_timeout: float | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured SQLite file.
            busy_timeout: Seconds SQLite waits on a locked database. Defaults to config.
        """
        config = get_config()
        if database_url is None:
            db_path = config.database_path

            if not db_path.is_absolute():
                db_path = Path.cwd() / db_path

            db_path.parent.mkdir(exist_ok=True, parents=True)

            database_url = f"sqlite:///{db_path}"
            logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self.busy_timeout = busy_timeout if busy_timeout is not None else config.sqlite_busy_timeout
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.is_sqlite:
                in_memory = ":memory:" in self.database_url or self.database_url == "sqlite://"
                kwargs = {
                    "connect_args": {"check_same_thread": False, "timeout": self.busy_timeout},
                    "echo": False,
                }
                if in_memory:
                    # A single shared connection keeps the in-memory database alive
                    kwargs["poolclass"] = StaticPool
                self._engine = create_engine(self.database_url, **kwargs)
                self._install_sqlite_hooks(self._engine)
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @staticmethod
    def _install_sqlite_hooks(engine: Engine) -> None:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            # Let SQLAlchemy, not pysqlite, decide when transactions begin
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                # Keep objects usable after commit
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new database session. Callers own closing it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            book = session.get(Book, book_id)
        # Session is automatically committed or rolled back
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except Exception:
            logger.debug("Rolling back database transaction", exc_info=True)
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Initialize the database schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Verify the database connection is working."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


# Global database manager instance
_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of and forget the global manager (useful for testing)."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Get a new database session.

    Prefer using session_scope() for proper transaction management.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience context manager over the global database manager."""
    with get_db_manager().session_scope() as session:
        yield session


# SQLite messages for a lock held by another connection
CONTENTION_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def is_contention(error: OperationalError) -> bool:
    """Whether ``error`` is another writer holding the database, rather than a real fault."""
    message = str(error.orig if error.orig is not None else error).lower()
    return any(marker in message for marker in CONTENTION_MESSAGES)


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, translating database failures.

    Lock conflicts (``OperationalError``) propagate unchanged so that the
    engine can retry them.

    Raises:
        RepositoryException: If the commit fails for any other database reason
    """
    try:
        session.commit()
    except OperationalError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise RepositoryException(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating database failures.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Error message prefix

    Raises:
        RepositoryException: If the query fails for a reason other than a lock conflict
    """
    try:
        return query_func(session)
    except OperationalError:
        raise
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise RepositoryException(f"{error_msg}: Database query failed") from e
