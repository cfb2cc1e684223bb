"""
Repository pattern implementation for the Library Circulation engine.

Repositories give the stores (catalog, members, read projections) one data
access layer: they take a session, run SQLAlchemy queries and hand back
Pydantic models. The base repository provides the common CRUD operations;
specialized repositories add domain-specific queries.

Catalog and member maintenance commit through the repository. Circulation
components never do; the engine owns their unit of work.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DuplicateError, NotFoundError, RepositoryException
from .schema import Base
from .session import safe_commit, safe_query

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

__all__ = [
    "BaseRepository",
    "DuplicateError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
]


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(
    ABC, Generic[ModelType, CreateSchemaType, UpdateSchemaType, ResponseSchemaType]
):
    """
    Abstract base repository providing common CRUD operations.

    All reads go through ``safe_query`` and all writes through
    ``safe_commit`` so that callers see ``RepositoryException`` subclasses
    rather than raw SQLAlchemy errors.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    @property
    def entity_name(self) -> str:
        return self.model_class.__name__

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db_obj(self, id: int) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == id)
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.entity_name} by ID",
        )

    def get_by_id(self, id: int) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_db_obj(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def require(self, id: int) -> ModelType:
        """Get the database row or raise ``NotFoundError``."""
        db_obj = self._get_db_obj(id)
        if db_obj is None:
            raise NotFoundError(f"{self.entity_name} {id} not found")
        return db_obj

    def get_all(
        self,
        pagination: PaginationParams | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
    ) -> list[ResponseSchemaType] | PaginatedResponse[ResponseSchemaType]:
        """
        Get all entities with optional pagination and sorting.

        Returns:
            List of entities, or a paginated response when pagination is given
        """
        query = select(self.model_class)

        if order_by and hasattr(self.model_class, order_by):
            order_field = getattr(self.model_class, order_by)
            query = query.order_by(desc(order_field) if order_desc else asc(order_field))

        if pagination:
            pagination.validate_params()

            count_query = select(func.count()).select_from(self.model_class)
            total = (
                safe_query(
                    self.session,
                    lambda s: s.execute(count_query).scalar(),
                    "Failed to get total count",
                )
                or 0
            )

            query = query.offset(pagination.offset).limit(pagination.page_size)
            results = safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to get paginated results",
            )

            return PaginatedResponse(
                items=[self._to_response_model(item) for item in results],
                total=total,
                page=pagination.page,
                page_size=pagination.page_size,
                total_pages=(total + pagination.page_size - 1) // pagination.page_size,
                has_next=pagination.page * pagination.page_size < total,
                has_previous=pagination.page > 1,
            )

        results = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get all results"
        )
        return [self._to_response_model(item) for item in results]

    def create(self, data: CreateSchemaType) -> ResponseSchemaType:
        """
        Create new entity.

        Raises:
            DuplicateError: If a unique constraint is violated
            RepositoryException: On other database errors
        """
        try:
            db_obj = self.model_class(**data.model_dump())
            self.session.add(db_obj)
            self.session.flush()
            safe_commit(self.session, f"create {self.entity_name}")
            self.session.refresh(db_obj)
            return self._to_response_model(db_obj)
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(f"{self.entity_name} already exists: {e.orig}") from e

    def update(self, id: int, data: UpdateSchemaType) -> ResponseSchemaType | None:
        """
        Update existing entity.

        Returns:
            Updated entity or None if not found
        """
        db_obj = self._get_db_obj(id)
        if db_obj is None:
            return None

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(db_obj, field, value)

        try:
            self.session.flush()
            safe_commit(self.session, f"update {self.entity_name}")
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(f"Update of {self.entity_name} {id} conflicts: {e.orig}") from e
        self.session.refresh(db_obj)
        return self._to_response_model(db_obj)

    def delete(self, id: int) -> bool:
        """
        Delete entity by ID.

        Returns:
            True if deleted, False if not found

        Raises:
            RepositoryException: If the database refuses the delete (RESTRICT)
        """
        db_obj = self._get_db_obj(id)
        if db_obj is None:
            return False

        try:
            self.session.delete(db_obj)
            self.session.flush()
            safe_commit(self.session, f"delete {self.entity_name}")
            return True
        except OperationalError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryException(
                f"Delete of {self.entity_name} {id} refused: {getattr(e, 'orig', e)}"
            ) from e

    def exists(self, id: int) -> bool:
        """Check if entity exists by ID."""
        query = select(func.count()).select_from(self.model_class).where(self.model_class.id == id)
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check existence"
        )
        return count > 0
