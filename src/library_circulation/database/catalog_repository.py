"""
Catalog repositories for the Library Circulation engine.

This module provides data access for the descriptive side of the catalog:

1. **Categories, authors, publishers**: plain CRUD over the base repository
2. **Books**: creation with author links, ISBN lookup, title search
3. **Row locking**: ``get_for_update`` is how the inventory ledger reads a
   book it is about to change

A newly catalogued book starts with every copy on the shelf. After that the
copy counts are changed only through the inventory ledger, so the update
schema deliberately has no copy fields.
"""

from datetime import date

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..database.schema import Author as AuthorDB
from ..database.schema import Book as BookDB
from ..database.schema import BookAuthor as BookAuthorDB
from ..database.schema import Category as CategoryDB
from ..database.schema import Publisher as PublisherDB
from ..models.catalog import Author as AuthorModel
from ..models.catalog import Book as BookModel
from ..models.catalog import BookAuthorLink
from ..models.catalog import Category as CategoryModel
from ..models.catalog import Publisher as PublisherModel
from ..models.enums import AuthorRole
from .repository import BaseRepository, DuplicateError, NotFoundError
from .session import safe_commit, safe_query


class CategoryCreateSchema(BaseModel):
    """Schema for creating a category."""

    category_name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None


class CategoryUpdateSchema(BaseModel):
    category_name: str | None = None
    description: str | None = None


class AuthorCreateSchema(BaseModel):
    """Schema for creating an author."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    birth_date: date | None = None
    nationality: str | None = None
    biography: str | None = None


class AuthorUpdateSchema(BaseModel):
    nationality: str | None = None
    biography: str | None = None


class PublisherCreateSchema(BaseModel):
    """Schema for creating a publisher."""

    publisher_name: str = Field(..., min_length=1, max_length=100)
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None


class PublisherUpdateSchema(BaseModel):
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None


class BookCreateSchema(BaseModel):
    """Schema for cataloguing a new title. All copies start on the shelf."""

    isbn: str | None = Field(None, max_length=20)
    title: str = Field(..., min_length=1, max_length=255)
    publication_year: int | None = None
    edition: str | None = None
    pages: int | None = Field(None, gt=0)
    language: str = "English"
    category_id: int
    publisher_id: int | None = None
    total_copies: int = Field(default=1, ge=0)
    location_shelf: str | None = None
    authors: list[BookAuthorLink] = Field(default_factory=list)


class BookUpdateSchema(BaseModel):
    """Descriptive fields only; copy counts belong to the inventory ledger."""

    title: str | None = None
    publication_year: int | None = None
    edition: str | None = None
    pages: int | None = Field(None, gt=0)
    language: str | None = None
    category_id: int | None = None
    publisher_id: int | None = None
    location_shelf: str | None = None


class CategoryRepository(
    BaseRepository[CategoryDB, CategoryCreateSchema, CategoryUpdateSchema, CategoryModel]
):
    """Repository for categories. Deleting a category that still has books is refused."""

    @property
    def model_class(self):
        return CategoryDB

    @property
    def response_schema(self):
        return CategoryModel

    def get_by_name(self, name: str) -> CategoryModel | None:
        category = safe_query(
            self.session,
            lambda s: s.execute(
                select(CategoryDB).where(CategoryDB.category_name == name)
            ).scalar_one_or_none(),
            "Failed to get category by name",
        )
        return self._to_response_model(category) if category else None


class AuthorRepository(
    BaseRepository[AuthorDB, AuthorCreateSchema, AuthorUpdateSchema, AuthorModel]
):
    """Repository for authors."""

    @property
    def model_class(self):
        return AuthorDB

    @property
    def response_schema(self):
        return AuthorModel


class PublisherRepository(
    BaseRepository[PublisherDB, PublisherCreateSchema, PublisherUpdateSchema, PublisherModel]
):
    """Repository for publishers. Deleting one leaves its books without a publisher."""

    @property
    def model_class(self):
        return PublisherDB

    @property
    def response_schema(self):
        return PublisherModel


class BookRepository(BaseRepository[BookDB, BookCreateSchema, BookUpdateSchema, BookModel]):
    """
    Repository for books.

    Reads return ``Book`` models with their author links. Writes through
    this repository never touch ``available_copies`` after creation.
    """

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    def create(self, data: BookCreateSchema) -> BookModel:
        """
        Catalogue a new title with its authors.

        Raises:
            NotFoundError: If the category or an author does not exist
            DuplicateError: If the ISBN is already catalogued
        """
        if self.session.get(CategoryDB, data.category_id) is None:
            raise NotFoundError(f"Category {data.category_id} not found")
        for link in data.authors:
            if self.session.get(AuthorDB, link.author_id) is None:
                raise NotFoundError(f"Author {link.author_id} not found")

        values = data.model_dump(exclude={"authors"})
        book = BookDB(**values, available_copies=data.total_copies)
        book.author_links = [
            BookAuthorDB(author_id=link.author_id, author_role=AuthorRole(link.author_role))
            for link in data.authors
        ]

        try:
            self.session.add(book)
            self.session.flush()
            safe_commit(self.session, "create Book")
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(f"Book with ISBN {data.isbn} already exists") from e

        self.session.refresh(book)
        return self._to_response_model(book)

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        """Get a book by its ISBN."""
        book = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB).options(selectinload(BookDB.author_links)).where(BookDB.isbn == isbn)
            ).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )
        return self._to_response_model(book) if book else None

    def search_by_title(self, fragment: str, limit: int = 20) -> list[BookModel]:
        """Case-insensitive substring match on the title."""
        books = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB)
                .options(selectinload(BookDB.author_links))
                .where(BookDB.title.ilike(f"%{fragment}%"))
                .order_by(BookDB.title)
                .limit(limit)
            )
            .scalars()
            .all(),
            "Failed to search books",
        )
        return [self._to_response_model(book) for book in books]

    def get_for_update(self, book_id: int) -> BookDB:
        """
        Load a book row for modification.

        The row is selected ``FOR UPDATE`` where the backend supports it; on
        SQLite the enclosing ``BEGIN IMMEDIATE`` already holds the write lock.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB).where(BookDB.id == book_id).with_for_update()
            ).scalar_one_or_none(),
            "Failed to lock book",
        )
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return book
