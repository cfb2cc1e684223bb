"""
Catalog models for the Library Circulation engine.

These models represent the catalog side of the store:
- Category, Author, Publisher: descriptive records
- Book: a title with its physical copy counts

Copy counts are read-only here. Only the inventory ledger changes them.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import AuthorRole


class Category(BaseModel):
    """A book category."""

    id: int
    category_name: str = Field(..., min_length=1, max_length=100, examples=["Fiction"])
    description: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Author(BaseModel):
    """A book author."""

    id: int
    first_name: str = Field(..., min_length=1, max_length=50, examples=["George"])
    last_name: str = Field(..., min_length=1, max_length=50, examples=["Orwell"])
    birth_date: date | None = None
    nationality: str | None = Field(None, max_length=50)
    biography: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Publisher(BaseModel):
    """A publisher."""

    id: int
    publisher_name: str = Field(..., min_length=1, max_length=100)
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class BookAuthorLink(BaseModel):
    """Author credited on a book, with their role."""

    author_id: int
    author_role: AuthorRole = AuthorRole.PRIMARY

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Book(BaseModel):
    """
    Represents a catalog title and its physical copies.

    ``available_copies`` counts copies on the open shelf: copies out on loan
    and copies set aside on the hold shelf are excluded.
    """

    id: int = Field(..., description="Book identifier")

    isbn: str | None = Field(
        None,
        description="ISBN (unique when present)",
        max_length=20,
        examples=["978-0-452-28423-4"],
    )

    title: str = Field(..., min_length=1, max_length=255, examples=["1984"])
    publication_year: int | None = Field(None, examples=[1949])
    edition: str | None = Field(None, max_length=50)
    pages: int | None = Field(None, gt=0)
    language: str = Field(default="English", max_length=30)
    category_id: int
    publisher_id: int | None = None

    total_copies: int = Field(..., ge=0, description="Physical copies owned")
    available_copies: int = Field(..., ge=0, description="Copies on the open shelf")

    location_shelf: str | None = Field(None, max_length=20, examples=["A1-001"])
    authors: list[BookAuthorLink] = Field(default_factory=list, validation_alias="author_links")

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        """Ensure available copies never exceed total copies."""
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        """Check if at least one copy can be borrowed."""
        return self.available_copies > 0

    @property
    def copies_out(self) -> int:
        """Copies on loan or set aside for a hold."""
        return self.total_copies - self.available_copies

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "isbn": "978-0-452-28423-4",
                "title": "1984",
                "publication_year": 1949,
                "category_id": 1,
                "publisher_id": 1,
                "total_copies": 3,
                "available_copies": 2,
                "location_shelf": "A1-001",
            }
        },
    )
