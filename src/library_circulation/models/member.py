"""
Member and staff models for the Library Circulation engine.

A member's borrowing rights depend on their status, membership expiry,
outstanding fines and how many loans they already have open.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .enums import MembershipType, MemberStatus, StaffStatus


class Member(BaseModel):
    """
    Represents a library member.

    ``fine_balance`` is the outstanding total of assessed late fees minus
    payments; it is changed only by the fine engine.
    """

    id: int = Field(..., description="Member identifier")

    membership_number: str = Field(
        ...,
        description="Library card number",
        min_length=1,
        max_length=20,
        examples=["MEM001", "MEM002"],
    )

    first_name: str = Field(..., min_length=1, max_length=50, examples=["John"])
    last_name: str = Field(..., min_length=1, max_length=50, examples=["Doe"])

    email: EmailStr | None = Field(None, examples=["john.doe@email.com"])

    phone: str | None = Field(
        None,
        pattern=r"^\+?[\d\s\-\(\)]+$",
        examples=["+1-555-1001"],
    )

    address: str | None = None
    date_of_birth: date | None = None

    membership_type: MembershipType = Field(default=MembershipType.PUBLIC)
    membership_date: date = Field(..., description="Date the member joined")
    expiry_date: date = Field(..., description="Date the membership lapses")

    status: MemberStatus = Field(default=MemberStatus.ACTIVE)

    max_books_allowed: int = Field(
        default=5,
        description="Maximum number of open loans",
        gt=0,
        examples=[5, 10],
    )

    fine_balance: Decimal = Field(
        default=Decimal("0.00"),
        description="Outstanding unpaid fines",
        ge=0,
        decimal_places=2,
    )

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "Member":
        """Membership must not expire before it starts."""
        if self.expiry_date < self.membership_date:
            raise ValueError("Expiry date cannot be before membership date")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def is_membership_current(self, today: date | None = None) -> bool:
        """Active status and not past the expiry date."""
        today = today or date.today()
        return self.status == MemberStatus.ACTIVE and self.expiry_date >= today

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "membership_number": "MEM001",
                "first_name": "John",
                "last_name": "Doe",
                "email": "john.doe@email.com",
                "membership_type": "Public",
                "membership_date": "2024-01-01",
                "expiry_date": "2024-12-31",
                "status": "Active",
                "max_books_allowed": 5,
                "fine_balance": "0.00",
            }
        },
    )


class Staff(BaseModel):
    """A library employee who can process circulation requests."""

    id: int
    employee_id: str = Field(..., min_length=1, max_length=20, examples=["LIB001"])
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)
    email: EmailStr
    phone: str | None = None
    position: str | None = None
    department: str | None = None
    hire_date: date
    salary: Decimal | None = Field(None, ge=0)
    status: StaffStatus = StaffStatus.ACTIVE

    model_config = ConfigDict(from_attributes=True)
