"""
Member and staff repositories for the Library Circulation engine.

The member store answers one question the circulation engine asks on every
borrow: may this member take another book right now? A member may borrow
only when all of these hold:

- status is Active
- the membership has not expired
- the outstanding fine balance is below the configured cap
- fewer open loans than ``max_books_allowed``

``fine_balance`` is never written here; the fine engine owns it.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, model_validator
from sqlalchemy import func, select

from ..database.schema import Member as MemberDB
from ..database.schema import ReservationRecord as ReservationDB
from ..database.schema import Staff as StaffDB
from ..database.schema import TransactionRecord as TransactionDB
from ..errors import MemberIneligible
from ..models.enums import (
    OPEN_LOAN_STATUSES,
    MembershipType,
    MemberStatus,
    ReservationStatus,
    StaffStatus,
    TransactionType,
)
from ..models.member import Member as MemberModel
from ..models.member import Staff as StaffModel
from .repository import BaseRepository, NotFoundError, RepositoryException
from .session import safe_query


class MemberCreateSchema(BaseModel):
    """Schema for enrolling a member. New members owe nothing."""

    membership_number: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    membership_type: MembershipType = MembershipType.PUBLIC
    membership_date: date = Field(default_factory=date.today)
    expiry_date: date
    status: MemberStatus = MemberStatus.ACTIVE
    max_books_allowed: int = Field(default=5, gt=0)

    @model_validator(mode="after")
    def validate_dates(self) -> "MemberCreateSchema":
        if self.expiry_date < self.membership_date:
            raise ValueError("Expiry date cannot be before membership date")
        return self


class MemberUpdateSchema(BaseModel):
    """Schema for updating a member - fine balance is not updatable here."""

    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    membership_type: MembershipType | None = None
    expiry_date: date | None = None
    status: MemberStatus | None = None
    max_books_allowed: int | None = Field(None, gt=0)


class StaffCreateSchema(BaseModel):
    """Schema for registering a staff member."""

    employee_id: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)
    email: EmailStr
    phone: str | None = None
    position: str | None = None
    department: str | None = None
    hire_date: date = Field(default_factory=date.today)
    salary: Decimal | None = Field(None, ge=0)
    status: StaffStatus = StaffStatus.ACTIVE


class StaffUpdateSchema(BaseModel):
    position: str | None = None
    department: str | None = None
    salary: Decimal | None = Field(None, ge=0)
    status: StaffStatus | None = None


class MemberRepository(
    BaseRepository[MemberDB, MemberCreateSchema, MemberUpdateSchema, MemberModel]
):
    """
    Repository for member data access.

    Besides CRUD this answers the eligibility questions of the circulation
    engine and refuses to delete a member who still has books out.
    """

    @property
    def model_class(self):
        return MemberDB

    @property
    def response_schema(self):
        return MemberModel

    def get_by_membership_number(self, membership_number: str) -> MemberModel | None:
        member = safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB).where(MemberDB.membership_number == membership_number)
            ).scalar_one_or_none(),
            "Failed to get member by membership number",
        )
        return self._to_response_model(member) if member else None

    def get_for_update(self, member_id: int) -> MemberDB:
        """Load a member row for modification, raising ``NotFoundError`` if missing."""
        member = safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB).where(MemberDB.id == member_id).with_for_update()
            ).scalar_one_or_none(),
            "Failed to lock member",
        )
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    def open_loan_count(self, member_id: int) -> int:
        """Borrow transactions that are Active or Overdue."""
        count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(TransactionDB)
                .where(
                    TransactionDB.member_id == member_id,
                    TransactionDB.transaction_type == TransactionType.BORROW,
                    TransactionDB.status.in_(OPEN_LOAN_STATUSES),
                )
            ).scalar(),
            "Failed to count open loans",
        )
        return count or 0

    def eligibility_problems(
        self, member: MemberDB, today: date, fine_balance_cap: Decimal
    ) -> list[str]:
        """
        List every borrowing condition the member fails.

        An empty list means the member may borrow.
        """
        problems = []
        if member.status != MemberStatus.ACTIVE:
            problems.append(f"membership status is {MemberStatus(member.status).value}")
        if member.expiry_date < today:
            problems.append(f"membership expired on {member.expiry_date.isoformat()}")
        if member.fine_balance >= fine_balance_cap:
            problems.append(
                f"outstanding fines {member.fine_balance:.2f} reach the cap of "
                f"{fine_balance_cap:.2f}"
            )
        open_loans = self.open_loan_count(member.id)
        if open_loans >= member.max_books_allowed:
            problems.append(f"borrowing limit of {member.max_books_allowed} reached")
        return problems

    def check_eligibility(self, member: MemberDB, today: date, fine_balance_cap: Decimal) -> None:
        """
        Raises:
            MemberIneligible: Naming the first condition the member fails
        """
        problems = self.eligibility_problems(member, today, fine_balance_cap)
        if problems:
            raise MemberIneligible(
                f"Member {member.membership_number} may not borrow: {problems[0]}",
                member_id=member.id,
                reasons=problems,
            )

    def check_membership_current(self, member: MemberDB, today: date) -> None:
        """Status and expiry only, as required to place a reservation."""
        if member.status != MemberStatus.ACTIVE:
            raise MemberIneligible(
                f"Member {member.membership_number} is {MemberStatus(member.status).value}",
                member_id=member.id,
            )
        if member.expiry_date < today:
            raise MemberIneligible(
                f"Membership {member.membership_number} expired on "
                f"{member.expiry_date.isoformat()}",
                member_id=member.id,
            )

    def uncollected_hold_count(self, member_id: int) -> int:
        """Fulfilled reservations whose copy is still set aside for the member."""
        count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(ReservationDB)
                .where(
                    ReservationDB.member_id == member_id,
                    ReservationDB.status == ReservationStatus.FULFILLED,
                    ReservationDB.collected_at.is_(None),
                )
            ).scalar(),
            "Failed to count uncollected holds",
        )
        return count or 0

    def delete(self, id: int) -> bool:
        """
        Delete a member and, by cascade, their circulation history.

        A hold keeps a copy off the shelf, so deleting its row would lose the
        copy; holds must be cancelled through the engine first.

        Raises:
            RepositoryException: If the member still has books out or on hold
        """
        open_loans = self.open_loan_count(id)
        if open_loans:
            raise RepositoryException(
                f"Delete of Member {id} refused: {open_loans} loan(s) still open"
            )
        holds = self.uncollected_hold_count(id)
        if holds:
            raise RepositoryException(
                f"Delete of Member {id} refused: {holds} uncollected hold(s)"
            )
        return super().delete(id)


class StaffRepository(
    BaseRepository[StaffDB, StaffCreateSchema, StaffUpdateSchema, StaffModel]
):
    """Repository for staff. Transactions they processed survive their removal."""

    @property
    def model_class(self):
        return StaffDB

    @property
    def response_schema(self):
        return StaffModel

    def get_by_employee_id(self, employee_id: str) -> StaffModel | None:
        staff = safe_query(
            self.session,
            lambda s: s.execute(
                select(StaffDB).where(StaffDB.employee_id == employee_id)
            ).scalar_one_or_none(),
            "Failed to get staff by employee ID",
        )
        return self._to_response_model(staff) if staff else None
