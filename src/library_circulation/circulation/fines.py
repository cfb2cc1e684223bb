"""
Fine engine: late fees and payments.

A member's ``fine_balance`` always equals the fines assessed on their loans
minus the payments they have made. Both sides go through this module:
``assess_late_fee`` adds to a loan and to the balance, ``pay_fine`` records a
payment and takes it off the balance.
"""

import logging
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database.member_repository import MemberRepository
from ..database.schema import ZERO
from ..database.schema import FinePayment as FinePaymentDB
from ..database.schema import TransactionRecord as TransactionDB
from ..database.session import safe_query
from ..errors import ConsistencyFault, InvalidAmount
from ..models.enums import PaymentMethod, TransactionType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize to cents. Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def late_fee(days_late: int, per_day: Decimal, cap: Decimal) -> Decimal:
    """``min(days_late * per_day, cap)``, never negative."""
    if days_late <= 0:
        return ZERO
    return to_money(min(per_day * days_late, cap))


def generate_receipt_number(now: datetime) -> str:
    """Receipt numbers look like ``RCP-20240115-1A2B3C4D5E6F``."""
    return f"RCP-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:12].upper()}"


class FineEngine:
    """Fine assessment and reconciliation for one unit of work."""

    def __init__(self, session: Session, config: EngineConfig, now: datetime):
        self.session = session
        self.config = config
        self.now = now
        self.members = MemberRepository(session)

    def assess_late_fee(self, loan: TransactionDB) -> Decimal:
        """
        Charge the late fee for a returned loan.

        The fee is added to the loan's ``fine_amount`` and to the member's
        balance. Returns the amount charged, zero when returned in time.
        """
        if loan.return_date is None or loan.due_date is None:
            return ZERO
        days_late = (loan.return_date - loan.due_date).days
        fee = late_fee(days_late, self.config.fine_per_day, self.config.max_fine_per_loan)
        if fee == ZERO:
            return ZERO

        member = self.members.get_for_update(loan.member_id)
        loan.fine_amount = to_money(loan.fine_amount + fee)
        member.fine_balance = to_money(member.fine_balance + fee)
        self.session.flush()
        logger.info(
            "Assessed late fee %s on loan %s (%s days late) for member %s",
            fee,
            loan.id,
            days_late,
            member.id,
        )
        return fee

    def pay_fine(
        self,
        member_id: int,
        amount: Decimal,
        method: PaymentMethod,
        transaction_id: int | None = None,
        staff_id: int | None = None,
        receipt_number: str | None = None,
    ) -> FinePaymentDB:
        """
        Record a payment against the member's balance.

        Raises:
            NotFoundError: If the member does not exist
            InvalidAmount: If the amount is not positive, exceeds the balance,
                or the transaction belongs to someone else
        """
        amount = to_money(amount)
        member = self.members.get_for_update(member_id)

        if amount <= ZERO:
            raise InvalidAmount(
                f"Payment amount must be positive, got {amount}", member_id=member_id
            )
        if amount > member.fine_balance:
            raise InvalidAmount(
                f"Payment of {amount} exceeds outstanding balance of {member.fine_balance:.2f}",
                member_id=member_id,
            )
        if transaction_id is not None:
            transaction = self.session.get(TransactionDB, transaction_id)
            if transaction is None or transaction.member_id != member_id:
                raise InvalidAmount(
                    f"Transaction {transaction_id} does not belong to member {member_id}",
                    member_id=member_id,
                    transaction_id=transaction_id,
                )

        payment = FinePaymentDB(
            member_id=member_id,
            transaction_id=transaction_id,
            staff_id=staff_id,
            payment_amount=amount,
            payment_date=self.now,
            payment_method=method,
            receipt_number=receipt_number or generate_receipt_number(self.now),
        )
        self.session.add(payment)
        member.fine_balance = to_money(member.fine_balance - amount)
        self.session.flush()
        logger.info(
            "Member %s paid %s (%s), balance now %s",
            member_id,
            amount,
            payment.receipt_number,
            member.fine_balance,
        )
        return payment

    def verify_balance(self, member_id: int) -> Decimal:
        """
        Recompute the member's balance from fines and payments.

        Raises:
            ConsistencyFault: If it disagrees with the stored balance
        """
        member = self.members.get_for_update(member_id)
        assessed = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.coalesce(func.sum(TransactionDB.fine_amount), 0)).where(
                    TransactionDB.member_id == member_id,
                    TransactionDB.transaction_type == TransactionType.BORROW,
                )
            ).scalar(),
            "Failed to total assessed fines",
        )
        paid = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.coalesce(func.sum(FinePaymentDB.payment_amount), 0)).where(
                    FinePaymentDB.member_id == member_id
                )
            ).scalar(),
            "Failed to total payments",
        )
        expected = to_money(assessed) - to_money(paid)
        if to_money(member.fine_balance) != expected:
            raise ConsistencyFault(
                f"Member {member_id} balance is {member.fine_balance:.2f}, "
                f"fines less payments come to {expected:.2f}",
                member_id=member_id,
                stored=str(member.fine_balance),
                expected=str(expected),
            )
        return expected
