"""
Loyalty points ledger.

A program's `points` column is the running balance of its transactions
(credits minus debits). Every change to it goes through record_transaction
so both are flushed in the same database transaction; callers commit.
"""
import logging
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.models import Appointment, CustomerLoyalty, LoyaltyTransaction, Referral

logger = logging.getLogger(__name__)


class InsufficientPointsError(ValueError):
    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient points: balance is {available}, requested {requested}")


def get_active_program(db: Session, customer_id: int) -> Optional[CustomerLoyalty]:
    return db.query(CustomerLoyalty).filter(
        CustomerLoyalty.customer_id == customer_id,
        CustomerLoyalty.status == "ACTIVE"
    ).first()


def get_ledger_totals(db: Session, loyalty_id: int) -> dict:
    """Sum of credit and debit points of a program"""
    credits, debits = db.query(
        func.coalesce(func.sum(case((LoyaltyTransaction.type == "credit", LoyaltyTransaction.points), else_=0)), 0),
        func.coalesce(func.sum(case((LoyaltyTransaction.type == "debit", LoyaltyTransaction.points), else_=0)), 0),
    ).filter(LoyaltyTransaction.loyalty_id == loyalty_id).one()
    return {"credit": int(credits), "debit": int(debits), "balance": int(credits) - int(debits)}


def record_transaction(
    db: Session,
    loyalty: CustomerLoyalty,
    points: int,
    type: str,
    source: str,
    description: str,
    reference_id: Optional[str] = None
) -> LoyaltyTransaction:
    """
    Add a ledger entry and apply it to the program balance.

    Raises:
        InsufficientPointsError: when a debit exceeds the current balance
    """
    if points <= 0:
        raise ValueError("Transaction points must be positive")

    current = loyalty.points or 0
    if type == "debit":
        if points > current:
            raise InsufficientPointsError(current, points)
        loyalty.points = current - points
    elif type == "credit":
        loyalty.points = current + points
    else:
        raise ValueError(f"Unknown transaction type: {type}")

    transaction = LoyaltyTransaction(
        loyalty_id=loyalty.id,
        points=points,
        type=type,
        source=source,
        description=description,
        reference_id=reference_id
    )
    db.add(transaction)
    db.flush()
    logger.info(f"Loyalty {loyalty.id}: {type} {points} points ({source}), balance {loyalty.points}")
    return transaction


def _already_recorded(db: Session, loyalty_id: int, reference_id: str) -> bool:
    return db.query(LoyaltyTransaction.id).filter(
        LoyaltyTransaction.loyalty_id == loyalty_id,
        LoyaltyTransaction.reference_id == reference_id,
        LoyaltyTransaction.type == "credit"
    ).first() is not None


def points_for_amount(amount_cents: int) -> int:
    return (amount_cents // 100) * settings.LOYALTY_POINTS_PER_CURRENCY_UNIT


def credit_completed_appointment(db: Session, appointment: Appointment) -> Optional[LoyaltyTransaction]:
    """Credit purchase points to the customer's active program once per appointment"""
    loyalty = get_active_program(db, appointment.customer_id)
    if loyalty is None:
        return None

    reference_id = f"appointment:{appointment.id}"
    if _already_recorded(db, loyalty.id, reference_id):
        return None

    price = appointment.service.price
    loyalty.current_value = (loyalty.current_value or 0) + price
    points = points_for_amount(price)
    if points <= 0:
        return None

    return record_transaction(
        db,
        loyalty,
        points=points,
        type="credit",
        source="purchase",
        description=f"Appointment #{appointment.id}: {appointment.service.name}",
        reference_id=reference_id
    )


def credit_referral_bonus(db: Session, referral: Referral) -> Optional[LoyaltyTransaction]:
    """Credit the referrer once when a referral converts"""
    if settings.REFERRAL_BONUS_POINTS <= 0:
        return None

    loyalty = get_active_program(db, referral.customer_id)
    if loyalty is None:
        return None

    reference_id = f"referral:{referral.id}"
    if _already_recorded(db, loyalty.id, reference_id):
        return None

    return record_transaction(
        db,
        loyalty,
        points=settings.REFERRAL_BONUS_POINTS,
        type="credit",
        source="referral",
        description=f"Referral of {referral.referred_name} converted",
        reference_id=reference_id
    )
