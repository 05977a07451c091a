from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from typing import Optional
from datetime import datetime
import logging
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import (
    Customer, CustomerLoyalty, LoyaltyTransaction, Reward, RewardRedemption, User
)
from app.schemas.schemas import (
    LoyaltyCreate, LoyaltyUpdate, LoyaltyResponse,
    LoyaltyTransactionCreate, LoyaltyTransactionResponse,
    RewardCreate, RewardUpdate, RewardResponse,
    RedemptionCreate, RedemptionUpdate, RedemptionResponse
)
from app.services.loyalty_service import InsufficientPointsError, get_ledger_totals, record_transaction
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()

REDEMPTION_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "expired"},
    "confirmed": set(),
    "cancelled": set(),
    "expired": set(),
}


def _get_customer(db: Session, customer_id: int, user: User) -> Customer:
    customer = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.user_id == user.id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def _get_program(db: Session, customer_id: int, loyalty_id: int, user: User) -> CustomerLoyalty:
    _get_customer(db, customer_id, user)
    loyalty = db.query(CustomerLoyalty).filter(
        CustomerLoyalty.id == loyalty_id,
        CustomerLoyalty.customer_id == customer_id,
        CustomerLoyalty.user_id == user.id
    ).first()
    if not loyalty:
        raise HTTPException(status_code=404, detail="Loyalty program not found")
    return loyalty


def _get_reward(db: Session, loyalty: CustomerLoyalty, reward_id: int) -> Reward:
    reward = db.query(Reward).filter(
        Reward.id == reward_id,
        Reward.loyalty_id == loyalty.id
    ).first()
    if not reward:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


def _has_other_active(db: Session, customer_id: int, exclude_id: Optional[int] = None) -> bool:
    query = db.query(CustomerLoyalty.id).filter(
        CustomerLoyalty.customer_id == customer_id,
        CustomerLoyalty.status == "ACTIVE"
    )
    if exclude_id is not None:
        query = query.filter(CustomerLoyalty.id != exclude_id)
    return query.first() is not None


def _open_redemptions(db: Session, reward_id: int) -> int:
    return db.query(RewardRedemption).filter(
        RewardRedemption.reward_id == reward_id,
        RewardRedemption.status.in_(["pending", "confirmed"])
    ).count()


def _status_counts(db: Session, column, *filters) -> dict:
    return dict(db.query(column, func.count()).filter(*filters).group_by(column).all())


# ==================== PROGRAMS ====================

@router.get("/{customer_id}/loyalty")
def list_loyalty_programs(
    customer_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    level: Optional[str] = None,
    min_points: Optional[int] = Query(None, ge=0),
    max_points: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _get_customer(db, customer_id, current_user)

    query = db.query(CustomerLoyalty).filter(
        CustomerLoyalty.customer_id == customer_id,
        CustomerLoyalty.user_id == current_user.id
    )
    if status_filter:
        query = query.filter(CustomerLoyalty.status == status_filter)
    if level:
        query = query.filter(CustomerLoyalty.level == level)
    if min_points is not None:
        query = query.filter(CustomerLoyalty.points >= min_points)
    if max_points is not None:
        query = query.filter(CustomerLoyalty.points <= max_points)

    total = query.count()
    programs = query.order_by(CustomerLoyalty.created_at.desc(), CustomerLoyalty.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    active_points = db.query(func.coalesce(func.sum(CustomerLoyalty.points), 0)).filter(
        CustomerLoyalty.customer_id == customer_id,
        CustomerLoyalty.status == "ACTIVE"
    ).scalar()

    return {
        "items": [LoyaltyResponse.model_validate(p) for p in programs],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "active_points": int(active_points or 0)
    }


@router.post("/{customer_id}/loyalty", response_model=LoyaltyResponse, status_code=status.HTTP_201_CREATED)
def create_loyalty_program(
    customer_id: int,
    data: LoyaltyCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = _get_customer(db, customer_id, current_user)

    if data.status == "ACTIVE" and _has_other_active(db, customer.id):
        raise HTTPException(status_code=400, detail="Customer already has an active loyalty program")

    loyalty = CustomerLoyalty(
        user_id=current_user.id,
        customer_id=customer.id,
        points=0,
        **data.model_dump(exclude={"points"})
    )
    db.add(loyalty)
    db.flush()

    # An opening balance is recorded in the ledger like any other credit
    if data.points > 0:
        record_transaction(
            db,
            loyalty,
            points=data.points,
            type="credit",
            source="bonus",
            description="Initial balance"
        )

    db.commit()
    db.refresh(loyalty)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="created",
        entity_type="loyalty",
        entity_id=loyalty.id,
        description=f"Created {loyalty.level} loyalty program for {customer.name}",
        request=request
    )

    return loyalty


@router.get("/{customer_id}/loyalty/{loyalty_id}", response_model=LoyaltyResponse)
def get_loyalty_program(
    customer_id: int,
    loyalty_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_program(db, customer_id, loyalty_id, current_user)


@router.put("/{customer_id}/loyalty/{loyalty_id}", response_model=LoyaltyResponse)
def update_loyalty_program(
    customer_id: int,
    loyalty_id: int,
    data: LoyaltyUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("status") == "ACTIVE" and _has_other_active(db, customer_id, exclude_id=loyalty.id):
        raise HTTPException(status_code=400, detail="Customer already has an active loyalty program")

    start = update_data.get("start_date", loyalty.start_date)
    end = update_data.get("end_date", loyalty.end_date)
    if end <= start:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")

    for field, value in update_data.items():
        setattr(loyalty, field, value)

    db.commit()
    db.refresh(loyalty)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="updated",
        entity_type="loyalty",
        entity_id=loyalty.id,
        description=f"Updated loyalty program #{loyalty.id}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return loyalty


@router.delete("/{customer_id}/loyalty/{loyalty_id}")
def delete_loyalty_program(
    customer_id: int,
    loyalty_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)

    has_transactions = db.query(LoyaltyTransaction.id).filter(LoyaltyTransaction.loyalty_id == loyalty.id).first()
    if has_transactions:
        raise HTTPException(status_code=400, detail="Cannot delete a loyalty program that has transactions")

    db.delete(loyalty)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="loyalty",
        entity_id=loyalty_id,
        description=f"Deleted loyalty program #{loyalty_id}",
        request=request
    )

    return {"message": "Loyalty program deleted successfully"}


# ==================== TRANSACTIONS ====================

@router.get("/{customer_id}/loyalty/{loyalty_id}/transactions")
def list_loyalty_transactions(
    customer_id: int,
    loyalty_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    type: Optional[str] = None,
    source: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_points: Optional[int] = Query(None, ge=0),
    max_points: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)

    query = db.query(LoyaltyTransaction).filter(LoyaltyTransaction.loyalty_id == loyalty.id)
    if type:
        query = query.filter(LoyaltyTransaction.type == type)
    if source:
        query = query.filter(LoyaltyTransaction.source == source)
    if start_date:
        query = query.filter(LoyaltyTransaction.created_at >= start_date)
    if end_date:
        query = query.filter(LoyaltyTransaction.created_at <= end_date)
    if min_points is not None:
        query = query.filter(LoyaltyTransaction.points >= min_points)
    if max_points is not None:
        query = query.filter(LoyaltyTransaction.points <= max_points)

    total = query.count()
    transactions = query.order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    totals = get_ledger_totals(db, loyalty.id)

    return {
        "items": [LoyaltyTransactionResponse.model_validate(t) for t in transactions],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "balance": totals["balance"],
        "totals": {"credit": totals["credit"], "debit": totals["debit"]}
    }


@router.post(
    "/{customer_id}/loyalty/{loyalty_id}/transactions",
    response_model=LoyaltyTransactionResponse,
    status_code=status.HTTP_201_CREATED
)
def create_loyalty_transaction(
    customer_id: int,
    loyalty_id: int,
    data: LoyaltyTransactionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    if loyalty.status != "ACTIVE":
        raise HTTPException(status_code=400, detail="Loyalty program is not active")

    try:
        transaction = record_transaction(
            db,
            loyalty,
            points=data.points,
            type=data.type,
            source=data.source,
            description=data.description,
            reference_id=data.reference_id
        )
    except InsufficientPointsError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(transaction)

    create_activity_log(
        db,
        user_id=current_user.id,
        action=data.type,
        entity_type="loyalty_transaction",
        entity_id=transaction.id,
        description=f"{data.type.capitalize()} of {data.points} points on loyalty program #{loyalty.id}",
        request=request
    )

    return transaction


# ==================== REWARDS ====================

@router.get("/{customer_id}/loyalty/{loyalty_id}/rewards")
def list_rewards(
    customer_id: int,
    loyalty_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    type: Optional[str] = None,
    min_points: Optional[int] = Query(None, ge=0),
    max_points: Optional[int] = Query(None, ge=0),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)

    query = db.query(Reward).filter(Reward.loyalty_id == loyalty.id)
    if status_filter:
        query = query.filter(Reward.status == status_filter)
    if type:
        query = query.filter(Reward.type == type)
    if min_points is not None:
        query = query.filter(Reward.points >= min_points)
    if max_points is not None:
        query = query.filter(Reward.points <= max_points)
    if search:
        query = query.filter(
            or_(
                Reward.title.ilike(f"%{search}%"),
                Reward.description.ilike(f"%{search}%")
            )
        )

    total = query.count()
    rewards = query.order_by(Reward.points.asc(), Reward.id.asc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [RewardResponse.model_validate(r) for r in rewards],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "status_counts": _status_counts(db, Reward.status, Reward.loyalty_id == loyalty.id)
    }


@router.post("/{customer_id}/loyalty/{loyalty_id}/rewards", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
def create_reward(
    customer_id: int,
    loyalty_id: int,
    data: RewardCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)

    reward = Reward(loyalty_id=loyalty.id, **data.model_dump())
    db.add(reward)
    db.commit()
    db.refresh(reward)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="created",
        entity_type="reward",
        entity_id=reward.id,
        description=f"Created reward {reward.title} ({reward.points} points)",
        request=request
    )

    return reward


@router.put("/{customer_id}/loyalty/{loyalty_id}/rewards/{reward_id}", response_model=RewardResponse)
def update_reward(
    customer_id: int,
    loyalty_id: int,
    reward_id: int,
    data: RewardUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    reward = _get_reward(db, loyalty, reward_id)
    update_data = data.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(reward, field, value)

    db.commit()
    db.refresh(reward)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="updated",
        entity_type="reward",
        entity_id=reward.id,
        description=f"Updated reward {reward.title}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return reward


@router.delete("/{customer_id}/loyalty/{loyalty_id}/rewards/{reward_id}")
def delete_reward(
    customer_id: int,
    loyalty_id: int,
    reward_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    reward = _get_reward(db, loyalty, reward_id)

    has_redemptions = db.query(RewardRedemption.id).filter(RewardRedemption.reward_id == reward.id).first()
    if has_redemptions:
        raise HTTPException(status_code=400, detail="Cannot delete a reward that has redemptions")

    title = reward.title
    db.delete(reward)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="reward",
        entity_id=reward_id,
        description=f"Deleted reward {title}",
        request=request
    )

    return {"message": "Reward deleted successfully"}


# ==================== REDEMPTIONS ====================

@router.get("/{customer_id}/loyalty/{loyalty_id}/redemptions")
def list_redemptions(
    customer_id: int,
    loyalty_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)

    query = db.query(RewardRedemption).join(Reward).filter(Reward.loyalty_id == loyalty.id)
    if status_filter:
        query = query.filter(RewardRedemption.status == status_filter)
    if start_date:
        query = query.filter(RewardRedemption.created_at >= start_date)
    if end_date:
        query = query.filter(RewardRedemption.created_at <= end_date)
    if search:
        query = query.filter(
            or_(
                Reward.title.ilike(f"%{search}%"),
                RewardRedemption.notes.ilike(f"%{search}%")
            )
        )

    total = query.count()
    redemptions = query.order_by(RewardRedemption.created_at.desc(), RewardRedemption.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    status_counts = dict(
        db.query(RewardRedemption.status, func.count(RewardRedemption.id))
        .join(Reward)
        .filter(Reward.loyalty_id == loyalty.id)
        .group_by(RewardRedemption.status)
        .all()
    )

    return {
        "items": [RedemptionResponse.model_validate(r) for r in redemptions],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "status_counts": status_counts
    }


@router.post(
    "/{customer_id}/loyalty/{loyalty_id}/redemptions",
    response_model=RedemptionResponse,
    status_code=status.HTTP_201_CREATED
)
def create_redemption(
    customer_id: int,
    loyalty_id: int,
    data: RedemptionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Redeem a reward: the pending redemption, the debit transaction, the
    balance update and the reward status change are committed together.
    """
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    if loyalty.status != "ACTIVE":
        raise HTTPException(status_code=400, detail="Loyalty program is not active")

    reward = _get_reward(db, loyalty, data.reward_id)
    if reward.status != "available":
        raise HTTPException(status_code=400, detail="Reward is not available")
    if reward.expires_at <= datetime.utcnow():
        raise HTTPException(status_code=400, detail="Reward has expired")

    redeemed_count = _open_redemptions(db, reward.id)
    if reward.max_redemptions is not None and redeemed_count >= reward.max_redemptions:
        raise HTTPException(status_code=400, detail="Reward redemption limit reached")

    if loyalty.points < reward.points:
        raise HTTPException(
            status_code=400,
            detail=f"Insufficient points: balance is {loyalty.points}, reward costs {reward.points}"
        )

    try:
        redemption = RewardRedemption(
            reward_id=reward.id,
            status="pending",
            notes=data.notes,
            desired_redemption_date=data.desired_redemption_date
        )
        db.add(redemption)
        db.flush()

        record_transaction(
            db,
            loyalty,
            points=reward.points,
            type="debit",
            source="reward",
            description=f"Redeemed reward {reward.title}",
            reference_id=f"redemption:{redemption.id}"
        )

        if reward.max_redemptions is not None and redeemed_count + 1 >= reward.max_redemptions:
            reward.status = "redeemed"
            reward.redeemed_at = datetime.utcnow()

        db.commit()
    except InsufficientPointsError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        db.rollback()
        raise

    db.refresh(redemption)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="redeemed",
        entity_type="reward_redemption",
        entity_id=redemption.id,
        description=f"Redeemed reward {reward.title} for {reward.points} points",
        request=request
    )

    return redemption


@router.put("/{customer_id}/loyalty/{loyalty_id}/redemptions/{redemption_id}", response_model=RedemptionResponse)
def update_redemption(
    customer_id: int,
    loyalty_id: int,
    redemption_id: int,
    data: RedemptionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    loyalty = _get_program(db, customer_id, loyalty_id, current_user)
    redemption = db.query(RewardRedemption).join(Reward).filter(
        RewardRedemption.id == redemption_id,
        Reward.loyalty_id == loyalty.id
    ).first()
    if not redemption:
        raise HTTPException(status_code=404, detail="Redemption not found")

    reward = redemption.reward
    previous_status = redemption.status
    new_status = data.status

    if new_status is not None and new_status != previous_status:
        if new_status not in REDEMPTION_TRANSITIONS.get(previous_status, set()):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot change redemption status from '{previous_status}' to '{new_status}'"
            )
        redemption.status = new_status

        if new_status == "confirmed":
            redemption.redeemed_at = data.redeemed_at or datetime.utcnow()
        elif new_status == "cancelled":
            # Give the points back and re-open a reward closed by its limit
            record_transaction(
                db,
                loyalty,
                points=reward.points,
                type="credit",
                source="reward",
                description=f"Refund of cancelled redemption of {reward.title}",
                reference_id=f"redemption:{redemption.id}"
            )
            db.flush()
            if (
                reward.status == "redeemed"
                and reward.max_redemptions is not None
                and _open_redemptions(db, reward.id) < reward.max_redemptions
            ):
                reward.status = "available"
                reward.redeemed_at = None
    elif data.redeemed_at is not None:
        redemption.redeemed_at = data.redeemed_at

    if data.notes is not None:
        redemption.notes = data.notes

    db.commit()
    db.refresh(redemption)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="updated",
        entity_type="reward_redemption",
        entity_id=redemption.id,
        description=f"Redemption #{redemption.id} is {redemption.status}",
        request=request
    )

    return redemption
