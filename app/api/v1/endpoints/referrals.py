from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from typing import Optional
from datetime import datetime
import logging
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import Customer, Referral, User
from app.schemas.schemas import ReferralCreate, ReferralUpdate, ReferralResponse
from app.services.loyalty_service import credit_referral_bonus
from app.utils.validators import only_digits
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()

# A converted or cancelled referral is final
REFERRAL_TRANSITIONS = {
    "pending": {"converted", "expired", "cancelled"},
    "expired": {"cancelled"},
    "converted": set(),
    "cancelled": set(),
}


def _get_customer(db: Session, customer_id: int, user: User) -> Customer:
    customer = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.user_id == user.id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def _get_referral(db: Session, customer_id: int, referral_id: int, user: User) -> Referral:
    _get_customer(db, customer_id, user)
    referral = db.query(Referral).filter(
        Referral.id == referral_id,
        Referral.customer_id == customer_id,
        Referral.user_id == user.id
    ).first()
    if not referral:
        raise HTTPException(status_code=404, detail="Referral not found")
    return referral


@router.get("/{customer_id}/referrals")
def list_referrals(
    customer_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = _get_customer(db, customer_id, current_user)

    query = db.query(Referral).filter(Referral.customer_id == customer.id)
    if status_filter:
        query = query.filter(Referral.status == status_filter)
    if start_date:
        query = query.filter(Referral.created_at >= start_date)
    if end_date:
        query = query.filter(Referral.created_at <= end_date)
    if search:
        query = query.filter(
            or_(
                Referral.referred_name.ilike(f"%{search}%"),
                Referral.referred_email.ilike(f"%{search}%"),
                Referral.referred_phone.ilike(f"%{only_digits(search) or search}%")
            )
        )

    total = query.count()
    referrals = query.order_by(Referral.created_at.desc(), Referral.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    status_counts = dict(
        db.query(Referral.status, func.count(Referral.id))
        .filter(Referral.customer_id == customer.id)
        .group_by(Referral.status)
        .all()
    )

    return {
        "items": [ReferralResponse.model_validate(r) for r in referrals],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "status_counts": status_counts
    }


@router.post("/{customer_id}/referrals", response_model=ReferralResponse, status_code=status.HTTP_201_CREATED)
def create_referral(
    customer_id: int,
    data: ReferralCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = _get_customer(db, customer_id, current_user)
    phone = only_digits(data.referred_phone)

    existing = db.query(Referral.id).filter(
        Referral.user_id == current_user.id,
        Referral.referred_phone == phone,
        Referral.status.in_(["pending", "converted"])
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="This phone number has already been referred")

    referral = Referral(
        user_id=current_user.id,
        customer_id=customer.id,
        referred_name=data.referred_name,
        referred_phone=phone,
        referred_email=data.referred_email,
        notes=data.notes,
        status="pending"
    )
    db.add(referral)
    db.commit()
    db.refresh(referral)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="created",
        entity_type="referral",
        entity_id=referral.id,
        description=f"{customer.name} referred {referral.referred_name}",
        request=request
    )

    return referral


@router.get("/{customer_id}/referrals/{referral_id}", response_model=ReferralResponse)
def get_referral(
    customer_id: int,
    referral_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_referral(db, customer_id, referral_id, current_user)


@router.put("/{customer_id}/referrals/{referral_id}", response_model=ReferralResponse)
def update_referral(
    customer_id: int,
    referral_id: int,
    data: ReferralUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a referral. Marking it converted links the new customer record
    and credits the referral bonus to the referrer's active loyalty program.
    """
    referral = _get_referral(db, customer_id, referral_id, current_user)
    update_data = data.model_dump(exclude_unset=True)
    new_status = update_data.get("status")
    if new_status is not None and new_status != referral.status:
        if new_status not in REFERRAL_TRANSITIONS.get(referral.status, set()):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot change referral status from '{referral.status}' to '{new_status}'"
            )
    converting = update_data.get("status") == "converted" and referral.status != "converted"

    if converting:
        converted_customer_id = update_data.get("converted_customer_id") or referral.converted_customer_id
        if converted_customer_id is None:
            raise HTTPException(status_code=400, detail="converted_customer_id is required to convert a referral")
        _get_customer(db, converted_customer_id, current_user)
        update_data["converted_customer_id"] = converted_customer_id
        if update_data.get("converted_at") is None:
            update_data["converted_at"] = datetime.utcnow()
    elif update_data.get("converted_customer_id") is not None:
        _get_customer(db, update_data["converted_customer_id"], current_user)

    for field, value in update_data.items():
        setattr(referral, field, value)

    if converting:
        transaction = credit_referral_bonus(db, referral)
        if transaction is not None:
            logger.info(f"Credited referral bonus of {transaction.points} points for referral {referral.id}")

    db.commit()
    db.refresh(referral)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="converted" if converting else "updated",
        entity_type="referral",
        entity_id=referral.id,
        description=f"Referral of {referral.referred_name} is {referral.status}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return referral


@router.delete("/{customer_id}/referrals/{referral_id}")
def delete_referral(
    customer_id: int,
    referral_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    referral = _get_referral(db, customer_id, referral_id, current_user)
    if referral.status == "converted":
        raise HTTPException(status_code=400, detail="Cannot delete a converted referral")

    db.delete(referral)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="referral",
        entity_id=referral_id,
        description=f"Deleted referral #{referral_id}",
        request=request
    )

    return {"message": "Referral deleted successfully"}
