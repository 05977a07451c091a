from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.rate_limit import feedback_rate_limiter
from app.models.models import Appointment, Customer, Feedback, User
from app.schemas.schemas import FeedbackCreate, FeedbackUpdate, FeedbackResponse
from app.utils.charts import rating_summary
from app.api.v1.endpoints.activity_logs import create_activity_log

router = APIRouter()


def _get_customer(db: Session, customer_id: int, user: User) -> Customer:
    customer = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.user_id == user.id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def _get_feedback(db: Session, customer_id: int, feedback_id: int, user: User) -> Feedback:
    _get_customer(db, customer_id, user)
    feedback = db.query(Feedback).filter(
        Feedback.id == feedback_id,
        Feedback.customer_id == customer_id,
        Feedback.user_id == user.id
    ).first()
    if not feedback:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return feedback


@router.get("/{customer_id}/feedback")
def list_feedback(
    customer_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    rating: Optional[int] = Query(None, ge=1, le=5),
    min_rating: Optional[int] = Query(None, ge=1, le=5),
    max_rating: Optional[int] = Query(None, ge=1, le=5),
    source: Optional[str] = None,
    tag: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Customer feedback, newest first, with the average and 1-5 distribution of the filtered set"""
    customer = _get_customer(db, customer_id, current_user)

    query = db.query(Feedback).filter(Feedback.customer_id == customer.id)
    if rating is not None:
        query = query.filter(Feedback.rating == rating)
    if min_rating is not None:
        query = query.filter(Feedback.rating >= min_rating)
    if max_rating is not None:
        query = query.filter(Feedback.rating <= max_rating)
    if source:
        query = query.filter(Feedback.source == source)
    if start_date:
        query = query.filter(Feedback.created_at >= start_date)
    if end_date:
        query = query.filter(Feedback.created_at <= end_date)
    if tag:
        # Match on the decoded list; the stored JSON text may escape non-ASCII tags
        tagged_ids = [f.id for f in query.all() if tag in (f.tags or [])]
        query = query.filter(Feedback.id.in_(tagged_ids))

    total = query.count()
    summary = rating_summary(r for (r,) in query.with_entities(Feedback.rating).all())
    feedbacks = query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [FeedbackResponse.model_validate(f) for f in feedbacks],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "average_rating": summary["average_rating"],
        "distribution": summary["distribution"]
    }


@router.post("/{customer_id}/feedback", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(feedback_rate_limiter)])
def create_feedback(
    customer_id: int,
    data: FeedbackCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = _get_customer(db, customer_id, current_user)

    if data.appointment_id is not None:
        appointment = db.query(Appointment.id).filter(
            Appointment.id == data.appointment_id,
            Appointment.customer_id == customer.id
        ).first()
        if not appointment:
            raise HTTPException(status_code=400, detail="Appointment does not belong to this customer")

    feedback = Feedback(
        user_id=current_user.id,
        customer_id=customer.id,
        **data.model_dump()
    )
    db.add(feedback)
    db.commit()
    db.refresh(feedback)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="created",
        entity_type="feedback",
        entity_id=feedback.id,
        description=f"{customer.name} rated {feedback.rating} stars",
        request=request
    )

    return feedback


@router.get("/{customer_id}/feedback/{feedback_id}", response_model=FeedbackResponse)
def get_feedback(
    customer_id: int,
    feedback_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_feedback(db, customer_id, feedback_id, current_user)


@router.put("/{customer_id}/feedback/{feedback_id}", response_model=FeedbackResponse)
def update_feedback(
    customer_id: int,
    feedback_id: int,
    data: FeedbackUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    feedback = _get_feedback(db, customer_id, feedback_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(feedback, field, value)

    db.commit()
    db.refresh(feedback)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="updated",
        entity_type="feedback",
        entity_id=feedback.id,
        description=f"Updated feedback #{feedback.id}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return feedback


@router.delete("/{customer_id}/feedback/{feedback_id}")
def delete_feedback(
    customer_id: int,
    feedback_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    feedback = _get_feedback(db, customer_id, feedback_id, current_user)

    db.delete(feedback)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="feedback",
        entity_id=feedback_id,
        description=f"Deleted feedback #{feedback_id}",
        request=request
    )

    return {"message": "Feedback deleted successfully"}
