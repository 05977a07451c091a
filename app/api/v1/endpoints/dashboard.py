from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timedelta
from typing import Dict, Optional

from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import User, Appointment, Customer, Service, Feedback
from app.utils.charts import rating_summary
from app.utils.slot_manager import ACTIVE_STATUSES

router = APIRouter()


def _appointments(db: Session, user: User, establishment_id: Optional[int]):
    query = db.query(Appointment).filter(Appointment.user_id == user.id)
    if establishment_id is not None:
        query = query.filter(Appointment.establishment_id == establishment_id)
    return query


@router.get("/metrics", response_model=Dict)
async def get_dashboard_metrics(
    establishment_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Headline numbers for the owner's dashboard.
    Revenue is the price of completed appointments, in cents.
    """
    now = datetime.utcnow()
    today_start = datetime.combine(now.date(), datetime.min.time())
    month_start = today_start.replace(day=1)

    # Today's appointments count
    today_appointments = _appointments(db, current_user, establishment_id).filter(
        Appointment.date >= today_start,
        Appointment.date < today_start + timedelta(days=1),
        Appointment.status != "cancelled"
    ).count()

    upcoming_appointments = _appointments(db, current_user, establishment_id).filter(
        Appointment.date >= now,
        Appointment.status.in_(ACTIVE_STATUSES)
    ).count()

    customers = db.query(Customer).filter(Customer.user_id == current_user.id)
    if establishment_id is not None:
        customers = customers.filter(Customer.establishment_id == establishment_id)
    total_customers = customers.count()
    new_customers = customers.filter(Customer.created_at >= now - timedelta(days=30)).count()

    services = db.query(Service).filter(Service.user_id == current_user.id, Service.status == "active")
    if establishment_id is not None:
        services = services.filter(Service.establishment_id == establishment_id)
    active_services = services.count()

    # This month's revenue from completed appointments
    revenue_month = _appointments(db, current_user, establishment_id).join(Service).filter(
        Appointment.status == "completed",
        Appointment.date >= month_start
    ).with_entities(func.coalesce(func.sum(Service.price), 0)).scalar()

    average_rating = db.query(func.avg(Feedback.rating)).filter(Feedback.user_id == current_user.id).scalar()

    return {
        "today_appointments": today_appointments,
        "upcoming_appointments": upcoming_appointments,
        "total_customers": total_customers,
        "new_customers": new_customers,
        "active_services": active_services,
        "revenue_this_month": int(revenue_month or 0),
        "average_rating": round(float(average_rating), 2) if average_rating is not None else 0.0
    }


@router.get("/charts", response_model=Dict)
async def get_dashboard_charts(
    days: int = Query(30, ge=1, le=365),
    establishment_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Series for the dashboard charts over the last `days` days, today included"""
    today = datetime.utcnow().date()
    first_day = today - timedelta(days=days - 1)
    period_start = datetime.combine(first_day, datetime.min.time())

    appointments = _appointments(db, current_user, establishment_id).filter(
        Appointment.date >= period_start
    ).all()

    per_day = {(first_day + timedelta(days=i)).isoformat(): 0 for i in range(days)}
    status_distribution = {}
    revenue_by_service = {}

    for appointment in appointments:
        key = appointment.date.date().isoformat()
        if key in per_day:
            per_day[key] += 1
        status_distribution[appointment.status] = status_distribution.get(appointment.status, 0) + 1

        if appointment.status == "completed":
            service = appointment.service
            entry = revenue_by_service.setdefault(service.id, {
                "service_id": service.id,
                "service_name": service.name,
                "appointments": 0,
                "revenue": 0,
            })
            entry["appointments"] += 1
            entry["revenue"] += service.price

    ratings = db.query(Feedback.rating).filter(
        Feedback.user_id == current_user.id,
        Feedback.created_at >= period_start
    ).all()
    summary = rating_summary(r for (r,) in ratings)

    return {
        "period": {"start_date": first_day.isoformat(), "end_date": today.isoformat(), "days": days},
        "appointments_per_day": [{"date": day, "count": count} for day, count in per_day.items()],
        "revenue_by_service": sorted(revenue_by_service.values(), key=lambda e: e["revenue"], reverse=True),
        "status_distribution": status_distribution,
        "rating_distribution": summary["distribution"],
        "average_rating": summary["average_rating"]
    }
