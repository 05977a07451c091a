from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, func, select
from typing import Optional
from datetime import date, datetime, time, timedelta
import logging
from app.core.config import settings
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import Service, Establishment, User, Appointment, Feedback
from app.schemas.schemas import ServiceCreate, ServiceUpdate, ServiceResponse, AvailabilitySlot, FeedbackResponse
from app.utils.charts import GROUP_BY_CHOICES, period_key, rates, rating_summary
from app.utils.slot_manager import ACTIVE_STATUSES, get_availability, parse_time_to_minutes
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()

SORT_FIELDS = {
    "name": Service.name,
    "price": Service.price,
    "duration": Service.duration,
    "created_at": Service.created_at,
}


def get_owned_service(db: Session, service_id: int, user: User) -> Service:
    service = db.query(Service).filter(
        Service.id == service_id,
        Service.user_id == user.id
    ).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.get("/")
def list_services(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    establishment_id: Optional[int] = None,
    sort_by: str = Query("name"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Invalid sort field. Allowed: {', '.join(SORT_FIELDS)}")

    query = db.query(Service).filter(Service.user_id == current_user.id)
    if search:
        query = query.filter(
            or_(
                Service.name.ilike(f"%{search}%"),
                Service.description.ilike(f"%{search}%")
            )
        )
    if status_filter:
        query = query.filter(Service.status == status_filter)
    if establishment_id is not None:
        query = query.filter(Service.establishment_id == establishment_id)

    total = query.count()
    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    services = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [ServiceResponse.model_validate(s) for s in services],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = db.query(Establishment).filter(
        Establishment.id == data.establishment_id,
        Establishment.user_id == current_user.id
    ).first()
    if not establishment:
        raise HTTPException(status_code=404, detail="Establishment not found")

    service = Service(user_id=current_user.id, **data.model_dump())
    db.add(service)
    db.commit()
    db.refresh(service)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=service.establishment_id,
        action="created",
        entity_type="service",
        entity_id=service.id,
        description=f"Created service {service.name}",
        request=request
    )

    return service


@router.get("/stats")
def get_services_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Summary of every owned service"""
    services = db.query(Service).filter(Service.user_id == current_user.id).order_by(Service.name.asc()).all()

    counts = {}
    rows = db.query(Appointment.service_id, Appointment.status, func.count(Appointment.id)).filter(
        Appointment.user_id == current_user.id
    ).group_by(Appointment.service_id, Appointment.status).all()
    for service_id, appointment_status, count in rows:
        counts.setdefault(service_id, {})[appointment_status] = count

    items = []
    for service in services:
        by_status = counts.get(service.id, {})
        total = sum(by_status.values())
        completed = by_status.get("completed", 0)
        cancelled = by_status.get("cancelled", 0)
        items.append({
            "id": service.id,
            "name": service.name,
            "status": service.status,
            "price": service.price,
            "duration": service.duration,
            "appointments": total,
            "completed": completed,
            "cancelled": cancelled,
            "revenue": completed * service.price,
            **rates(total, completed, cancelled)
        })

    return {
        "items": items,
        "total_services": len(services),
        "active_services": sum(1 for s in services if s.status == "active"),
        "total_revenue": sum(i["revenue"] for i in items),
        "total_appointments": sum(i["appointments"] for i in items)
    }


@router.get("/{service_id}", response_model=ServiceResponse)
def get_service(
    service_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_owned_service(db, service_id, current_user)


@router.put("/{service_id}", response_model=ServiceResponse)
def update_service(
    service_id: int,
    data: ServiceUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    service = get_owned_service(db, service_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(service, field, value)

    db.commit()
    db.refresh(service)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=service.establishment_id,
        action="updated",
        entity_type="service",
        entity_id=service.id,
        description=f"Updated service {service.name}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return service


@router.delete("/{service_id}")
def delete_service(
    service_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    service = get_owned_service(db, service_id, current_user)

    active = db.query(Appointment).filter(
        Appointment.service_id == service.id,
        Appointment.status.in_(ACTIVE_STATUSES)
    ).count()
    if active:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete service with {active} active appointment(s)"
        )

    name = service.name
    establishment_id = service.establishment_id
    db.delete(service)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment_id,
        action="deleted",
        entity_type="service",
        entity_id=service_id,
        description=f"Deleted service {name}",
        request=request
    )

    return {"message": "Service deleted successfully"}


@router.get("/{service_id}/availability")
def get_service_availability(
    service_id: int,
    start_date: date,
    end_date: date,
    start_time: Optional[str] = Query(None, pattern=r"^\d{2}:\d{2}$"),
    end_time: Optional[str] = Query(None, pattern=r"^\d{2}:\d{2}$"),
    interval: int = Query(30, ge=15, le=60),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Bookable start times of a service per date.

    Slots are generated every `interval` minutes between `start_time` and
    `end_time` (the establishment hours by default) as long as the service
    ends by `end_time`.
    """
    service = get_owned_service(db, service_id, current_user)
    if service.status != "active":
        raise HTTPException(status_code=404, detail="Service not found or inactive")

    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")
    if start_date < datetime.utcnow().date():
        raise HTTPException(status_code=400, detail="start_date cannot be in the past")
    if (end_date - start_date).days >= settings.AVAILABILITY_MAX_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"Maximum availability range is {settings.AVAILABILITY_MAX_DAYS} days"
        )

    establishment = service.establishment
    try:
        start_minute = parse_time_to_minutes(start_time) if start_time else establishment.opening_hour * 60
        end_minute = parse_time_to_minutes(end_time) if end_time else establishment.closing_hour * 60
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if start_minute >= end_minute:
        raise HTTPException(status_code=400, detail="start_time must be before end_time")

    availability = get_availability(
        db,
        establishment,
        service.duration,
        start_date,
        end_date,
        start_minute,
        end_minute,
        interval
    )

    return {
        "service": {"id": service.id, "name": service.name, "duration": service.duration},
        "query": {
            "start_date": start_date,
            "end_date": end_date,
            "start_time": f"{start_minute // 60:02d}:{start_minute % 60:02d}",
            "end_time": f"{end_minute // 60:02d}:{end_minute % 60:02d}",
            "interval": interval
        },
        "availability": {
            day: [AvailabilitySlot(**slot) for slot in slots]
            for day, slots in availability.items()
        }
    }


@router.get("/{service_id}/stats")
def get_service_stats(
    service_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    group_by: str = Query("month"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Totals, per-period trends and top customers of a service"""
    if group_by not in GROUP_BY_CHOICES:
        raise HTTPException(status_code=400, detail=f"Invalid group_by. Allowed: {', '.join(GROUP_BY_CHOICES)}")

    service = get_owned_service(db, service_id, current_user)

    period_end = datetime.combine(end_date, time()) + timedelta(days=1) if end_date else datetime.utcnow()
    period_start = datetime.combine(start_date, time()) if start_date else period_end - timedelta(days=365)
    if period_start > period_end:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")

    appointments = db.query(Appointment).options(joinedload(Appointment.customer)).filter(
        Appointment.service_id == service.id,
        Appointment.date >= period_start,
        Appointment.date < period_end
    ).order_by(Appointment.date.asc()).all()

    total = len(appointments)
    completed = sum(1 for a in appointments if a.status == "completed")
    cancelled = sum(1 for a in appointments if a.status == "cancelled")

    trends = {}
    customers = {}
    for appointment in appointments:
        key = period_key(appointment.date, group_by)
        bucket = trends.setdefault(key, {
            "appointments": 0, "completed": 0, "cancelled": 0, "revenue": 0, "customers": set()
        })
        bucket["appointments"] += 1
        bucket["customers"].add(appointment.customer_id)

        customer_stats = customers.setdefault(appointment.customer_id, {
            "id": appointment.customer_id,
            "name": appointment.customer.name,
            "appointments": 0,
            "revenue": 0,
            "last_appointment": appointment.date
        })
        customer_stats["appointments"] += 1
        customer_stats["last_appointment"] = max(customer_stats["last_appointment"], appointment.date)

        if appointment.status == "completed":
            bucket["completed"] += 1
            bucket["revenue"] += service.price
            customer_stats["revenue"] += service.price
        elif appointment.status == "cancelled":
            bucket["cancelled"] += 1

    top_customers = sorted(
        customers.values(), key=lambda c: (c["revenue"], c["appointments"]), reverse=True
    )[:10]

    return {
        "service": {"id": service.id, "name": service.name, "price": service.price},
        "period": {"start": period_start, "end": period_end, "group_by": group_by},
        "total": {
            "appointments": total,
            "revenue": completed * service.price,
            "unique_customers": len(customers),
            **rates(total, completed, cancelled)
        },
        "trends": [
            {
                "period": key,
                "appointments": bucket["appointments"],
                "revenue": bucket["revenue"],
                "unique_customers": len(bucket["customers"]),
                **rates(bucket["appointments"], bucket["completed"], bucket["cancelled"])
            }
            for key, bucket in trends.items()
        ],
        "top_customers": top_customers
    }


@router.get("/{service_id}/feedback")
def get_service_feedback(
    service_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    min_rating: Optional[int] = Query(None, ge=1, le=5),
    max_rating: Optional[int] = Query(None, ge=1, le=5),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Feedback left by customers who booked this service"""
    service = get_owned_service(db, service_id, current_user)

    customer_ids = select(Appointment.customer_id).where(Appointment.service_id == service.id)
    query = db.query(Feedback).filter(
        Feedback.user_id == current_user.id,
        Feedback.customer_id.in_(customer_ids)
    )
    if min_rating is not None:
        query = query.filter(Feedback.rating >= min_rating)
    if max_rating is not None:
        query = query.filter(Feedback.rating <= max_rating)

    summary = rating_summary(r for (r,) in query.with_entities(Feedback.rating).all())
    total = summary["total"]
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
