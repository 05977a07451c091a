from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
import logging
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import Appointment, Customer, Service, Professional, User
from app.schemas.schemas import (
    AppointmentCreate, AppointmentUpdate, AppointmentReschedule, AppointmentStatusUpdate, AppointmentResponse
)
from app.services.loyalty_service import credit_completed_appointment
from app.utils.slot_manager import find_professional_conflict, validate_appointment_time
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()

# Allowed status transitions; completed, cancelled and no_show are terminal
STATUS_TRANSITIONS = {
    "scheduled": {"confirmed", "cancelled", "completed", "no_show"},
    "confirmed": {"completed", "cancelled", "no_show"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}


def get_owned_appointment(db: Session, appointment_id: int, user: User) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.user_id == user.id
    ).first()
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


def _get_professional(db: Session, professional_id: int, establishment_id: int, user: User) -> Professional:
    professional = db.query(Professional).filter(
        Professional.id == professional_id,
        Professional.user_id == user.id
    ).first()
    if not professional:
        raise HTTPException(status_code=404, detail="Professional not found")
    if professional.establishment_id != establishment_id:
        raise HTTPException(status_code=400, detail="Professional does not work at this establishment")
    if professional.status != "active":
        raise HTTPException(status_code=400, detail="Professional is inactive")
    return professional


@router.get("/")
def list_appointments(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    customer_id: Optional[int] = None,
    service_id: Optional[int] = None,
    professional_id: Optional[int] = None,
    establishment_id: Optional[int] = None,
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Appointment).filter(Appointment.user_id == current_user.id)

    if status_filter:
        query = query.filter(Appointment.status == status_filter)
    if start_date:
        query = query.filter(Appointment.date >= start_date)
    if end_date:
        query = query.filter(Appointment.date <= end_date)
    if customer_id is not None:
        query = query.filter(Appointment.customer_id == customer_id)
    if service_id is not None:
        query = query.filter(Appointment.service_id == service_id)
    if professional_id is not None:
        query = query.filter(Appointment.professional_id == professional_id)
    if establishment_id is not None:
        query = query.filter(Appointment.establishment_id == establishment_id)

    total = query.count()
    order = Appointment.date.asc() if sort_order == "asc" else Appointment.date.desc()
    appointments = query.order_by(order, Appointment.id.asc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [AppointmentResponse.model_validate(a) for a in appointments],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Book an appointment.

    The start must fall within the establishment hours, the service must end
    by closing time, the professional (if any) must be free, and one of the
    establishment's concurrent slots must be free for the whole duration.
    """
    customer = db.query(Customer).filter(
        Customer.id == data.customer_id,
        Customer.user_id == current_user.id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    service = db.query(Service).filter(
        Service.id == data.service_id,
        Service.user_id == current_user.id
    ).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    if service.status != "active":
        raise HTTPException(status_code=400, detail="Service is inactive")

    establishment = service.establishment
    if data.professional_id is not None:
        _get_professional(db, data.professional_id, establishment.id, current_user)

    is_valid, error_message, slot_number = validate_appointment_time(
        db,
        establishment,
        data.date,
        service.duration,
        professional_id=data.professional_id
    )
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_message)

    appointment = Appointment(
        user_id=current_user.id,
        establishment_id=establishment.id,
        customer_id=customer.id,
        service_id=service.id,
        professional_id=data.professional_id,
        date=data.date,
        slot_number=slot_number,
        status="scheduled",
        notes=data.notes
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment.id,
        action="created",
        entity_type="appointment",
        entity_id=appointment.id,
        description=f"Booked {service.name} for {customer.name} at {appointment.date.isoformat()}",
        request=request,
        metadata={"slot_number": slot_number}
    )

    return appointment


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_owned_appointment(db, appointment_id, current_user)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update notes or the assigned professional"""
    appointment = get_owned_appointment(db, appointment_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    new_professional = update_data.get("professional_id")
    if new_professional is not None and new_professional != appointment.professional_id:
        _get_professional(db, new_professional, appointment.establishment_id, current_user)
        conflict = find_professional_conflict(
            db,
            new_professional,
            appointment.date,
            appointment.service.duration,
            exclude_appointment_id=appointment.id
        )
        if conflict is not None:
            raise HTTPException(status_code=400, detail="Professional already has an appointment at this time")

    for field, value in update_data.items():
        setattr(appointment, field, value)

    db.commit()
    db.refresh(appointment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=appointment.establishment_id,
        action="updated",
        entity_type="appointment",
        entity_id=appointment.id,
        description=f"Updated appointment #{appointment.id}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return appointment


@router.patch("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = get_owned_appointment(db, appointment_id, current_user)
    if appointment.status not in ("scheduled", "confirmed"):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot reschedule an appointment with status '{appointment.status}'"
        )

    professional_id = data.professional_id if data.professional_id is not None else appointment.professional_id
    if data.professional_id is not None:
        _get_professional(db, data.professional_id, appointment.establishment_id, current_user)

    is_valid, error_message, slot_number = validate_appointment_time(
        db,
        appointment.establishment,
        data.date,
        appointment.service.duration,
        professional_id=professional_id,
        exclude_appointment_id=appointment.id
    )
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_message)

    previous_date = appointment.date
    appointment.date = data.date
    appointment.slot_number = slot_number
    appointment.professional_id = professional_id
    db.commit()
    db.refresh(appointment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=appointment.establishment_id,
        action="rescheduled",
        entity_type="appointment",
        entity_id=appointment.id,
        description=f"Rescheduled appointment #{appointment.id} from {previous_date.isoformat()} to {appointment.date.isoformat()}",
        request=request
    )

    return appointment


@router.post("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Move an appointment through its lifecycle.
    Completing it credits loyalty points to the customer's active program.
    """
    appointment = get_owned_appointment(db, appointment_id, current_user)
    current_status = appointment.status

    if data.status not in STATUS_TRANSITIONS.get(current_status, set()):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change status from '{current_status}' to '{data.status}'"
        )

    appointment.status = data.status
    if data.message is not None:
        appointment.status_message = data.message

    if data.status == "completed":
        transaction = credit_completed_appointment(db, appointment)
        if transaction is not None:
            logger.info(f"Credited {transaction.points} points for appointment {appointment.id}")

    db.commit()
    db.refresh(appointment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=appointment.establishment_id,
        action=data.status,
        entity_type="appointment",
        entity_id=appointment.id,
        description=f"Appointment #{appointment.id} changed from {current_status} to {data.status}",
        request=request
    )

    return appointment


@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = get_owned_appointment(db, appointment_id, current_user)
    establishment_id = appointment.establishment_id

    db.delete(appointment)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment_id,
        action="deleted",
        entity_type="appointment",
        entity_id=appointment_id,
        description=f"Deleted appointment #{appointment_id}",
        request=request
    )

    return {"message": "Appointment deleted successfully"}
