from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, func
from typing import Optional
from datetime import datetime
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.rate_limit import upload_rate_limiter
from app.models.models import Customer, User, Establishment, Appointment, Service
from app.schemas.schemas import (
    CustomerCreate, CustomerUpdate, CustomerResponse, CustomerServiceHistory, AppointmentResponse, UploadResponse
)
from app.services.upload_service import UploadError, process_upload
from app.utils.validators import format_cpf, only_digits
from app.api.v1.endpoints.activity_logs import create_activity_log

router = APIRouter()

SORT_FIELDS = {
    "name": Customer.name,
    "email": Customer.email,
    "created_at": Customer.created_at,
    "updated_at": Customer.updated_at,
}


def get_owned_customer(db: Session, customer_id: int, user: User) -> Customer:
    customer = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.user_id == user.id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def _check_duplicates(db: Session, user: User, email: Optional[str], cpf: Optional[str], exclude_id: Optional[int] = None):
    if email:
        query = db.query(Customer.id).filter(
            Customer.user_id == user.id,
            func.lower(Customer.email) == email.lower()
        )
        if exclude_id is not None:
            query = query.filter(Customer.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=400, detail="Customer with this email already exists")

    if cpf:
        query = db.query(Customer.id).filter(Customer.user_id == user.id, Customer.cpf == cpf)
        if exclude_id is not None:
            query = query.filter(Customer.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=400, detail="Customer with this CPF already exists")


def _check_establishment(db: Session, establishment_id: Optional[int], user: User):
    if establishment_id is None:
        return
    exists = db.query(Establishment.id).filter(
        Establishment.id == establishment_id,
        Establishment.user_id == user.id
    ).first()
    if not exists:
        raise HTTPException(status_code=404, detail="Establishment not found")


@router.get("/")
def get_customers(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    establishment_id: Optional[int] = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get customers with pagination and filtering"""
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Invalid sort field. Allowed: {', '.join(SORT_FIELDS)}")

    query = db.query(Customer).filter(Customer.user_id == current_user.id)

    if search:
        conditions = [
            Customer.name.ilike(f"%{search}%"),
            Customer.email.ilike(f"%{search}%"),
            Customer.phone.ilike(f"%{search}%"),
            Customer.cpf.ilike(f"%{search}%")
        ]
        # CPFs are stored formatted
        if len(only_digits(search)) == 11:
            conditions.append(Customer.cpf == format_cpf(only_digits(search)))
        query = query.filter(or_(*conditions))
    if status_filter:
        query = query.filter(Customer.status == status_filter)
    if establishment_id is not None:
        query = query.filter(Customer.establishment_id == establishment_id)

    total = query.count()
    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Customer.id.desc())
    customers = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [CustomerResponse.model_validate(c) for c in customers],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a new customer"""
    data = customer_data.model_dump()
    if data.get("cpf"):
        data["cpf"] = format_cpf(data["cpf"])

    _check_establishment(db, data.get("establishment_id"), current_user)
    _check_duplicates(db, current_user, data.get("email"), data.get("cpf"))

    customer = Customer(user_id=current_user.id, **data)
    db.add(customer)
    db.commit()
    db.refresh(customer)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="created",
        entity_type="customer",
        entity_id=customer.id,
        description=f"Created customer {customer.name}",
        request=request
    )

    return customer


@router.get("/{customer_id}", response_model=CustomerResponse)
def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_owned_customer(db, customer_id, current_user)


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update a customer"""
    customer = get_owned_customer(db, customer_id, current_user)
    update_data = customer_data.model_dump(exclude_unset=True)
    if update_data.get("cpf"):
        update_data["cpf"] = format_cpf(update_data["cpf"])

    if "establishment_id" in update_data:
        _check_establishment(db, update_data["establishment_id"], current_user)
    _check_duplicates(db, current_user, update_data.get("email"), update_data.get("cpf"), exclude_id=customer.id)

    for field, value in update_data.items():
        setattr(customer, field, value)

    db.commit()
    db.refresh(customer)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="updated",
        entity_type="customer",
        entity_id=customer.id,
        description=f"Updated customer {customer.name}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return customer


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a customer along with their appointments, loyalty programs, referrals and feedback"""
    customer = get_owned_customer(db, customer_id, current_user)
    name = customer.name

    db.delete(customer)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="customer",
        entity_id=customer_id,
        description=f"Deleted customer {name}",
        request=request
    )

    return {"message": "Customer deleted successfully"}


@router.get("/{customer_id}/appointments")
def get_customer_appointments(
    customer_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = get_owned_customer(db, customer_id, current_user)

    query = db.query(Appointment).filter(Appointment.customer_id == customer.id)
    if status_filter:
        query = query.filter(Appointment.status == status_filter)
    if start_date:
        query = query.filter(Appointment.date >= start_date)
    if end_date:
        query = query.filter(Appointment.date <= end_date)

    total = query.count()
    appointments = query.order_by(Appointment.date.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [AppointmentResponse.model_validate(a) for a in appointments],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.get("/{customer_id}/services")
def get_customer_services(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Per-service history of a customer, most recent first"""
    customer = get_owned_customer(db, customer_id, current_user)

    appointments = db.query(Appointment).options(joinedload(Appointment.service)).filter(
        Appointment.customer_id == customer.id
    ).all()

    history = {}
    for appointment in appointments:
        service = appointment.service
        entry = history.setdefault(service.id, {
            "service_id": service.id,
            "service_name": service.name,
            "appointments_count": 0,
            "completed_count": 0,
            "last_appointment_date": None,
            "total_spent": 0,
        })
        entry["appointments_count"] += 1
        if appointment.status == "completed":
            entry["completed_count"] += 1
            entry["total_spent"] += service.price
        if entry["last_appointment_date"] is None or appointment.date > entry["last_appointment_date"]:
            entry["last_appointment_date"] = appointment.date

    items = sorted(history.values(), key=lambda e: e["last_appointment_date"], reverse=True)
    return {
        "items": [CustomerServiceHistory(**entry) for entry in items],
        "total_spent": sum(e["total_spent"] for e in items),
        "total_appointments": len(appointments)
    }


@router.post("/{customer_id}/photo", status_code=status.HTTP_201_CREATED, dependencies=[Depends(upload_rate_limiter)])
async def upload_customer_photo(
    customer_id: int,
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = get_owned_customer(db, customer_id, current_user)
    content = await file.read()

    try:
        upload = process_upload(
            db,
            user_id=current_user.id,
            content=content,
            original_name=file.filename or "photo",
            content_type=file.content_type or "",
            kind="photo"
        )
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    customer.photo_url = upload.url
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=customer.establishment_id,
        action="uploaded",
        entity_type="customer",
        entity_id=customer.id,
        description=f"Uploaded photo for {customer.name}",
        request=request,
        metadata={"upload_id": upload.id}
    )

    return {
        "url": upload.url,
        "upload": UploadResponse.model_validate(upload)
    }
