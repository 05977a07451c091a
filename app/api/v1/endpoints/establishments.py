from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from typing import Any, Dict, Optional
import logging
import re
import unicodedata
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.customization import merge_config, resolve_config
from app.core.rate_limit import establishment_rate_limiter, upload_rate_limiter
from app.models.models import (
    Establishment, User, Service, Appointment, Professional, Customer, FinancialTransaction
)
from app.schemas.schemas import (
    EstablishmentCreate, EstablishmentUpdate, EstablishmentResponse, EstablishmentDetailResponse, UploadResponse
)
from app.services.upload_service import UploadError, process_upload
from app.utils.slot_manager import ACTIVE_STATUSES
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()

SORT_FIELDS = {
    "name": Establishment.name,
    "city": Establishment.city,
    "created_at": Establishment.created_at,
    "updated_at": Establishment.updated_at,
}


def generate_slug(name: str, db: Session, exclude_id: Optional[int] = None) -> str:
    """Generate a unique slug from the establishment name"""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    base_slug = re.sub(r'[^a-z0-9]+', '-', ascii_name.lower()).strip('-') or "establishment"

    slug = base_slug
    counter = 1
    while True:
        query = db.query(Establishment).filter(Establishment.slug == slug)
        if exclude_id is not None:
            query = query.filter(Establishment.id != exclude_id)
        if not query.first():
            return slug
        slug = f"{base_slug}-{counter}"
        counter += 1


def get_owned_establishment(db: Session, establishment_id: int, user: User) -> Establishment:
    establishment = db.query(Establishment).filter(
        Establishment.id == establishment_id,
        Establishment.user_id == user.id
    ).first()
    if not establishment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Establishment not found")
    return establishment


@router.get("/")
def list_establishments(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    city: Optional[str] = None,
    state: Optional[str] = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Invalid sort field. Allowed: {', '.join(SORT_FIELDS)}")

    query = db.query(Establishment).filter(Establishment.user_id == current_user.id)

    if search:
        query = query.filter(
            or_(
                Establishment.name.ilike(f"%{search}%"),
                Establishment.description.ilike(f"%{search}%"),
                Establishment.address.ilike(f"%{search}%")
            )
        )
    if status_filter:
        query = query.filter(Establishment.status == status_filter)
    if city:
        query = query.filter(Establishment.city.ilike(city))
    if state:
        query = query.filter(Establishment.state.ilike(state))

    total = query.count()
    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    establishments = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [EstablishmentResponse.model_validate(e) for e in establishments],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/", response_model=EstablishmentResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(establishment_rate_limiter)])
def create_establishment(
    data: EstablishmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = Establishment(
        user_id=current_user.id,
        slug=generate_slug(data.name, db),
        **data.model_dump()
    )
    db.add(establishment)
    db.commit()
    db.refresh(establishment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment.id,
        action="created",
        entity_type="establishment",
        entity_id=establishment.id,
        description=f"Created establishment {establishment.name}",
        request=request
    )

    return establishment


@router.get("/{establishment_id}", response_model=EstablishmentDetailResponse)
def get_establishment(
    establishment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = get_owned_establishment(db, establishment_id, current_user)

    response = EstablishmentDetailResponse.model_validate(establishment)
    response.services_count = db.query(Service).filter(Service.establishment_id == establishment.id).count()
    response.appointments_count = db.query(Appointment).filter(Appointment.establishment_id == establishment.id).count()
    response.professionals_count = db.query(Professional).filter(Professional.establishment_id == establishment.id).count()
    return response


@router.put("/{establishment_id}", response_model=EstablishmentResponse)
def update_establishment(
    establishment_id: int,
    data: EstablishmentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = get_owned_establishment(db, establishment_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    opening = update_data.get("opening_hour", establishment.opening_hour)
    closing = update_data.get("closing_hour", establishment.closing_hour)
    if opening >= closing:
        raise HTTPException(status_code=400, detail="opening_hour must be before closing_hour")

    if "name" in update_data and update_data["name"] != establishment.name:
        establishment.slug = generate_slug(update_data["name"], db, exclude_id=establishment.id)

    for field, value in update_data.items():
        setattr(establishment, field, value)

    db.commit()
    db.refresh(establishment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment.id,
        action="updated",
        entity_type="establishment",
        entity_id=establishment.id,
        description=f"Updated establishment {establishment.name}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return establishment


@router.delete("/{establishment_id}")
def delete_establishment(
    establishment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = get_owned_establishment(db, establishment_id, current_user)

    active = db.query(Appointment).filter(
        Appointment.establishment_id == establishment.id,
        Appointment.status.in_(ACTIVE_STATUSES)
    ).count()
    if active:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete establishment with {active} active appointment(s)"
        )

    name = establishment.name
    db.query(Customer).filter(Customer.establishment_id == establishment.id).update(
        {Customer.establishment_id: None}, synchronize_session=False
    )
    db.query(FinancialTransaction).filter(FinancialTransaction.establishment_id == establishment.id).update(
        {FinancialTransaction.establishment_id: None}, synchronize_session=False
    )
    db.delete(establishment)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="establishment",
        entity_id=establishment_id,
        description=f"Deleted establishment {name}",
        request=request
    )

    return {"message": "Establishment deleted successfully"}


@router.get("/{establishment_id}/config")
def get_establishment_config(
    establishment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = get_owned_establishment(db, establishment_id, current_user)
    return resolve_config(establishment.config)


@router.patch("/{establishment_id}/config")
def update_establishment_config(
    establishment_id: int,
    request: Request,
    updates: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Shallow-merge the body into the stored configuration"""
    establishment = get_owned_establishment(db, establishment_id, current_user)

    # Reassign so the JSON column is flagged as modified
    establishment.config = merge_config(establishment.config, updates)
    db.commit()
    db.refresh(establishment)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment.id,
        action="updated",
        entity_type="establishment_config",
        entity_id=establishment.id,
        description=f"Updated configuration of {establishment.name}",
        request=request,
        metadata={"keys": list(updates.keys())}
    )

    return resolve_config(establishment.config)


async def _upload_media(
    kind: str,
    establishment_id: int,
    file: UploadFile,
    request: Request,
    db: Session,
    current_user: User
):
    establishment = get_owned_establishment(db, establishment_id, current_user)
    content = await file.read()

    try:
        upload = process_upload(
            db,
            user_id=current_user.id,
            content=content,
            original_name=file.filename or kind,
            content_type=file.content_type or "",
            kind=kind
        )
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    setattr(establishment, f"{kind}_url", upload.url)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment.id,
        action="uploaded",
        entity_type="establishment",
        entity_id=establishment.id,
        description=f"Uploaded {kind} for {establishment.name}",
        request=request,
        metadata={"upload_id": upload.id}
    )

    return {
        "url": upload.url,
        "upload": UploadResponse.model_validate(upload)
    }


@router.post("/{establishment_id}/logo", status_code=status.HTTP_201_CREATED, dependencies=[Depends(upload_rate_limiter)])
async def upload_logo(
    establishment_id: int,
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await _upload_media("logo", establishment_id, file, request, db, current_user)


@router.post("/{establishment_id}/cover", status_code=status.HTTP_201_CREATED, dependencies=[Depends(upload_rate_limiter)])
async def upload_cover(
    establishment_id: int,
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await _upload_media("cover", establishment_id, file, request, db, current_user)


@router.get("/{establishment_id}/stats")
def get_establishment_stats(
    establishment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    establishment = get_owned_establishment(db, establishment_id, current_user)

    by_status = dict(
        db.query(Appointment.status, func.count(Appointment.id))
        .filter(Appointment.establishment_id == establishment.id)
        .group_by(Appointment.status)
        .all()
    )
    revenue = db.query(func.coalesce(func.sum(Service.price), 0)).join(
        Appointment, Appointment.service_id == Service.id
    ).filter(
        Appointment.establishment_id == establishment.id,
        Appointment.status == "completed"
    ).scalar()

    return {
        "establishment_id": establishment.id,
        "customers": db.query(Customer).filter(Customer.establishment_id == establishment.id).count(),
        "services": db.query(Service).filter(Service.establishment_id == establishment.id).count(),
        "professionals": db.query(Professional).filter(Professional.establishment_id == establishment.id).count(),
        "appointments": {
            "total": sum(by_status.values()),
            "scheduled": by_status.get("scheduled", 0),
            "confirmed": by_status.get("confirmed", 0),
            "completed": by_status.get("completed", 0),
            "cancelled": by_status.get("cancelled", 0),
            "no_show": by_status.get("no_show", 0),
        },
        "revenue": int(revenue or 0)
    }
