from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import Optional
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import Professional, Establishment, User, Appointment
from app.schemas.schemas import ProfessionalCreate, ProfessionalUpdate, ProfessionalResponse
from app.utils.slot_manager import ACTIVE_STATUSES
from app.api.v1.endpoints.activity_logs import create_activity_log

router = APIRouter()


def _check_establishment(db: Session, establishment_id: int, user: User):
    exists = db.query(Establishment.id).filter(
        Establishment.id == establishment_id,
        Establishment.user_id == user.id
    ).first()
    if not exists:
        raise HTTPException(status_code=404, detail="Establishment not found")


def _get_professional(db: Session, professional_id: int, user: User) -> Professional:
    professional = db.query(Professional).filter(
        Professional.id == professional_id,
        Professional.user_id == user.id
    ).first()
    if not professional:
        raise HTTPException(status_code=404, detail="Professional not found")
    return professional


@router.get("/")
def list_professionals(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    establishment_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Professional).filter(Professional.user_id == current_user.id)

    if establishment_id is not None:
        query = query.filter(Professional.establishment_id == establishment_id)
    if status_filter:
        query = query.filter(Professional.status == status_filter)
    if search:
        query = query.filter(
            or_(
                Professional.name.ilike(f"%{search}%"),
                Professional.email.ilike(f"%{search}%"),
                Professional.phone.ilike(f"%{search}%")
            )
        )

    total = query.count()
    professionals = query.order_by(Professional.name.asc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [ProfessionalResponse.model_validate(p) for p in professionals],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/", response_model=ProfessionalResponse, status_code=status.HTTP_201_CREATED)
def create_professional(
    data: ProfessionalCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_establishment(db, data.establishment_id, current_user)

    professional = Professional(user_id=current_user.id, **data.model_dump())
    db.add(professional)
    db.commit()
    db.refresh(professional)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=professional.establishment_id,
        action="created",
        entity_type="professional",
        entity_id=professional.id,
        description=f"Created professional {professional.name}",
        request=request
    )

    return professional


@router.get("/{professional_id}", response_model=ProfessionalResponse)
def get_professional(
    professional_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_professional(db, professional_id, current_user)


@router.put("/{professional_id}", response_model=ProfessionalResponse)
def update_professional(
    professional_id: int,
    data: ProfessionalUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    professional = _get_professional(db, professional_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("establishment_id") is not None:
        _check_establishment(db, update_data["establishment_id"], current_user)

    for field, value in update_data.items():
        setattr(professional, field, value)

    db.commit()
    db.refresh(professional)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=professional.establishment_id,
        action="updated",
        entity_type="professional",
        entity_id=professional.id,
        description=f"Updated professional {professional.name}",
        request=request
    )

    return professional


@router.delete("/{professional_id}")
def delete_professional(
    professional_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    professional = _get_professional(db, professional_id, current_user)

    upcoming = db.query(Appointment).filter(
        Appointment.professional_id == professional.id,
        Appointment.status.in_(ACTIVE_STATUSES)
    ).count()
    if upcoming:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete professional with {upcoming} active appointment(s)"
        )

    name = professional.name
    establishment_id = professional.establishment_id
    db.query(Appointment).filter(Appointment.professional_id == professional.id).update(
        {Appointment.professional_id: None}, synchronize_session=False
    )
    db.delete(professional)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=establishment_id,
        action="deleted",
        entity_type="professional",
        entity_id=professional_id,
        description=f"Deleted professional {name}",
        request=request
    )

    return {"message": "Professional deleted successfully"}
