from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import ActivityLog, User
from app.schemas.schemas import ActivityLogResponse
import json

router = APIRouter()


def create_activity_log(
    db: Session,
    user_id: int,
    action: str,
    entity_type: str = None,
    entity_id: int = None,
    description: str = None,
    establishment_id: int = None,
    request: Request = None,
    metadata: dict = None,
    commit: bool = True
):
    """Helper function to create activity log"""
    log = ActivityLog(
        user_id=user_id,
        establishment_id=establishment_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
        extra_data=json.dumps(metadata, default=str) if metadata else None
    )
    db.add(log)
    if commit:
        db.commit()
    return log


@router.get("/")
def get_activity_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Audit trail of the current owner, newest first"""
    query = db.query(ActivityLog).filter(ActivityLog.user_id == current_user.id)

    if action:
        query = query.filter(ActivityLog.action == action)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if start_date:
        query = query.filter(ActivityLog.created_at >= start_date)
    if end_date:
        query = query.filter(ActivityLog.created_at <= end_date)

    total = query.count()
    logs = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [ActivityLogResponse.model_validate(log) for log in logs],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }
