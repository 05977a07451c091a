from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import Optional
from datetime import datetime
import logging
from app.core.cache import cache, upload_stats_key
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.rate_limit import upload_rate_limiter
from app.models.models import Upload, User
from app.schemas.schemas import UploadResponse
from app.services.upload_service import UploadError, delete_upload, get_upload_metadata, process_upload
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", status_code=status.HTTP_201_CREATED, dependencies=[Depends(upload_rate_limiter)])
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    kind: str = Form("general"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Upload an image or document.

    Images are re-encoded and, for logo / cover / photo uploads, get
    small, medium and large thumbnails.
    """
    content = await file.read()

    try:
        upload = process_upload(
            db,
            user_id=current_user.id,
            content=content,
            original_name=file.filename or "upload",
            content_type=file.content_type or "",
            kind=kind
        )
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="uploaded",
        entity_type="upload",
        entity_id=upload.id,
        description=f"Uploaded {upload.extra.get('original_name')}",
        request=request,
        metadata={"kind": kind, "size": upload.file_size, "type": upload.file_type}
    )

    return {
        "url": upload.url,
        "upload": UploadResponse.model_validate(upload)
    }


@router.get("/")
def list_uploads(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    file_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Upload).filter(
        Upload.user_id == current_user.id,
        Upload.status == "active"
    )
    if file_type:
        query = query.filter(Upload.file_type == file_type)

    total = query.count()
    uploads = query.order_by(Upload.created_at.desc(), Upload.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    rows = db.query(Upload.file_type, func.count(Upload.id), func.coalesce(func.sum(Upload.file_size), 0)).filter(
        Upload.user_id == current_user.id,
        Upload.status == "active"
    ).group_by(Upload.file_type).all()
    by_type = {file_type: {"count": count, "total_size": int(size)} for file_type, count, size in rows}

    return {
        "items": [UploadResponse.model_validate(u) for u in uploads],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page,
        "stats": {
            "total_files": sum(v["count"] for v in by_type.values()),
            "total_size": sum(v["total_size"] for v in by_type.values()),
            "by_type": by_type,
            "today": cache.hgetall(upload_stats_key(current_user.id, datetime.utcnow().strftime("%Y-%m-%d")))
        }
    }


@router.get("/{upload_id}")
def get_upload(
    upload_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    metadata = get_upload_metadata(db, current_user.id, upload_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return metadata


@router.delete("/{upload_id}")
def remove_upload(
    upload_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    upload = db.query(Upload).filter(
        Upload.id == upload_id,
        Upload.user_id == current_user.id
    ).first()
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")

    file_name = upload.file_name
    delete_upload(db, upload)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="upload",
        entity_id=upload_id,
        description=f"Deleted upload {file_name}",
        request=request
    )

    return {"message": "Upload deleted successfully"}
