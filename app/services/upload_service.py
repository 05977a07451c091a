"""
Upload pipeline: validate, optimize, thumbnail, store, persist, cache.
"""
import logging
import os
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.cache import cache, upload_meta_key, upload_stats_key, upload_url_key
from app.core.config import settings
from app.core.storage import StorageError, delete_file, store_file
from app.models.models import Upload
from app.utils.image import ImageProcessingError, generate_thumbnails, optimize_image

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp"]
ALLOWED_DOCUMENT_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]
DOCUMENT_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}

# Upload kinds that get thumbnails
THUMBNAIL_KINDS = {"logo", "cover", "photo"}
UPLOAD_KINDS = THUMBNAIL_KINDS | {"document", "general"}


class UploadError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


def validate_file(content_type: str, file_size: int, kind: str = "general"):
    """
    Raises:
        UploadError: when the file is empty, too large or of a disallowed type
    """
    if kind not in UPLOAD_KINDS:
        raise UploadError(f"Invalid upload kind. Allowed kinds: {', '.join(sorted(UPLOAD_KINDS))}")

    if file_size == 0:
        raise UploadError("Empty file")

    if file_size > settings.UPLOAD_MAX_SIZE:
        raise UploadError(
            f"File size exceeds maximum allowed size of {settings.UPLOAD_MAX_SIZE // (1024 * 1024)}MB"
        )

    allowed = ALLOWED_IMAGE_TYPES if kind in THUMBNAIL_KINDS else ALLOWED_IMAGE_TYPES + ALLOWED_DOCUMENT_TYPES
    if content_type not in allowed:
        raise UploadError(f"Invalid file type. Allowed types: {', '.join(allowed)}")


def build_metadata(upload: Upload) -> dict:
    return {
        "id": upload.id,
        "user_id": upload.user_id,
        "file_name": upload.file_name,
        "file_type": upload.file_type,
        "file_size": upload.file_size,
        "url": upload.url,
        "path": upload.path,
        "status": upload.status,
        "extra": upload.extra,
        "created_at": upload.created_at.isoformat() if upload.created_at else None,
    }


def _thumbnail_key(key: str, size: str) -> str:
    stem, ext = os.path.splitext(key)
    return f"{stem}_{size}{ext}"


def process_upload(
    db: Session,
    user_id: int,
    content: bytes,
    original_name: str,
    content_type: str,
    kind: str = "general"
) -> Upload:
    """Run the full pipeline and return the committed Upload row"""
    validate_file(content_type, len(content), kind)

    extra = {"original_name": original_name, "kind": kind}
    data = content
    thumbnails = {}

    if content_type in ALLOWED_IMAGE_TYPES:
        try:
            data, image_info = optimize_image(content)
        except ImageProcessingError as e:
            raise UploadError(str(e))
        content_type = image_info["content_type"]
        extension = image_info["extension"]
        extra.update({"width": image_info["width"], "height": image_info["height"]})

        if kind in THUMBNAIL_KINDS:
            try:
                thumbnails = generate_thumbnails(content)
            except Exception as e:
                logger.warning(f"Thumbnail generation failed for {original_name}: {e}")
    else:
        extension = DOCUMENT_EXTENSIONS[content_type]

    key = f"{kind}/{uuid.uuid4().hex}.{extension}"
    stored_keys = []
    try:
        result = store_file(data, key, content_type)
        stored_keys.append(result["path"])

        thumbnail_urls = {}
        for size, thumb in thumbnails.items():
            try:
                thumb_result = store_file(thumb, _thumbnail_key(key, size), content_type)
            except StorageError as e:
                logger.warning(f"Could not store {size} thumbnail for {key}: {e}")
                continue
            stored_keys.append(thumb_result["path"])
            thumbnail_urls[size] = thumb_result["url"]
    except StorageError as e:
        logger.error(f"Upload storage failed for {original_name}: {e}")
        raise UploadError("Failed to store file", status_code=500)

    if thumbnail_urls:
        extra["thumbnails"] = thumbnail_urls
        extra["thumbnail_paths"] = {size: _thumbnail_key(result["path"], size) for size in thumbnail_urls}

    upload = Upload(
        user_id=user_id,
        file_name=os.path.basename(key),
        file_type=content_type,
        file_size=result["size"],
        url=result["url"],
        path=result["path"],
        status="active",
        extra=extra
    )
    try:
        db.add(upload)
        db.flush()

        cache.set(upload_url_key(upload.id), upload.url)
        cache.set(upload_meta_key(upload.id), build_metadata(upload))
        stats_key = upload_stats_key(user_id, datetime.utcnow().strftime("%Y-%m-%d"))
        cache.hincrby(stats_key, "count")
        cache.hincrby(stats_key, "bytes", upload.file_size)
        cache.hincrby(stats_key, content_type)

        db.commit()
    except Exception:
        db.rollback()
        for stored in stored_keys:
            delete_file(stored, content_type)
        raise

    db.refresh(upload)
    logger.info(f"Stored upload {upload.id} ({content_type}, {upload.file_size} bytes) for user {user_id}")
    return upload


def get_upload_metadata(db: Session, user_id: int, upload_id: int) -> Optional[dict]:
    """Cached metadata when present, else read from the database"""
    cached = cache.get(upload_meta_key(upload_id))
    if cached is not None and cached.get("user_id") == user_id and cached.get("status") == "active":
        return cached

    upload = db.query(Upload).filter(
        Upload.id == upload_id,
        Upload.user_id == user_id,
        Upload.status == "active"
    ).first()
    if not upload:
        return None

    metadata = build_metadata(upload)
    cache.set(upload_meta_key(upload.id), metadata)
    return metadata


def delete_upload(db: Session, upload: Upload):
    """Remove stored files (thumbnails included), cache entries and the row"""
    paths = [upload.path]
    paths.extend(((upload.extra or {}).get("thumbnail_paths") or {}).values())
    for path in paths:
        if not delete_file(path, upload.file_type):
            logger.warning(f"Stored file {path} was already missing")

    cache.delete(upload_url_key(upload.id), upload_meta_key(upload.id))
    db.delete(upload)
    db.commit()
    logger.info(f"Deleted upload {upload.id}")
