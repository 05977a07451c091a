"""
File storage backends.

`local` writes files below LOCAL_STORAGE_PATH and serves them from the
/uploads static mount; `cloudinary` pushes them to Cloudinary.
"""
import logging
import os
from io import BytesIO
from typing import Optional

import cloudinary
import cloudinary.uploader

from .config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a file cannot be written to the storage backend"""


def _configure_cloudinary():
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True
    )


def _local_path(key: str) -> str:
    return os.path.join(settings.LOCAL_STORAGE_PATH, *key.split("/"))


def save_to_local(data: bytes, key: str) -> dict:
    path = _local_path(key)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise StorageError(f"Could not write {key}: {e}") from e

    return {
        "url": f"{settings.LOCAL_STORAGE_URL.rstrip('/')}/{key}",
        "path": key,
        "size": len(data),
    }


def delete_from_local(key: str) -> bool:
    path = _local_path(key)
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error(f"Error deleting local file {key}: {e}")
        return False


def upload_file_to_cloudinary(data: bytes, key: str, content_type: str) -> dict:
    """
    Upload a file to Cloudinary under a public id derived from the storage key.

    Returns:
        dict with url, path (public id) and size
    """
    _configure_cloudinary()
    public_id = os.path.splitext(key)[0]
    resource_type = "image" if content_type.startswith("image/") else "raw"
    try:
        result = cloudinary.uploader.upload(
            BytesIO(data),
            public_id=public_id,
            resource_type=resource_type,
            overwrite=False
        )
    except Exception as e:
        logger.error(f"Error uploading file to Cloudinary: {e}", exc_info=True)
        raise StorageError(f"Could not upload {key}") from e

    return {
        "url": result.get("secure_url"),
        "path": result.get("public_id"),
        "size": result.get("bytes", len(data)),
        "resource_type": result.get("resource_type"),
    }


def delete_file_from_cloudinary(public_id: str, resource_type: str = "image") -> bool:
    _configure_cloudinary()
    try:
        result = cloudinary.uploader.destroy(public_id, resource_type=resource_type)
        return result.get("result") == "ok"
    except Exception as e:
        logger.error(f"Error deleting file from Cloudinary: {e}")
        return False


def store_file(data: bytes, key: str, content_type: str) -> dict:
    """Store bytes under `key` with the configured backend"""
    if settings.STORAGE_BACKEND == "cloudinary":
        return upload_file_to_cloudinary(data, key, content_type)
    return save_to_local(data, key)


def delete_file(key: str, content_type: Optional[str] = None) -> bool:
    if settings.STORAGE_BACKEND == "cloudinary":
        resource_type = "image" if (content_type or "").startswith("image/") else "raw"
        return delete_file_from_cloudinary(key, resource_type=resource_type)
    return delete_from_local(key)
