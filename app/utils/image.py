"""
Image processing helpers built on Pillow.

Uploaded images are re-encoded (optimized) before storage, and
square thumbnails are cropped from them for logos, covers and photos.
"""
import logging
from io import BytesIO
from typing import Dict, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 80

THUMBNAIL_SIZES = {
    "small": 150,
    "medium": 300,
    "large": 600,
}

# Pillow format name -> (MIME type, file extension)
IMAGE_FORMATS = {
    "JPEG": ("image/jpeg", "jpg"),
    "PNG": ("image/png", "png"),
    "WEBP": ("image/webp", "webp"),
}


class ImageProcessingError(ValueError):
    """Raised when uploaded bytes cannot be decoded as a supported image"""


def open_image(content: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError("File is not a valid image") from e

    if img.format not in IMAGE_FORMATS:
        raise ImageProcessingError(
            f"Unsupported image format. Allowed formats: {', '.join(IMAGE_FORMATS)}"
        )
    return img


def _encode(img: Image.Image, fmt: str, quality: int) -> bytes:
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    buffer = BytesIO()
    if fmt == "PNG":
        img.save(buffer, format=fmt, optimize=True)
    else:
        img.save(buffer, format=fmt, quality=quality, optimize=True)
    return buffer.getvalue()


def optimize_image(content: bytes, quality: int = DEFAULT_QUALITY) -> Tuple[bytes, dict]:
    """
    Re-encode an image in its original format.

    Returns:
        Tuple of (optimized bytes, metadata with format, content_type,
        extension, width and height)
    """
    img = open_image(content)
    fmt = img.format
    img = ImageOps.exif_transpose(img)

    data = _encode(img, fmt, quality)
    content_type, extension = IMAGE_FORMATS[fmt]
    logger.debug(f"Optimized {fmt} image: {len(content)} -> {len(data)} bytes")

    return data, {
        "format": fmt,
        "content_type": content_type,
        "extension": extension,
        "width": img.width,
        "height": img.height,
    }


def generate_thumbnails(content: bytes, quality: int = DEFAULT_QUALITY) -> Dict[str, bytes]:
    """Crop square thumbnails of every size in THUMBNAIL_SIZES"""
    img = open_image(content)
    fmt = img.format
    img = ImageOps.exif_transpose(img)

    thumbnails = {}
    for name, size in THUMBNAIL_SIZES.items():
        thumb = ImageOps.fit(img, (size, size), method=Image.LANCZOS)
        thumbnails[name] = _encode(thumb, fmt, quality)
    return thumbnails
