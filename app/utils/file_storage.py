import base64
import binascii
import os
import uuid
from pathlib import Path
from typing import Tuple

from fastapi import status
from loguru import logger

from app.core.config import settings
from app.core.errors import APIError, ErrorCode


# Define storage location (using Path for OS agnostic handling)
PHOTO_DIR = Path(settings.static_dir) / "photos"
PHOTO_URL_PREFIX = "/static/photos"

SIGNATURE_DIR = Path(settings.static_dir) / "signatures"
SIGNATURE_URL_PREFIX = "/static/signatures"

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def decode_data_url(data: str) -> Tuple[bytes, str]:
    """
    Splits a data URL ("data:image/png;base64,iVBOR...") into raw bytes and
    a file extension. A bare base64 string is treated as PNG.
    """
    if not data or not data.strip():
        raise APIError(ErrorCode.MISSING_EVIDENCE, detail="Image data is empty.")

    if "," in data:
        header, encoded = data.split(",", 1)
        mime = header.removeprefix("data:").split(";")[0].lower()
        ext = ALLOWED_IMAGE_TYPES.get(mime)
        if ext is None:
            raise APIError(
                ErrorCode.VALIDATION_ERROR,
                detail=f"Image type '{mime}' is not allowed. Allowed types: " +
                ", ".join(sorted(ALLOWED_IMAGE_TYPES))
            )
    else:
        encoded = data
        ext = "png"

    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise APIError(ErrorCode.VALIDATION_ERROR, detail="Image data is not valid base64.")

    if not raw:
        raise APIError(ErrorCode.MISSING_EVIDENCE, detail="Image data is empty.")

    if len(raw) > settings.max_photo_bytes:
        raise APIError(
            ErrorCode.PHOTO_TOO_LARGE,
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        )

    return raw, ext


def _save_image(data: str, directory: Path, url_prefix: str) -> str:
    raw, ext = decode_data_url(data)

    os.makedirs(directory, exist_ok=True)

    filename = f"{uuid.uuid4()}.{ext}"
    file_path = directory / filename

    try:
        with open(file_path, "wb") as f:
            f.write(raw)
    except OSError:
        logger.exception(f"Error saving image to {file_path}")
        raise

    return f"{settings.public_url}{url_prefix}/{filename}"


def save_photo(data: str) -> str:
    """Stores a checkpoint photo and returns its public URL."""
    return _save_image(data, PHOTO_DIR, PHOTO_URL_PREFIX)


def save_signature(data: str) -> str:
    """Stores a recipient signature capture and returns its public URL."""
    return _save_image(data, SIGNATURE_DIR, SIGNATURE_URL_PREFIX)
