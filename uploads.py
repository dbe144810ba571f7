"""Alien image uploads, stored on local disk and served under /uploads."""

import os
import random
import time
from pathlib import Path
from typing import Optional

from starlette.datastructures import UploadFile

from errors import PayloadTooLarge, ValidationFailed
from logging_config import get_logger

log = get_logger("uploads")

ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
URL_PREFIX = "/uploads/"


def _extension(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext in ALLOWED_EXTENSIONS:
        return ext
    return ALLOWED_TYPES[upload.content_type]


def save_image(upload: UploadFile, upload_dir: str, max_size: int) -> str:
    """Validate and write an uploaded image; returns its public /uploads path."""
    if upload.content_type not in ALLOWED_TYPES:
        raise ValidationFailed("Only JPEG, PNG, GIF, and WebP images are allowed", code="INVALID_FILE_TYPE")
    content = upload.file.read(max_size + 1)
    if len(content) > max_size:
        raise PayloadTooLarge(f"File size too large. Maximum size is {max_size // (1024 * 1024)}MB")

    name = f"alien-{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}{_extension(upload)}"
    target = Path(upload_dir)
    target.mkdir(parents=True, exist_ok=True)
    (target / name).write_bytes(content)
    log.info("Stored upload %s (%d bytes)", name, len(content))
    return URL_PREFIX + name


def discard_image(path: Optional[str], upload_dir: str) -> None:
    """Remove a stored upload given its public path; missing files are ignored."""
    if not path or not path.startswith(URL_PREFIX):
        return
    file_path = Path(upload_dir) / path[len(URL_PREFIX):]
    try:
        file_path.unlink()
    except FileNotFoundError:
        pass
