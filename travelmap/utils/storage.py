"""Object storage on local disk: uploads, removal, path safety."""

import logging
import re
import secrets
import time
from pathlib import Path

from travelmap.config import settings
from travelmap.utils.image import generate_thumbnail

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_MAX_FILENAME = 255


def sanitize_filename(filename: str | None) -> str:
    """Strip directories and unsafe characters from a client-supplied name."""
    if not filename:
        return f"photo-{int(time.time() * 1000)}.jpg"
    basename = re.sub(r"^.*[\\/]", "", filename)
    safe = _UNSAFE_CHARS.sub("_", basename)
    return safe[:_MAX_FILENAME] or f"photo-{int(time.time() * 1000)}.jpg"


def resolve_path(storage_path: str) -> Path:
    """Absolute location of a storage path. Raises ValueError on traversal."""
    root = settings.storage_dir.resolve()
    full = (root / storage_path).resolve()
    if root != full and root not in full.parents:
        raise ValueError(f"Invalid storage path: {storage_path}")
    return full


def upload_file(data: bytes, filename: str, owner_id: str) -> str:
    """Store bytes under photos/{owner}/{timestamp}-{filename}; returns the storage path."""
    safe_owner = _UNSAFE_CHARS.sub("_", owner_id)
    stamp = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    storage_path = f"photos/{safe_owner}/{stamp}-{sanitize_filename(filename)}"
    target = resolve_path(storage_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return storage_path


def upload_image_with_thumbnail(data: bytes, filename: str, owner_id: str) -> tuple[str, str]:
    """Store the original and a width-bounded thumbnail. Returns (path, thumb_path)."""
    path = upload_file(data, filename, owner_id)
    thumb = generate_thumbnail(data, settings.thumbnail_width)
    thumb_path = upload_file(thumb, f"thumb-{sanitize_filename(filename)}", owner_id)
    return path, thumb_path


def delete_file(storage_path: str) -> bool:
    """Remove a stored object. Failures are logged, never raised."""
    try:
        resolve_path(storage_path).unlink(missing_ok=True)
        return True
    except (OSError, ValueError) as e:
        logger.error("Error deleting file from storage %s: %s", storage_path, e)
        return False

