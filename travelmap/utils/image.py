"""Image processing: data URLs, recompression, thumbnails."""

import base64
import logging
from io import BytesIO

from PIL import Image

# Register HEIF/HEIC support
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except ImportError:
    pass

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:"


def is_data_url(url: str | None) -> bool:
    return bool(url) and url.startswith(DATA_URL_PREFIX)


def bytes_to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode raw bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def data_url_to_bytes(url: str) -> bytes:
    """Decode a base64 data URL. Raises ValueError on malformed input."""
    if not is_data_url(url) or "," not in url:
        raise ValueError("Not a data URL")
    header, payload = url.split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported")
    return base64.b64decode(payload)


def compress_image(image_data: bytes, max_width: int = 800, quality: float = 0.7) -> bytes:
    """Re-encode as JPEG no wider than max_width. quality is 0-1."""
    img = _auto_orient(Image.open(BytesIO(image_data)))
    if img.width > max_width:
        height = round(img.height * max_width / img.width)
        img = img.resize((max_width, max(height, 1)), Image.LANCZOS)
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    out = BytesIO()
    img.save(out, "JPEG", quality=max(1, min(95, int(round(quality * 100)))))
    return out.getvalue()


def compress_data_url(url: str, max_width: int = 800, quality: float = 0.7) -> str:
    """Recompress a data URL; anything that cannot be decoded is returned unchanged."""
    if not is_data_url(url):
        return url
    try:
        return bytes_to_data_url(compress_image(data_url_to_bytes(url), max_width, quality))
    except Exception as e:
        logger.warning("Image recompression failed, keeping original: %s", e)
        return url


def generate_thumbnail(image_data: bytes, width: int = 300) -> bytes:
    """Width-bounded JPEG thumbnail (never enlarges) for remote storage."""
    img = _auto_orient(Image.open(BytesIO(image_data)))
    if img.width > width:
        height = round(img.height * width / img.width)
        img = img.resize((width, max(height, 1)), Image.LANCZOS)
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    out = BytesIO()
    img.save(out, "JPEG", quality=80)
    return out.getvalue()


def _auto_orient(img: Image.Image) -> Image.Image:
    """Auto-rotate image based on EXIF orientation tag."""
    try:
        exif = img.getexif()
        orientation = exif.get(0x0112)  # Orientation tag
        if orientation == 3:
            img = img.rotate(180, expand=True)
        elif orientation == 6:
            img = img.rotate(270, expand=True)
        elif orientation == 8:
            img = img.rotate(90, expand=True)
    except Exception:
        pass
    return img
