"""EXIF metadata extraction from uploaded photos."""

from io import BytesIO
from typing import Any, Optional

from PIL import Image
from PIL.ExifTags import GPSTAGS, TAGS


def extract_exif(image_data: bytes) -> dict[str, Any]:
    """Extract the travel-relevant EXIF fields from image bytes.

    Returns a dict with parsed fields:
      date (raw EXIF string), latitude, longitude, width, height
    Missing or unreadable fields are None.
    """
    result: dict[str, Any] = {
        "date": None,
        "latitude": None,
        "longitude": None,
        "width": None,
        "height": None,
    }

    try:
        img = Image.open(BytesIO(image_data))
        result["width"], result["height"] = img.size
        exif_data = img.getexif()
    except Exception:
        return result

    if not exif_data:
        return result

    decoded: dict[str, Any] = {}
    for tag_id, value in exif_data.items():
        decoded[TAGS.get(tag_id, str(tag_id))] = value

    # DateTimeOriginal lives in the Exif sub-IFD
    try:
        for tag_id, value in exif_data.get_ifd(0x8769).items():
            decoded.setdefault(TAGS.get(tag_id, str(tag_id)), value)
    except Exception:
        pass

    date_str = decoded.get("DateTime") or decoded.get("DateTimeOriginal")
    if isinstance(date_str, bytes):
        date_str = date_str.decode("utf-8", errors="replace")
    if date_str and isinstance(date_str, str) and date_str.strip():
        result["date"] = date_str.strip()

    gps_info = _extract_gps(exif_data)
    if gps_info:
        result["latitude"] = gps_info[0]
        result["longitude"] = gps_info[1]

    return result


def _extract_gps(exif_data) -> Optional[tuple[float, float]]:
    """Extract GPS coordinates from EXIF data."""
    try:
        gps_ifd = exif_data.get_ifd(0x8825)  # GPSInfo IFD
        if not gps_ifd:
            return None

        gps = {}
        for tag_id, value in gps_ifd.items():
            tag_name = GPSTAGS.get(tag_id, str(tag_id))
            gps[tag_name] = value

        lat = dms_to_decimal(gps.get("GPSLatitude"), gps.get("GPSLatitudeRef", "N"))
        lon = dms_to_decimal(gps.get("GPSLongitude"), gps.get("GPSLongitudeRef", "E"))
        if lat is not None and lon is not None:
            return (lat, lon)
    except Exception:
        pass
    return None


def dms_to_decimal(coords, ref: str | None) -> Optional[float]:
    """Convert GPS DMS coordinates to decimal degrees.

    `coords` is a (degrees, minutes, seconds) triple; a southern or western
    `ref` flips the sign.
    """
    if not coords or len(coords) != 3:
        return None
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    try:
        degrees = float(coords[0])
        minutes = float(coords[1])
        seconds = float(coords[2])
    except (ValueError, TypeError, ZeroDivisionError):
        return None
    decimal = degrees + minutes / 60.0 + seconds / 3600.0
    if ref and ref.strip().upper() in ("S", "W"):
        decimal = -decimal
    return decimal
