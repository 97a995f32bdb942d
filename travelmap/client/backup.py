"""Backup file export and import."""

import json
import logging
from datetime import date
from typing import Callable, Iterable, Optional

from travelmap.client.local_cache import CachedPhoto, decode_records, now_iso
from travelmap.client.models import Photo
from travelmap.config import settings

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """The backup cannot be exported or the file cannot be imported."""


def backup_filename(day: Optional[date] = None) -> str:
    return f"viajes-backup-{(day or date.today()).isoformat()}.json"


def export_backup(photos: Iterable[Photo]) -> str:
    """Serialize photos that carry a local image. Raises BackupError if none do."""
    records = []
    for photo in photos:
        if not photo.url or not photo.has_coordinates:
            logger.warning("Photo %s has no local image, left out of the backup", photo.id)
            continue
        records.append(CachedPhoto.from_photo(photo, photo.url))
    if not records:
        raise BackupError("No hay fotos para exportar")

    data = {
        "schemaVersion": settings.schema_version,
        "exportDate": now_iso(),
        "appVersion": settings.app_version,
        "totalPhotos": len(records),
        "photos": [r.model_dump(by_alias=True, exclude={"db_id"}) for r in records],
    }
    return json.dumps(data, ensure_ascii=False, indent=2)


LEGACY_PROMPT = (
    "Este archivo no tiene versión de esquema. "
    "¿Quieres intentar importarlo de todos modos? (Formato legacy)"
)


def parse_backup(text: str, confirm_legacy: Callable[[str], bool] = lambda message: False) -> list[Photo]:
    """Validate a backup file and decode its photos.

    A legacy bare array is only accepted if confirm_legacy agrees. Records
    missing url, lat or lon are skipped.
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise BackupError("Error al importar backup. Verifica el archivo.") from e

    if isinstance(data, list):
        if not confirm_legacy(LEGACY_PROMPT):
            raise BackupError("Formato de backup no válido")
        raw = data
    elif isinstance(data, dict) and data.get("schemaVersion"):
        version = data["schemaVersion"]
        if not isinstance(version, int) or version > settings.schema_version:
            raise BackupError(f"Backup de versión más reciente (v{version}). Actualiza la app.")
        raw = data.get("photos")
    else:
        raise BackupError("Formato de backup no válido")

    if not isinstance(raw, list) or not raw:
        raise BackupError("El backup no contiene fotos válidas")

    photos = decode_records(raw)
    if not photos:
        raise BackupError("El backup no contiene fotos válidas")
    for photo in photos:
        photo.db_id = None
    return photos
