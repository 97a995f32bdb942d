"""Local durable cache: a quota-bound key-value store and its payload format.

The stored value is either the versioned envelope
``{"schemaVersion", "exportDate", "photos"}`` or, from older versions of the
app, a bare list of photo records. Both decode to the same records.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from travelmap.client.models import Photo, new_photo_id
from travelmap.config import settings

logger = logging.getLogger(__name__)


class StorageQuotaExceeded(Exception):
    """The value does not fit in the remaining local storage."""


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class FileKeyValueStore:
    """One JSON file per key under a directory, with a total byte quota."""

    def __init__(self, directory: Path | None = None, quota_bytes: int | None = None):
        self.directory = Path(directory or settings.data_dir / "local")
        self.quota_bytes = settings.local_quota_bytes if quota_bytes is None else quota_bytes
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _used_bytes(self, excluding: Path) -> int:
        return sum(p.stat().st_size for p in self.directory.glob("*.json") if p != excluding)

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        encoded = value.encode("utf-8")
        if self._used_bytes(path) + len(encoded) > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"{len(encoded)} bytes for {key!r} exceed the {self.quota_bytes} byte quota"
            )
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(encoded)
        tmp.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class CachedPhoto(BaseModel):
    """One photo record as stored locally and in backups (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[Union[str, int, float]] = None
    url: str
    lat: float
    lon: float
    date: Optional[str] = None
    location: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    note_title: Optional[str] = None
    note_description: Optional[str] = None
    db_id: Optional[Union[int, str]] = None

    @classmethod
    def from_photo(cls, photo: Photo, url: str) -> "CachedPhoto":
        return cls(
            id=photo.id,
            url=url,
            lat=photo.lat,
            lon=photo.lon,
            date=photo.date or settings.unknown_date,
            location=photo.location or settings.default_location,
            country=photo.country or settings.default_country,
            country_code=photo.country_code,
            note_title=photo.note_title or "",
            note_description=photo.note_description or "",
            db_id=photo.db_id,
        )

    def to_photo(self) -> Photo:
        return Photo(
            id=str(self.id) if self.id not in (None, "") else new_photo_id(),
            lat=self.lat,
            lon=self.lon,
            date=self.date or settings.unknown_date,
            location=self.location or settings.default_location,
            country=self.country or settings.default_country,
            country_code=self.country_code or None,
            note_title=self.note_title or "",
            note_description=self.note_description or "",
            url=self.url,
            db_id=self.db_id or None,
            has_image=True,
        )


class CacheEnvelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    schema_version: int
    export_date: Optional[str] = None
    photos: list = []


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_envelope(records: list[CachedPhoto]) -> str:
    envelope = {
        "schemaVersion": settings.schema_version,
        "exportDate": now_iso(),
        "photos": [r.model_dump(by_alias=True) for r in records],
    }
    return json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))


def decode_records(raw) -> list[Photo]:
    """Validate raw photo dicts, dropping records without url/lat/lon."""
    photos = []
    for index, item in enumerate(raw):
        try:
            photos.append(CachedPhoto.model_validate(item).to_photo())
        except ValidationError:
            logger.warning("Photo %d invalid (missing required fields), skipped", index + 1)
    return photos


def decode_payload(text: str) -> tuple[int, list[Photo]]:
    """Decode a stored value into (schema version, photos).

    The legacy bare-array format decodes as schema version 0. Raises
    ValueError for anything else.
    """
    data = json.loads(text)
    if isinstance(data, list):
        return 0, decode_records(data)
    if isinstance(data, dict) and "schemaVersion" in data:
        try:
            envelope = CacheEnvelope.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid cache envelope: {e}") from e
        return envelope.schema_version, decode_records(envelope.photos)
    raise ValueError("Unrecognized cache payload format")
