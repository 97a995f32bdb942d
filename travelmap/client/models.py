"""In-memory records of the travel map client."""

import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from travelmap.config import settings


def new_photo_id() -> str:
    return f"pho_{secrets.token_hex(6)}"


@dataclass(eq=False)
class Photo:
    """A placed travel photo.

    Every place or note change goes through update() so that `generation` tracks the
    record's version; async handlers compare it to discard stale results.
    """

    id: str = field(default_factory=new_photo_id)
    lat: Optional[float] = None
    lon: Optional[float] = None
    date: str = field(default_factory=lambda: settings.unknown_date)
    location: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    note_title: str = ""
    note_description: str = ""
    # Session/local image (data URL) and the original upload
    url: Optional[str] = None
    image_bytes: Optional[bytes] = field(default=None, repr=False)
    filename: Optional[str] = None
    # Remote assets
    image_url: Optional[str] = None
    thumb_url: Optional[str] = None
    storage_path: Optional[str] = None
    thumb_path: Optional[str] = None
    # Sync metadata
    db_id: Optional[Any] = None
    has_image: bool = True
    generation: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def touch(self) -> int:
        self.generation += 1
        return self.generation

    def update(self, **changes) -> None:
        """Set fields and bump the generation once."""
        for name, value in changes.items():
            if name in ("id", "generation") or not hasattr(self, name):
                raise AttributeError(f"Photo has no editable field {name!r}")
            setattr(self, name, value)
        self.touch()

    def mark_synced(self, db_id, storage_path: Optional[str], thumb_path: Optional[str]) -> None:
        """Record the remote identity. Sync metadata does not bump the generation."""
        self.db_id = db_id
        self.storage_path = storage_path
        self.thumb_path = thumb_path
        self.has_image = storage_path is not None or self.url is not None


@dataclass
class PendingPhoto:
    """An uploaded photo without GPS, waiting for a place to be chosen."""

    id: str
    url: str
    date: str
    image_bytes: Optional[bytes] = field(default=None, repr=False)
    filename: Optional[str] = None


@dataclass
class LocationPoint:
    key: str
    lat: float
    lon: float


@dataclass
class LocationGroup:
    """Photos sharing a rounded coordinate."""

    key: str
    lat: float
    lon: float
    photo_ids: list[str] = field(default_factory=list)
    name: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


@dataclass
class CityGroup:
    """Photos sharing a derived city name; the unit shown on the map."""

    city: str
    country: Optional[str] = None
    photo_ids: list[str] = field(default_factory=list)
    locations: list[LocationPoint] = field(default_factory=list)


@dataclass
class Marker:
    """A map marker for a city group, or a placeholder for a location group."""

    lat: float
    lon: float
    count: int
    handle: Any = None
    city_name: Optional[str] = None
    location_key: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return self.city_name is None


@dataclass
class CitySuggestion:
    """A forward-geocoding hit offered for manual placement."""

    name: str
    country: str
    country_code: str
    lat: float
    lon: float
    display_name: str = ""
    flag: str = ""

    @property
    def label(self) -> str:
        return f"{self.name}, {self.country}" if self.country else self.name


@dataclass
class Stats:
    total_photos: int
    total_locations: int
    total_countries: int
    countries: list[str]
    flags: dict[str, str]
