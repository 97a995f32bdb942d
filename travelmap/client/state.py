"""Application state: the photo record store and its derived indices.

One AppState exists per authenticated session. It is owned by the
controller and mutated only from the event loop thread.
"""

import asyncio
from collections import deque
from typing import Iterator, Optional

from travelmap.client.models import CityGroup, LocationGroup, Marker, PendingPhoto, Photo


class AppState:
    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        self.photos: dict[str, Photo] = {}
        self.location_groups: dict[str, LocationGroup] = {}
        self.city_groups: dict[str, CityGroup] = {}
        self.markers: list[Marker] = []
        self.pending: deque[PendingPhoto] = deque()
        self.synced_ids: set[str] = set()
        self.selected_ids: set[str] = set()
        # photo id -> location key / city name it is indexed under
        self.photo_location: dict[str, str] = {}
        self.photo_city: dict[str, str] = {}
        self.map_settled = False
        self.refresh_handle: Optional[asyncio.TimerHandle] = None
        self.settle_handle: Optional[asyncio.TimerHandle] = None
        # bumped whenever photos leave the store; an older local save is then stale
        self.save_epoch = 0

    # --- Photo record store ---

    def __len__(self) -> int:
        return len(self.photos)

    def __contains__(self, photo_id: str) -> bool:
        return photo_id in self.photos

    def __iter__(self) -> Iterator[Photo]:
        return iter(list(self.photos.values()))

    def add(self, photo: Photo) -> Photo:
        if not photo.has_coordinates:
            raise ValueError(f"Photo {photo.id} has no coordinates; queue it for placement")
        self.photos[photo.id] = photo
        return photo

    def get(self, photo_id: str) -> Optional[Photo]:
        return self.photos.get(photo_id)

    def remove(self, photo_id: str) -> Optional[Photo]:
        self.selected_ids.discard(photo_id)
        self.save_epoch += 1
        return self.photos.pop(photo_id, None)

    def find_by_db_id(self, db_id) -> Optional[Photo]:
        for photo in self.photos.values():
            if photo.db_id is not None and str(photo.db_id) == str(db_id):
                return photo
        return None

    def city_of(self, photo_id: str) -> Optional[str]:
        return self.photo_city.get(photo_id)

    def is_current(self, photo_id: str, generation: int) -> bool:
        """True while the photo exists and has not changed since `generation`."""
        photo = self.photos.get(photo_id)
        return photo is not None and photo.generation == generation

    # --- Lifecycle ---

    def cancel_refresh(self) -> None:
        if self.refresh_handle is not None:
            self.refresh_handle.cancel()
            self.refresh_handle = None

    def cancel_timers(self) -> None:
        self.cancel_refresh()
        if self.settle_handle is not None:
            self.settle_handle.cancel()
            self.settle_handle = None

    def clear_photos(self) -> None:
        """Drop photos and derived indices. Markers are cleared by the grouping engine."""
        self.save_epoch += 1
        self.photos.clear()
        self.location_groups.clear()
        self.city_groups.clear()
        self.photo_location.clear()
        self.photo_city.clear()
        self.selected_ids.clear()

    def reset(self) -> None:
        """Full local reset, as on delete-all or logout. Map settle state survives."""
        self.cancel_refresh()
        self.clear_photos()
        self.markers.clear()
        self.synced_ids.clear()
