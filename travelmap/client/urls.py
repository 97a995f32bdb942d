"""Display URL resolution with a TTL cache."""

import logging
import time
from typing import Callable, Optional

from travelmap.client.models import Photo
from travelmap.client.remote import RemoteStore
from travelmap.config import settings

logger = logging.getLogger(__name__)

FULL = "full"
THUMB = "thumb"


class UrlCache:
    """Caches display URLs per (photo id, variant).

    The TTL stays below the signed URL lifetime, so a cached URL is never
    handed out after it expired on the server.
    """

    def __init__(
        self,
        remote: Optional[RemoteStore] = None,
        get_owner: Callable[[], Optional[str]] = lambda: None,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.remote = remote
        self._get_owner = get_owner
        self.ttl = settings.url_cache_seconds if ttl is None else ttl
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[str, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def invalidate(self, photo_id: str) -> None:
        for variant in (FULL, THUMB):
            self._entries.pop((photo_id, variant), None)

    def _put(self, photo_id: str, variant: str, url: str) -> str:
        self._entries[(photo_id, variant)] = (url, self._clock())
        return url

    async def get_display_url(self, photo: Photo, variant: str = FULL) -> Optional[str]:
        """Best URL to display a photo. Never raises."""
        thumb = variant == THUMB
        cached = self._entries.get((photo.id, variant))
        if cached is not None and self._clock() - cached[1] < self.ttl:
            return cached[0]

        direct = photo.thumb_url if thumb else photo.image_url
        if direct:
            return self._put(photo.id, variant, direct)

        path = photo.thumb_path if thumb else photo.storage_path
        owner = self._get_owner()
        if path and photo.db_id and self.remote is not None and owner:
            try:
                url = await self.remote.signed_url(owner, photo.db_id, thumb=thumb)
                return self._put(photo.id, variant, url)
            except Exception as e:
                logger.warning("Error getting signed URL for %s: %s", photo.id, e)

        return photo.url or None
