"""Geocoding reconciliation: best-effort place names for placed photos."""

import asyncio
import logging
from typing import Callable, Optional

from travelmap.client.grouping import GroupingEngine
from travelmap.client.models import CitySuggestion, Photo
from travelmap.client.state import AppState
from travelmap.config import settings
from travelmap.services.geocoding import Geocoder, ReverseResult
from travelmap.utils.geo import location_key

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2


class GeocodingReconciler:
    """Fires reverse lookups and applies their results if still valid.

    A result is applied only while the photo exists with the generation it
    had when the request was issued; any later edit, placement or competing
    resolution makes it stale.
    """

    def __init__(
        self,
        state: AppState,
        geocoder: Geocoder,
        grouping: GroupingEngine,
        on_applied: Optional[Callable[[Photo], None]] = None,
    ):
        self.state = state
        self.geocoder = geocoder
        self.grouping = grouping
        self.on_applied = on_applied
        self._tasks: set[asyncio.Task] = set()

    def resolve_place(self, lat: float, lon: float, photo_id: str, delay: float = 0.0) -> asyncio.Task:
        """Schedule a lookup for one photo. Fire-and-forget; failures are logged."""
        task = asyncio.get_running_loop().create_task(self._resolve(lat, lon, photo_id, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def search_cities(self, query: str) -> list[CitySuggestion]:
        """City suggestions for manual placement. Raises GeocodingError."""
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []
        return await self.geocoder.search(query)

    async def wait_idle(self) -> None:
        """Wait for every outstanding lookup, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _resolve(self, lat: float, lon: float, photo_id: str, delay: float) -> bool:
        if delay > 0:
            await asyncio.sleep(delay)

        photo = self.state.get(photo_id)
        if photo is None:
            return False
        generation = photo.generation

        try:
            result = await self.geocoder.reverse(lat, lon)
        except Exception as e:
            logger.warning("Error getting location name for (%s, %s): %s", lat, lon, e)
            return False

        return self.apply(lat, lon, photo_id, generation, result)

    def apply(self, lat: float, lon: float, photo_id: str, generation: int, result: ReverseResult) -> bool:
        """Apply a lookup result. Returns True if the photo itself was updated."""
        name = result.location_name(lat, lon)
        if not name or name == settings.default_location:
            return False

        applied = False
        if self.state.is_current(photo_id, generation):
            photo = self.state.get(photo_id)
            changes = {"location": name}
            if result.country_code:
                changes["country_code"] = result.country_code
            if result.country:
                changes["country"] = result.country
            photo.update(**changes)
            self.grouping.assign_photo(photo)
            applied = True
            if self.on_applied is not None:
                self.on_applied(photo)
        elif photo_id in self.state:
            logger.info("Discarding stale location for %s (photo changed meanwhile)", photo_id)
        else:
            logger.info("Discarding location for deleted photo %s", photo_id)

        group = self.state.location_groups.get(location_key(lat, lon))
        if group is not None:
            group.name = name
            if result.country:
                group.country = result.country
            if result.city:
                group.city = result.city

        return applied
