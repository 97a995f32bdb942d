"""Grouping engine: location/city indices and map markers.

Photos are projected into two indices:
  - location groups, keyed by the coordinate rounded to 4 decimals
  - city groups, keyed by the first segment of the photo's location string

A photo id is indexed under exactly one location key and one city at a time
(AppState.photo_location / photo_city). Marker redraws are debounced so a
burst of assignments (a multi-file upload) costs a single refresh pass.
"""

import asyncio
import logging
from typing import Callable, Optional

from travelmap.client.map import MapCanvas
from travelmap.client.models import CityGroup, LocationGroup, LocationPoint, Marker, Photo
from travelmap.client.state import AppState
from travelmap.config import settings
from travelmap.utils.geo import centroid, extract_city, location_key

logger = logging.getLogger(__name__)


class GroupingEngine:
    def __init__(
        self,
        state: AppState,
        get_map: Callable[[], Optional[MapCanvas]],
        on_city_click: Optional[Callable[[str], None]] = None,
        debounce_seconds: float | None = None,
    ):
        self.state = state
        self._get_map = get_map
        self._on_city_click = on_city_click
        self.debounce_seconds = (
            settings.marker_debounce_seconds if debounce_seconds is None else debounce_seconds
        )

    # --- Indexing ---

    def assign_photo(self, photo: Photo) -> str:
        """Re-project one photo into the location and city indices.

        Idempotent for unchanged photo fields. Returns the city name.
        """
        if not photo.has_coordinates:
            raise ValueError(f"Photo {photo.id} has no coordinates")

        if not photo.location:
            photo.update(
                location=settings.default_location,
                country=photo.country or settings.default_country,
            )

        state = self.state
        key = location_key(photo.lat, photo.lon)

        previous_key = state.photo_location.get(photo.id)
        if previous_key is not None and previous_key != key:
            self._leave_location(photo.id, previous_key)

        group = state.location_groups.get(key)
        if group is None:
            group = LocationGroup(
                key=key,
                lat=photo.lat,
                lon=photo.lon,
                name=photo.location,
                country=photo.country,
            )
            state.location_groups[key] = group
        if photo.id not in group.photo_ids:
            group.photo_ids.append(photo.id)
        state.photo_location[photo.id] = key

        city = extract_city(photo.location, settings.default_city)
        previous_city = state.photo_city.get(photo.id)
        if previous_city is not None and previous_city != city:
            self._leave_city(photo.id, previous_city)

        city_group = state.city_groups.get(city)
        if city_group is None:
            city_group = CityGroup(city=city, country=photo.country)
            state.city_groups[city] = city_group
        elif city_group.country is None and photo.country:
            city_group.country = photo.country
        if photo.id not in city_group.photo_ids:
            city_group.photo_ids.append(photo.id)
        state.photo_city[photo.id] = city
        self._rebuild_locations(city_group)

        self.schedule_refresh()
        return city

    def unassign_photos(self, photo_ids) -> None:
        """Drop photos from every index, delete emptied groups, redraw markers now."""
        for photo_id in list(photo_ids):
            key = self.state.photo_location.pop(photo_id, None)
            if key is not None:
                self._leave_location(photo_id, key)
            city = self.state.photo_city.pop(photo_id, None)
            if city is not None:
                self._leave_city(photo_id, city)
        self.refresh_markers()

    def _leave_location(self, photo_id: str, key: str) -> None:
        group = self.state.location_groups.get(key)
        if group is None:
            return
        if photo_id in group.photo_ids:
            group.photo_ids.remove(photo_id)
        if not group.photo_ids:
            del self.state.location_groups[key]

    def _leave_city(self, photo_id: str, city: str) -> None:
        group = self.state.city_groups.get(city)
        if group is None:
            return
        if photo_id in group.photo_ids:
            group.photo_ids.remove(photo_id)
        if not group.photo_ids:
            del self.state.city_groups[city]
        else:
            self._rebuild_locations(group)

    def _rebuild_locations(self, group: CityGroup) -> None:
        """Distinct location points of the group's current members, in member order."""
        points: list[LocationPoint] = []
        seen: set[str] = set()
        for photo_id in group.photo_ids:
            key = self.state.photo_location.get(photo_id)
            if key is None or key in seen:
                continue
            seen.add(key)
            loc = self.state.location_groups.get(key)
            if loc is not None:
                points.append(LocationPoint(key=key, lat=loc.lat, lon=loc.lon))
        group.locations = points

    # --- Marker refresh ---

    def schedule_refresh(self) -> None:
        """Cancel any pending refresh and arm a new one after the debounce delay."""
        self.state.cancel_refresh()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (synchronous callers): refresh immediately.
            self.refresh_markers()
            return
        self.state.refresh_handle = loop.call_later(self.debounce_seconds, self._run_scheduled_refresh)

    def _run_scheduled_refresh(self) -> None:
        self.state.refresh_handle = None
        self.refresh_markers()

    def flush(self) -> None:
        """Run a pending refresh right away."""
        if self.state.refresh_handle is not None:
            self.state.cancel_refresh()
            self.refresh_markers()

    def refresh_markers(self) -> None:
        canvas = self._get_map()
        if canvas is None:
            return
        state = self.state

        kept: list[Marker] = []
        for marker in state.markers:
            if self._is_backed(marker):
                kept.append(marker)
            elif canvas.has_marker(marker.handle):
                canvas.remove_marker(marker.handle)
        state.markers = kept

        for city, group in state.city_groups.items():
            if not group.photo_ids or not group.locations:
                continue
            lat, lon = centroid([(p.lat, p.lon) for p in group.locations])
            count = len(group.photo_ids)
            existing = next((m for m in state.markers if m.city_name == city), None)
            if existing is not None:
                existing.lat, existing.lon, existing.count = lat, lon, count
                canvas.update_marker(existing.handle, lat, lon, count)
                continue
            handle = canvas.add_marker(lat, lon, count, self._click_handler(city))
            state.markers.append(Marker(lat=lat, lon=lon, count=count, handle=handle, city_name=city))

        # Placeholders give way once their photos are shown by a city marker
        placed = {m.city_name for m in state.markers if m.city_name}
        for marker in [m for m in state.markers if m.is_temporary]:
            group = state.location_groups.get(marker.location_key)
            if all(state.photo_city.get(pid) in placed for pid in group.photo_ids):
                canvas.remove_marker(marker.handle)
                state.markers.remove(marker)

        if state.markers and state.map_settled:
            canvas.fit_bounds(
                [(m.lat, m.lon) for m in state.markers],
                padding=settings.map_fit_padding,
                max_zoom=settings.map_max_zoom,
            )

    def show_location_placeholder(self, key: str) -> Optional[Marker]:
        """Place or update a temporary marker for a location group awaiting its city."""
        canvas = self._get_map()
        group = self.state.location_groups.get(key)
        if canvas is None or group is None or not group.photo_ids:
            return None
        count = len(group.photo_ids)
        for marker in self.state.markers:
            if marker.location_key == key:
                marker.count = count
                canvas.update_marker(marker.handle, marker.lat, marker.lon, count)
                return marker
        handle = canvas.add_marker(group.lat, group.lon, count, lambda: None)
        marker = Marker(lat=group.lat, lon=group.lon, count=count, handle=handle, location_key=key)
        self.state.markers.append(marker)
        return marker

    def clear_markers(self) -> None:
        canvas = self._get_map()
        if canvas is not None:
            for marker in self.state.markers:
                canvas.remove_marker(marker.handle)
        self.state.markers.clear()

    def _is_backed(self, marker: Marker) -> bool:
        if marker.city_name is not None:
            group = self.state.city_groups.get(marker.city_name)
        else:
            group = self.state.location_groups.get(marker.location_key)
        return group is not None and bool(group.photo_ids)

    def _click_handler(self, city: str) -> Callable[[], None]:
        def on_click():
            if self._on_city_click is not None:
                self._on_city_click(city)
        return on_click
