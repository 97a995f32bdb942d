"""Map rendering capability used by the grouping engine."""

import itertools
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol


class MapCanvas(Protocol):
    def add_marker(self, lat: float, lon: float, count: int, on_click: Callable[[], None]) -> Any:
        """Render a counted marker and return an opaque handle."""

    def update_marker(self, handle: Any, lat: float, lon: float, count: int) -> None: ...

    def remove_marker(self, handle: Any) -> None: ...

    def has_marker(self, handle: Any) -> bool: ...

    def fit_bounds(self, points: list[tuple[float, float]], padding: int, max_zoom: int) -> None: ...

    def set_view(self, center: tuple[float, float], zoom: int) -> None: ...


@dataclass
class _RenderedMarker:
    lat: float
    lon: float
    count: int
    on_click: Callable[[], None]


class MemoryMap:
    """Headless MapCanvas keeping rendered markers in a dict."""

    DEFAULT_CENTER = (0.0, 0.0)
    DEFAULT_ZOOM = 3

    def __init__(self):
        self._ids = itertools.count(1)
        self.markers: dict[int, _RenderedMarker] = {}
        self.center: tuple[float, float] = self.DEFAULT_CENTER
        self.zoom: int = self.DEFAULT_ZOOM
        self.bounds: Optional[list[tuple[float, float]]] = None
        self.fit_count = 0

    def add_marker(self, lat, lon, count, on_click):
        handle = next(self._ids)
        self.markers[handle] = _RenderedMarker(lat, lon, count, on_click)
        return handle

    def update_marker(self, handle, lat, lon, count):
        marker = self.markers[handle]
        marker.lat, marker.lon, marker.count = lat, lon, count

    def remove_marker(self, handle):
        self.markers.pop(handle, None)

    def has_marker(self, handle):
        return handle in self.markers

    def fit_bounds(self, points, padding, max_zoom):
        self.bounds = list(points)
        self.fit_count += 1

    def set_view(self, center, zoom):
        self.center = center
        self.zoom = zoom
        self.bounds = None

    def click(self, handle) -> None:
        self.markers[handle].on_click()
