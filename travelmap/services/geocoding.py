"""Reverse and forward geocoding against Nominatim (OpenStreetMap).

Reverse lookups are cached by rounded coordinate and both directions share a
politeness delay, since Nominatim allows at most one request per second.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from travelmap.client.models import CitySuggestion
from travelmap.config import settings
from travelmap.utils.geo import country_code_to_flag, format_coordinates

logger = logging.getLogger(__name__)

# Round GPS to ~100m precision for cache key
_GPS_PRECISION = 3


class GeocodingError(Exception):
    """The geocoding service failed or answered with something unusable."""


@dataclass
class ReverseResult:
    """Address components of a reverse lookup."""

    address: dict = field(default_factory=dict)
    display_name: str = ""

    @property
    def city(self) -> Optional[str]:
        a = self.address
        return a.get("city") or a.get("town") or a.get("village")

    @property
    def region(self) -> Optional[str]:
        return self.address.get("state") or self.address.get("region")

    @property
    def country(self) -> Optional[str]:
        return self.address.get("country")

    @property
    def country_code(self) -> Optional[str]:
        code = self.address.get("country_code")
        return code.upper() if code else None

    def location_name(self, lat: float, lon: float) -> str:
        """Display name: city → region → country → formatted coordinates."""
        country = self.country
        for name in (self.city, self.region):
            if name:
                return f"{name}, {country}" if country else name
        if country:
            return country
        return format_coordinates(lat, lon)


class Geocoder(Protocol):
    async def reverse(self, lat: float, lon: float) -> ReverseResult: ...

    async def search(self, query: str) -> list[CitySuggestion]: ...


class NominatimGeocoder:
    """httpx client for Nominatim's /reverse and /search endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        min_interval: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.geocoder_url).rstrip("/")
        self.min_interval = settings.geocoder_min_interval if min_interval is None else min_interval
        self._client = client
        self._owns_client = client is None
        self._cache: dict[tuple[float, float], ReverseResult] = {}
        self._throttle = asyncio.Lock()
        self._last_request_time = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=10.0,
                headers={
                    "User-Agent": settings.geocoder_user_agent,
                    "Accept-Language": settings.geocoder_language,
                },
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _get_json(self, path: str, params: dict):
        async with self._throttle:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request_time = time.monotonic()
            client = await self._get_client()
            try:
                response = await client.get(f"{self.base_url}{path}", params=params)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise GeocodingError(f"{path} failed: {e}") from e

    async def reverse(self, lat: float, lon: float) -> ReverseResult:
        """Address of a coordinate. Raises GeocodingError."""
        key = (round(lat, _GPS_PRECISION), round(lon, _GPS_PRECISION))
        if key in self._cache:
            return self._cache[key]

        data = await self._get_json("/reverse", {
            "format": "json",
            "lat": lat,
            "lon": lon,
            "zoom": settings.geocoder_reverse_zoom,
            "addressdetails": 1,
        })
        if not isinstance(data, dict) or not isinstance(data.get("address"), dict):
            raise GeocodingError(f"No address for ({lat}, {lon})")

        result = ReverseResult(address=data["address"], display_name=data.get("display_name", ""))
        self._cache[key] = result
        return result

    async def search(self, query: str) -> list[CitySuggestion]:
        """Cities matching a free-text query, de-duplicated by (name, country)."""
        data = await self._get_json("/search", {
            "format": "json",
            "q": query,
            "limit": settings.geocoder_search_limit,
            "addressdetails": 1,
            "featuretype": "city",
        })
        if not isinstance(data, list):
            raise GeocodingError("Unexpected search response")
        return parse_search_results(data)


def parse_search_results(items: list[dict]) -> list[CitySuggestion]:
    suggestions = []
    seen = set()
    for item in items:
        address = item.get("address") or {}
        name = (
            address.get("city")
            or address.get("town")
            or address.get("village")
            or address.get("municipality")
            or item.get("name")
        )
        if not name:
            continue
        country = address.get("country", "")
        if (name, country) in seen:
            continue
        try:
            lat, lon = float(item["lat"]), float(item["lon"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Search result without coordinates skipped: %s", name)
            continue
        seen.add((name, country))
        code = (address.get("country_code") or "").upper()
        suggestions.append(CitySuggestion(
            name=name,
            country=country,
            country_code=code,
            lat=lat,
            lon=lon,
            display_name=item.get("display_name", ""),
            flag=country_code_to_flag(code),
        ))
    return suggestions
