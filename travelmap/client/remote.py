"""Remote store client: httpx calls against the travel map backend API."""

import logging
from typing import Optional, Protocol

import httpx

from travelmap.client.models import Photo
from travelmap.config import settings
from travelmap.utils.image import data_url_to_bytes, is_data_url

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """A remote store call failed (network, HTTP status or payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteStore(Protocol):
    async def list_photos(self, owner_id: str) -> list[dict]: ...

    async def create_photo(self, owner_id: str, photo: Photo) -> dict: ...

    async def update_photo(self, owner_id: str, db_id, photo: Photo) -> None: ...

    async def delete_photo(self, owner_id: str, db_id) -> None: ...

    async def delete_all(self, owner_id: str) -> int: ...

    async def signed_url(self, owner_id: str, db_id, thumb: bool = False) -> str: ...


def photo_metadata(owner_id: str, photo: Photo) -> dict:
    """Editable fields in the API's camelCase form."""
    return {
        "userId": owner_id,
        "location": photo.location,
        "lat": photo.lat,
        "lon": photo.lon,
        "date": photo.date,
        "noteTitle": photo.note_title or "",
        "noteDescription": photo.note_description or "",
        "country": photo.country,
        "countryCode": photo.country_code or None,
    }


class ApiRemoteStore:
    """RemoteStore backed by the bundled FastAPI service."""

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or settings.remote_api_url).rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.remote_timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, **kwargs):
        try:
            response = await self._get_client().request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e
        if response.is_error:
            raise RemoteStoreError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON") from e

    async def list_photos(self, owner_id: str) -> list[dict]:
        data = await self._request("GET", "/photos", params={"ownerId": owner_id})
        return data.get("photos", [])

    async def create_photo(self, owner_id: str, photo: Photo) -> dict:
        form = {k: str(v) for k, v in photo_metadata(owner_id, photo).items() if v is not None}
        files = None
        image = photo.image_bytes
        if image is None and is_data_url(photo.url):
            try:
                image = data_url_to_bytes(photo.url)
            except ValueError as e:
                logger.warning("Photo %s has an unreadable image, uploading metadata only: %s", photo.id, e)
        if image:
            files = {"file": (photo.filename or f"{photo.id}.jpg", image, "image/jpeg")}
        return await self._request("POST", "/photos", data=form, files=files)

    async def update_photo(self, owner_id: str, db_id, photo: Photo) -> None:
        await self._request("PUT", f"/photos/{db_id}", json=photo_metadata(owner_id, photo))

    async def delete_photo(self, owner_id: str, db_id) -> None:
        await self._request("DELETE", f"/photos/{db_id}", params={"ownerId": owner_id})

    async def delete_all(self, owner_id: str) -> int:
        data = await self._request("DELETE", "/photos", params={"ownerId": owner_id, "all": "true"})
        return data.get("count") or 0

    async def signed_url(self, owner_id: str, db_id, thumb: bool = False) -> str:
        data = await self._request(
            "GET",
            f"/photos/{db_id}/url",
            params={"ownerId": owner_id, "thumb": "true" if thumb else "false"},
        )
        url = data.get("url")
        if not url:
            raise RemoteStoreError(f"No URL returned for photo {db_id}")
        return url
