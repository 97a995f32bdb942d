import asyncio
import os
import random
import tempfile
from io import BytesIO

# Setup environment for testing, before any travelmap import
_TMP = tempfile.mkdtemp()
os.environ["TRAVELMAP_DATA_DIR"] = os.path.join(_TMP, "data")
os.environ["TRAVELMAP_STORAGE_DIR"] = os.path.join(_TMP, "objects")
os.environ["TRAVELMAP_DB_PATH"] = os.path.join(_TMP, "data", "test.db")
os.environ["TRAVELMAP_SIGNING_SECRET"] = "test-signing-secret"

import pytest
from PIL import Image

from travelmap.client.local_cache import FileKeyValueStore
from travelmap.client.remote import RemoteStoreError
from travelmap.services.geocoding import GeocodingError, ReverseResult


class FakeGeocoder:
    """Geocoder answering from a table; `gate` holds lookups until set."""

    def __init__(self):
        self.places: dict[tuple[float, float], ReverseResult] = {}
        self.calls: list[tuple[float, float]] = []
        self.search_calls: list[str] = []
        self.suggestions = []
        self.gate: asyncio.Event | None = None
        self.fail = False

    def place(self, lat, lon, city=None, country=None, country_code=None, state=None):
        address = {
            k: v
            for k, v in {
                "city": city, "state": state, "country": country, "country_code": country_code,
            }.items()
            if v
        }
        self.places[(round(lat, 4), round(lon, 4))] = ReverseResult(address=address)

    async def reverse(self, lat, lon):
        self.calls.append((lat, lon))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise GeocodingError("service unavailable")
        try:
            return self.places[(round(lat, 4), round(lon, 4))]
        except KeyError:
            raise GeocodingError(f"no address for ({lat}, {lon})")

    async def search(self, query):
        self.search_calls.append(query)
        return list(self.suggestions)


class FakeRemote:
    """In-memory RemoteStore speaking the API's camelCase rows."""

    def __init__(self):
        self.rows: dict[int, dict] = {}
        self.next_id = 1
        self.fail = False
        self.created = 0
        self.updated: list = []
        self.deleted: list = []
        self.url_calls = 0
        # holds create_photo after its request is sent, until set
        self.create_gate: asyncio.Event | None = None

    def _check(self):
        if self.fail:
            raise RemoteStoreError("remote unavailable", status_code=503)

    def add_row(self, owner, lat, lon, location=None, country=None, storage=True):
        row_id = self.next_id
        self.next_id += 1
        self.rows[row_id] = {
            "id": row_id,
            "userId": owner,
            "lat": lat,
            "lon": lon,
            "location": location,
            "date": "2024:05:01 10:00:00",
            "country": country,
            "countryCode": None,
            "noteTitle": "",
            "noteDescription": "",
            "storagePath": f"photos/{owner}/{row_id}.jpg" if storage else None,
            "thumbPath": f"photos/{owner}/thumbs/{row_id}.jpg" if storage else None,
            "imageUrl": None,
            "thumbUrl": None,
            "hasImage": storage,
        }
        return self.rows[row_id]

    async def list_photos(self, owner_id):
        self._check()
        return [dict(r) for r in self.rows.values() if r["userId"] == owner_id]

    async def create_photo(self, owner_id, photo):
        self._check()
        sent = (photo.lat, photo.lon, photo.location, photo.country)
        if self.create_gate is not None:
            await self.create_gate.wait()
        self.created += 1
        row = self.add_row(owner_id, *sent)
        return dict(row)

    async def update_photo(self, owner_id, db_id, photo):
        self._check()
        self.updated.append(db_id)
        row = self.rows[db_id]
        row.update(location=photo.location, country=photo.country, noteTitle=photo.note_title)

    async def delete_photo(self, owner_id, db_id):
        self._check()
        self.deleted.append(db_id)
        self.rows.pop(db_id, None)

    async def delete_all(self, owner_id):
        self._check()
        ids = [i for i, r in self.rows.items() if r["userId"] == owner_id]
        for row_id in ids:
            del self.rows[row_id]
        return len(ids)

    async def signed_url(self, owner_id, db_id, thumb=False):
        self.url_calls += 1
        self._check()
        suffix = "-thumb" if thumb else ""
        return f"https://remote.test/files/{db_id}{suffix}?n={self.url_calls}"


def _dms(value: float) -> tuple[float, float, float]:
    degrees = int(value)
    minutes_float = (value - degrees) * 60
    minutes = int(minutes_float)
    seconds = round((minutes_float - minutes) * 60, 4)
    return float(degrees), float(minutes), seconds


def make_jpeg(width=64, height=48, gps=None, date=None, noise=False, seed=0) -> bytes:
    """JPEG bytes, optionally with EXIF GPS/date and incompressible content."""
    if noise:
        rng = random.Random(seed)
        img = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
    else:
        img = Image.new("RGB", (width, height), (200, 120, 40))

    exif = Image.Exif()
    if date:
        exif[0x0132] = date
    if gps:
        lat, lon = gps
        exif[0x8825] = {
            1: "N" if lat >= 0 else "S",
            2: _dms(abs(lat)),
            3: "E" if lon >= 0 else "W",
            4: _dms(abs(lon)),
        }

    out = BytesIO()
    if len(exif):
        img.save(out, "JPEG", quality=90, exif=exif)
    else:
        img.save(out, "JPEG", quality=90)
    return out.getvalue()


@pytest.fixture
def jpeg():
    return make_jpeg


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def kv(tmp_path):
    return FileKeyValueStore(tmp_path / "local", quota_bytes=50 * 1024 * 1024)
