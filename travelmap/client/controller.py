"""Travel map controller: the single owner of a session's application state.

Every user action enters here. The controller mutates AppState synchronously
and hands slow work (EXIF decoding, geocoding, local and remote writes) to
background tasks whose completion handlers re-check the state they touch.
"""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from travelmap.client.backup import BackupError, export_backup, parse_backup
from travelmap.client.grouping import GroupingEngine
from travelmap.client.local_cache import KeyValueStore
from travelmap.client.map import MapCanvas
from travelmap.client.models import CitySuggestion, PendingPhoto, Photo, Stats, new_photo_id
from travelmap.client.reconcile import GeocodingReconciler
from travelmap.client.remote import RemoteStore
from travelmap.client.state import AppState
from travelmap.client.stats import compute_stats, photos_by_country
from travelmap.client.sync import PersistenceSynchronizer
from travelmap.client.urls import FULL, UrlCache
from travelmap.config import settings
from travelmap.services.geocoding import Geocoder
from travelmap.utils.exif import extract_exif
from travelmap.utils.image import bytes_to_data_url

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
INFO = "info"


class PlacementError(Exception):
    """A placement action was requested with nothing to place or no city chosen."""


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


@dataclass
class UploadBatch:
    """Completion bookkeeping of one upload_files call."""

    remaining: int
    placed: int = 0


class TravelMapController:
    def __init__(
        self,
        identity: Callable[[], Optional[str]],
        geocoder: Geocoder,
        local: KeyValueStore,
        remote: Optional[RemoteStore] = None,
        notify: Optional[Callable[[str, str], None]] = None,
        confirm: Callable[[str], bool] = lambda message: False,
        debounce_seconds: float | None = None,
        settle_seconds: float | None = None,
        stagger_seconds: float | None = None,
        local_max_bytes: int | None = None,
    ):
        self.identity = identity
        self.geocoder = geocoder
        self.remote = remote
        self._notify = notify
        self.confirm = confirm
        self.settle_seconds = settings.map_settle_seconds if settle_seconds is None else settle_seconds
        self.stagger_seconds = (
            settings.geocode_stagger_seconds if stagger_seconds is None else stagger_seconds
        )

        self.state = AppState()
        self.map: Optional[MapCanvas] = None
        self.grouping = GroupingEngine(
            self.state, lambda: self.map, on_city_click=self.open_city, debounce_seconds=debounce_seconds
        )
        self.sync = PersistenceSynchronizer(
            self.state, local, remote, notify=self.notify, max_bytes=local_max_bytes
        )
        self.reconciler = GeocodingReconciler(
            self.state, geocoder, self.grouping, on_applied=self._on_place_resolved
        )
        self.urls = UrlCache(remote, get_owner=lambda: self.state.user_id)

        self.selected_city: Optional[CitySuggestion] = None
        self.open_city_name: Optional[str] = None

    def notify(self, message: str, kind: str = INFO) -> None:
        logger.debug("Notice (%s): %s", kind, message)
        if self._notify is not None:
            self._notify(message, kind)

    # --- Session lifecycle ---

    async def start(self) -> bool:
        """Begin a session for the authenticated user and load their photos."""
        user_id = self.identity()
        if not user_id:
            logger.info("User not authenticated, waiting for login")
            return False
        if self.state.user_id is not None:
            logger.info("Reinitializing for a new session")
            self._clear_session()
        self.state.user_id = user_id
        logger.info("Starting travel map for user %s", user_id)
        await self.load()
        return True

    def logout(self) -> None:
        self._clear_session()
        self.state.user_id = None
        self.state.cancel_timers()

    def _clear_session(self) -> None:
        self.grouping.clear_markers()
        self.state.reset()
        self.state.pending.clear()
        self.urls.clear()
        self.selected_city = None
        self.open_city_name = None

    async def close(self) -> None:
        self.state.cancel_timers()
        await self.drain()
        for collaborator in (self.geocoder, self.remote):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()

    async def drain(self) -> None:
        """Wait for all background work, then apply any pending marker refresh."""
        while self.reconciler.in_flight or self.sync.in_flight:
            await self.reconciler.wait_idle()
            await self.sync.wait_idle()
        self.grouping.flush()

    # --- Map ---

    def attach_map(self, canvas: MapCanvas) -> None:
        """Attach a map; auto-fitting starts once it has had time to settle."""
        self.map = canvas
        self.state.map_settled = False
        if self.state.settle_handle is not None:
            self.state.settle_handle.cancel()
        loop = asyncio.get_running_loop()
        self.state.settle_handle = loop.call_later(self.settle_seconds, self._on_map_settled)
        self.grouping.refresh_markers()

    def _on_map_settled(self) -> None:
        self.state.settle_handle = None
        self.state.map_settled = True
        self.grouping.refresh_markers()

    def fit_to_photos(self) -> bool:
        if self.map is None or not self.state.markers:
            self.notify("No hay fotos en el mapa", ERROR)
            return False
        self.map.fit_bounds(
            [(m.lat, m.lon) for m in self.state.markers],
            padding=settings.map_fit_padding * 2,
            max_zoom=settings.map_max_zoom,
        )
        count = len(self.state.markers)
        self.notify(f"Mostrando {count} {_plural(count, 'ubicación', 'ubicaciones')}", SUCCESS)
        return True

    def open_city(self, city: str) -> list[Photo]:
        """Select a city (marker click) and return its photos."""
        self.open_city_name = city
        return self.city_photos(city)

    def city_photos(self, city: str) -> list[Photo]:
        group = self.state.city_groups.get(city)
        if group is None:
            return []
        return [self.state.photos[pid] for pid in group.photo_ids if pid in self.state.photos]

    # --- Loading ---

    async def load(self) -> int:
        """Load the local cache, then merge remote-only photos. Returns the photo count."""
        for index, photo in enumerate(self.sync.load_local()):
            if photo.id in self.state:
                continue
            self.state.add(photo)
            self.grouping.assign_photo(photo)
            if photo.db_id:
                self.state.synced_ids.add(photo.id)
            else:
                self.sync.spawn(self.sync.sync_create(photo))
            if photo.location == settings.default_location or not photo.country_code:
                self.reconciler.resolve_place(
                    photo.lat, photo.lon, photo.id, delay=self.stagger_seconds * (index % 5)
                )
        loaded = len(self.state)

        for photo in await self.sync.load_remote():
            if photo.id in self.state:
                self.grouping.assign_photo(photo)
        logger.info("%d photos loaded (%d from local cache)", len(self.state), loaded)
        return len(self.state)

    # --- Upload ---

    async def upload_files(self, files: Iterable[tuple[str, bytes]]) -> None:
        """Decode uploads concurrently; placed photos go on the map, the rest are queued."""
        files = list(files)
        if not files:
            return
        batch = UploadBatch(remaining=len(files))
        await asyncio.gather(*(self._process_file(name, data, batch) for name, data in files))

    async def _process_file(self, filename: str, data: bytes, batch: UploadBatch) -> None:
        try:
            meta = await asyncio.to_thread(extract_exif, data)
            if meta["width"] is None:
                logger.warning("Could not read image %s, skipped", filename)
                return

            mime_type = mimetypes.guess_type(filename)[0] or "image/jpeg"
            url = bytes_to_data_url(data, mime_type)
            date = meta["date"] or settings.unknown_date
            lat, lon = meta["latitude"], meta["longitude"]

            if lat is not None and lon is not None:
                photo = Photo(
                    lat=lat,
                    lon=lon,
                    date=date,
                    location=settings.default_location,
                    country=settings.default_country,
                    url=url,
                    image_bytes=data,
                    filename=filename,
                )
                self.state.add(photo)
                self.grouping.assign_photo(photo)
                self.sync.spawn(self.sync.sync_create(photo))
                self.reconciler.resolve_place(lat, lon, photo.id)
                batch.placed += 1
            else:
                self.state.pending.append(PendingPhoto(
                    id=new_photo_id(), url=url, date=date, image_bytes=data, filename=filename
                ))
        finally:
            batch.remaining -= 1
            if batch.remaining == 0:
                self._on_upload_complete(batch)

    def _on_upload_complete(self, batch: UploadBatch) -> None:
        self.sync.spawn(self.sync.save_local())
        pending = len(self.state.pending)
        if pending:
            self.notify(
                f"{pending} {_plural(pending, 'foto', 'fotos')} sin GPS - selecciona la ciudad", INFO
            )
            self.selected_city = None
        elif batch.placed:
            count = batch.placed
            self.notify(
                f"{count} {_plural(count, 'foto cargada', 'fotos cargadas')} exitosamente", SUCCESS
            )

    # --- Manual placement ---

    @property
    def current_pending(self) -> Optional[PendingPhoto]:
        return self.state.pending[0] if self.state.pending else None

    async def search_cities(self, query: str) -> list[CitySuggestion]:
        return await self.reconciler.search_cities(query)

    def select_city(self, suggestion: CitySuggestion) -> None:
        self.selected_city = suggestion

    def confirm_city(self) -> Photo:
        """Place the head of the pending queue at the selected city."""
        pending = self.current_pending
        city = self.selected_city
        if pending is None:
            raise PlacementError("No photo is waiting for a city")
        if city is None:
            raise PlacementError("No city selected")

        photo = Photo(
            id=pending.id,
            lat=city.lat,
            lon=city.lon,
            date=pending.date,
            location=city.label,
            country=city.country or None,
            country_code=city.country_code or None,
            url=pending.url,
            image_bytes=pending.image_bytes,
            filename=pending.filename,
        )
        self.state.add(photo)
        self.state.pending.popleft()
        self.selected_city = None
        self.grouping.assign_photo(photo)
        self.sync.spawn(self.sync.sync_create(photo))
        self.sync.spawn(self.sync.save_local())
        if not self.state.pending:
            self.notify("Todas las fotos han sido procesadas", SUCCESS)
        return photo

    def skip_pending(self) -> None:
        """Drop the head of the pending queue without placing it."""
        if self.current_pending is None:
            raise PlacementError("No photo is waiting for a city")
        self.state.pending.popleft()
        self.selected_city = None
        if not self.state.pending and len(self.state):
            self.notify("Fotos procesadas (algunas omitidas)", SUCCESS)
            self.sync.spawn(self.sync.save_local())

    # --- Notes ---

    def save_note(self, photo_id: str, title: str, description: str) -> bool:
        photo = self.state.get(photo_id)
        if photo is None:
            return False
        title, description = title.strip(), description.strip()
        photo.update(note_title=title, note_description=description)
        self.sync.spawn(self.sync.update_remote(photo))
        self.sync.spawn(self.sync.save_local())
        self.notify("Nota guardada exitosamente" if title or description else "Nota eliminada", SUCCESS)
        return True

    # --- Geocoding results ---

    def _on_place_resolved(self, photo: Photo) -> None:
        self.sync.spawn(self.sync.update_remote(photo))
        self.sync.spawn(self.sync.save_local())

    # --- Deletion ---

    def toggle_selection(self, photo_id: str) -> bool:
        """Flip a photo's selection. Returns whether it is now selected."""
        if photo_id in self.state.selected_ids:
            self.state.selected_ids.discard(photo_id)
            return False
        if photo_id not in self.state:
            return False
        self.state.selected_ids.add(photo_id)
        return True

    def delete_selected(self) -> int:
        """Remove the selected photos locally now; remote deletes run in the background."""
        ids = [pid for pid in self.state.selected_ids if pid in self.state]
        if not ids:
            return 0
        count = len(ids)
        noun = _plural(count, "foto seleccionada", "fotos seleccionadas")
        if not self.confirm(f"¿Estás seguro de que quieres eliminar {count} {noun}?"):
            return 0

        self.grouping.unassign_photos(ids)
        for photo_id in ids:
            photo = self.state.remove(photo_id)
            self.urls.invalidate(photo_id)
            self.state.synced_ids.discard(photo_id)
            if photo is not None and photo.db_id:
                self.sync.spawn(self.sync.delete_remote(photo))
        self.sync.spawn(self.sync.save_local())
        self.notify(f"{count} {_plural(count, 'foto eliminada', 'fotos eliminadas')} exitosamente", SUCCESS)
        return count

    async def delete_all(self) -> bool:
        if not self.confirm(
            "¿Estás seguro de que quieres eliminar TODAS las fotos? Esta acción no se puede deshacer."
        ):
            return False
        self.grouping.clear_markers()
        self.state.reset()
        self.urls.clear()
        try:
            self.sync.clear_local()
        except OSError as e:
            logger.warning("Could not clear local cache: %s", e)
        if self.map is not None:
            self.map.set_view((0.0, 0.0), 3)
        await self.sync.delete_all_remote()
        self.notify("Todas las fotos han sido eliminadas", SUCCESS)
        return True

    # --- Backup ---

    def export_backup(self) -> Optional[str]:
        """Backup file contents, or None when there is nothing to export."""
        try:
            content = export_backup(self.state)
        except BackupError as e:
            self.notify(str(e), ERROR)
            return None
        self.notify(f"Backup exportado: {len(self.state)} fotos", SUCCESS)
        return content

    async def import_backup(self, text: str) -> int:
        """Replace the current photos with a backup's. Returns the number imported."""
        try:
            photos = parse_backup(text, confirm_legacy=self.confirm)
        except BackupError as e:
            self.notify(str(e), ERROR)
            return 0

        action = "reemplazará" if len(self.state) else "cargará"
        if not self.confirm(f"¿Importar {len(photos)} fotos?\n\nEsto {action} las fotos actuales."):
            return 0

        self.grouping.clear_markers()
        self.state.cancel_refresh()
        self.state.clear_photos()
        self.urls.clear()
        for photo in photos:
            if photo.id in self.state:
                photo.id = new_photo_id()
            self.state.add(photo)
            self.grouping.assign_photo(photo)

        await self.sync.save_local()
        self.notify(f"{len(photos)} fotos importadas exitosamente", SUCCESS)
        return len(photos)

    # --- Views ---

    def stats(self) -> Stats:
        return compute_stats(self.state)

    def photos_in_country(self, country: str) -> list[Photo]:
        return photos_by_country(self.state, country)

    async def display_url(self, photo_id: str, variant: str = FULL) -> Optional[str]:
        photo = self.state.get(photo_id)
        if photo is None:
            return None
        return await self.urls.get_display_url(photo, variant)
