"""Persistence synchronizer: local durable cache and remote store tiers.

The in-memory AppState is the source of truth. The local cache is rewritten
wholesale after count-changing operations; remote writes are per-photo and
non-blocking. Neither tier's failure reaches the caller: failures are logged
and, for capacity problems, surfaced as a notice.
"""

import asyncio
import logging
from typing import Callable, Optional

from travelmap.client.local_cache import (
    CachedPhoto,
    KeyValueStore,
    StorageQuotaExceeded,
    decode_payload,
    encode_envelope,
)
from travelmap.client.models import Photo
from travelmap.client.remote import RemoteStore, RemoteStoreError
from travelmap.client.state import AppState
from travelmap.config import settings
from travelmap.utils.image import compress_data_url

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]


class PersistenceSynchronizer:
    def __init__(
        self,
        state: AppState,
        local: KeyValueStore,
        remote: Optional[RemoteStore] = None,
        notify: Optional[Notify] = None,
        max_bytes: int | None = None,
    ):
        self.state = state
        self.local = local
        self.remote = remote
        self.notify = notify or (lambda message, kind: None)
        self.max_bytes = settings.local_max_bytes if max_bytes is None else max_bytes
        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

    # --- Background work ---

    def spawn(self, coro) -> asyncio.Task:
        """Run a sync coroutine in the background, keeping a reference until done."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Local cache ---

    def storage_key(self) -> str:
        user_id = self.state.user_id
        if not user_id:
            logger.warning("No user id, using the generic storage key")
            return settings.photos_storage_key
        return f"{settings.photos_storage_key}:{user_id}"

    async def _compress_all(self, records: list[CachedPhoto], max_width: int, quality: float) -> list[CachedPhoto]:
        compressed = []
        for record in records:
            url = await asyncio.to_thread(compress_data_url, record.url, max_width, quality)
            compressed.append(record.model_copy(update={"url": url}))
        return compressed

    def _write(self, key: str, value: str) -> None:
        """Write once, retrying a single time on a non-capacity failure."""
        try:
            self.local.set_item(key, value)
        except StorageQuotaExceeded:
            raise
        except OSError as e:
            logger.warning("Local write failed, retrying once: %s", e)
            self.local.set_item(key, value)

    def _is_stale(self, epoch: int) -> bool:
        if epoch != self.state.save_epoch:
            logger.info("Photos removed while saving, discarding the outdated local snapshot")
            return True
        return False

    async def save_local(self) -> bool:
        """Persist every photo that carries image data. Returns True if something was written.

        Saves run one at a time. A save whose snapshot lost photos to a delete,
        reset or import while it was compressing writes nothing; the save
        scheduled by that operation supersedes it.
        """
        async with self._save_lock:
            return await self._save_snapshot()

    async def _save_snapshot(self) -> bool:
        key = self.storage_key()
        epoch = self.state.save_epoch
        photos = [p for p in self.state if p.has_image and p.url and p.has_coordinates]
        if not photos:
            logger.info("No photos with image data to save locally")
            try:
                self.local.remove_item(key)
            except OSError as e:
                logger.warning("Could not clear local cache %s: %s", key, e)
            return False

        records = [CachedPhoto.from_photo(p, p.url) for p in photos]
        records = await self._compress_all(records, settings.compress_max_width, settings.compress_quality)
        payload = encode_envelope(records)
        logger.info("Local payload: %.2f MB (schema v%d)", len(payload) / (1024 * 1024), settings.schema_version)

        if len(payload) > self.max_bytes:
            logger.warning("Local payload too large, recompressing at lower quality")
            records = await self._compress_all(
                records, settings.low_quality_max_width, settings.low_quality_quality
            )
            payload = encode_envelope(records)

        if self._is_stale(epoch):
            return False
        try:
            self._write(key, payload)
            logger.info("Saved %d photos locally", len(records))
            return True
        except StorageQuotaExceeded as e:
            logger.warning("Local storage full, keeping only the newest photos: %s", e)
            self.notify("Espacio limitado: algunas fotos no se guardarán", "error")
        except OSError as e:
            logger.error("Error saving photos locally: %s", e)
            return False

        newest = [CachedPhoto.from_photo(p, p.url) for p in photos[-settings.fallback_photo_count:]]
        newest = await self._compress_all(newest, settings.minimum_max_width, settings.minimum_quality)
        if self._is_stale(epoch):
            return False
        try:
            self._write(key, encode_envelope(newest))
        except (StorageQuotaExceeded, OSError) as e:
            logger.error("Could not save photos locally: %s", e)
            return False
        logger.info("Saved the newest %d photos locally (compressed)", len(newest))
        return True

    def load_local(self) -> list[Photo]:
        """Decode the cached photos of the current user. Nothing is added to the store."""
        key = self.storage_key()
        try:
            text = self.local.get_item(key)
        except OSError as e:
            logger.error("Error reading local cache: %s", e)
            return []

        if text is None:
            generic = settings.photos_storage_key
            if key != generic and self.local.get_item(generic) is not None:
                logger.warning("Found photos from an older session without user id, removing")
                self.local.remove_item(generic)
            return []

        try:
            version, photos = decode_payload(text)
        except ValueError as e:
            logger.error("Unrecognized local cache data: %s", e)
            return []
        if version == 0:
            logger.info("Loading %d photos (legacy format, migrating)", len(photos))
        else:
            logger.info("Loading %d photos (schema v%d)", len(photos), version)
        return photos

    def clear_local(self) -> None:
        self.local.remove_item(self.storage_key())

    # --- Remote store ---

    def _remote_owner(self) -> Optional[str]:
        if self.remote is None:
            return None
        if not self.state.user_id:
            logger.warning("No user id, skipping remote sync")
            return None
        return self.state.user_id

    async def sync_create(self, photo: Photo) -> bool:
        """Create the remote copy of a photo once. Failure leaves db_id unset."""
        if photo.id in self.state.synced_ids:
            return True
        owner = self._remote_owner()
        if owner is None:
            return False

        generation = photo.generation
        try:
            row = await self.remote.create_photo(owner, photo)
        except RemoteStoreError as e:
            logger.warning("Remote upload failed for %s: %s", photo.id, e)
            return False

        if photo.id not in self.state:
            logger.info("Photo %s was deleted during upload, removing remote copy", photo.id)
            try:
                await self.remote.delete_photo(owner, row["id"])
            except (RemoteStoreError, KeyError) as e:
                logger.warning("Could not remove orphaned remote photo: %s", e)
            return False

        photo.mark_synced(row.get("id"), row.get("storagePath"), row.get("thumbPath"))
        photo.image_url = row.get("imageUrl")
        photo.thumb_url = row.get("thumbUrl")
        self.state.synced_ids.add(photo.id)
        logger.info("Photo uploaded to remote store: %s", photo.id)
        if photo.generation != generation:
            # the create carried metadata that was edited or geocoded meanwhile
            await self.update_remote(photo)
        return True

    async def update_remote(self, photo: Photo) -> bool:
        if not photo.db_id:
            return False
        owner = self._remote_owner()
        if owner is None:
            return False
        try:
            await self.remote.update_photo(owner, photo.db_id, photo)
        except RemoteStoreError as e:
            logger.warning("Remote update failed for %s: %s", photo.id, e)
            return False
        return True

    async def delete_remote(self, photo: Photo) -> bool:
        if not photo.db_id:
            return False
        owner = self._remote_owner()
        if owner is None:
            return False
        try:
            await self.remote.delete_photo(owner, photo.db_id)
        except RemoteStoreError as e:
            logger.warning("Remote delete failed for %s: %s", photo.id, e)
            return False
        return True

    async def delete_all_remote(self) -> Optional[int]:
        owner = self._remote_owner()
        if owner is None:
            return None
        try:
            count = await self.remote.delete_all(owner)
        except RemoteStoreError as e:
            logger.warning("Remote delete-all failed: %s", e)
            return None
        logger.info("Deleted %d remote photos", count)
        return count

    async def load_remote(self) -> list[Photo]:
        """Merge remote-only rows into the store. Returns the merged photos."""
        owner = self._remote_owner()
        if owner is None:
            return []
        try:
            rows = await self.remote.list_photos(owner)
        except RemoteStoreError as e:
            logger.warning("Failed to load photos from remote store: %s", e)
            return []

        merged = []
        for row in rows:
            db_id = row.get("id")
            if db_id is None or self.state.find_by_db_id(db_id) is not None:
                continue
            if row.get("lat") is None or row.get("lon") is None:
                logger.warning("Remote photo %s has no coordinates, skipped", db_id)
                continue
            photo = photo_from_row(row)
            self.state.add(photo)
            self.state.synced_ids.add(photo.id)
            merged.append(photo)
        logger.info("Loaded %d photos from remote store (%d new)", len(rows), len(merged))
        return merged


def photo_from_row(row: dict) -> Photo:
    """A remote-only photo: no session image, URLs fetched on demand."""
    return Photo(
        id=f"db_{row['id']}",
        db_id=row["id"],
        lat=row["lat"],
        lon=row["lon"],
        date=row.get("date") or settings.unknown_date,
        location=row.get("location"),
        country=row.get("country"),
        country_code=row.get("countryCode"),
        note_title=row.get("noteTitle") or "",
        note_description=row.get("noteDescription") or "",
        storage_path=row.get("storagePath"),
        thumb_path=row.get("thumbPath"),
        image_url=row.get("imageUrl"),
        thumb_url=row.get("thumbUrl"),
        has_image=bool(row.get("storagePath")),
        url=None,
    )
