"""Remote photo store business logic: records, blobs and signed URLs."""

import logging
from datetime import datetime, timezone

from sqlmodel import Session, col, select

from travelmap.models.photo import Photo
from travelmap.schemas.photo import PhotoCreateRequest, PhotoUpdateRequest
from travelmap.utils.security import create_signed_url
from travelmap.utils.storage import delete_file, upload_image_with_thumbnail

logger = logging.getLogger(__name__)

# Supported upload MIME types
IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
    "image/gif": ".gif",
}


def list_photos(owner_id: str, session: Session) -> list[Photo]:
    """All photos of an owner, newest first."""
    return list(session.exec(
        select(Photo)
        .where(Photo.user_id == owner_id)
        .order_by(col(Photo.created_at).desc(), col(Photo.id).desc())
    ).all())


def get_owned_photo(photo_id: int, owner_id: str, session: Session) -> Photo | None:
    photo = session.get(Photo, photo_id)
    if not photo or photo.user_id != owner_id:
        return None
    return photo


def signed_urls(photo: Photo) -> tuple[str | None, str | None]:
    """Signed (image, thumbnail) URLs; a path that cannot be signed yields None."""
    image_url = thumb_url = None
    if photo.storage_path:
        try:
            image_url = create_signed_url(photo.storage_path)
        except Exception as e:
            logger.error("Error generating signed URL for photo %s: %s", photo.id, e)
    if photo.thumb_path:
        try:
            thumb_url = create_signed_url(photo.thumb_path)
        except Exception as e:
            logger.error("Error generating signed URL for thumbnail %s: %s", photo.id, e)
    return image_url, thumb_url


def create_photo(
    request: PhotoCreateRequest,
    session: Session,
    file_data: bytes | None = None,
    filename: str | None = None,
) -> Photo:
    """Insert a photo record, storing the image and its thumbnail when provided.

    A storage failure does not block the record: it is created without image.
    """
    storage_path = thumb_path = None
    if file_data:
        try:
            storage_path, thumb_path = upload_image_with_thumbnail(
                file_data, filename or "photo.jpg", request.user_id
            )
        except Exception as e:
            logger.error("Error uploading to storage: %s", e)
            storage_path = thumb_path = None

    photo = Photo(
        user_id=request.user_id,
        location=request.location,
        lat=request.lat,
        lon=request.lon,
        date=request.date,
        note_title=request.note_title or "",
        note_description=request.note_description or "",
        country=request.country,
        country_code=request.country_code,
        has_image=storage_path is not None,
        storage_path=storage_path,
        thumb_path=thumb_path,
    )
    session.add(photo)
    session.commit()
    session.refresh(photo)
    logger.info("Photo %s created for %s (image: %s)", photo.id, photo.user_id, photo.has_image)
    return photo


def update_photo(photo_id: int, request: PhotoUpdateRequest, session: Session) -> Photo | None:
    """Overwrite the editable fields of an owned photo."""
    photo = get_owned_photo(photo_id, request.user_id, session)
    if not photo:
        return None

    photo.location = request.location
    photo.lat = request.lat
    photo.lon = request.lon
    photo.date = request.date
    photo.note_title = request.note_title or ""
    photo.note_description = request.note_description or ""
    photo.country = request.country
    photo.country_code = request.country_code
    photo.updated_at = datetime.now(timezone.utc)

    session.add(photo)
    session.commit()
    session.refresh(photo)
    return photo


def _delete_blobs(photo: Photo) -> None:
    for path in (photo.storage_path, photo.thumb_path):
        if path:
            delete_file(path)


def delete_photo(photo_id: int, owner_id: str, session: Session) -> bool:
    """Delete a photo's blobs, then its record."""
    photo = get_owned_photo(photo_id, owner_id, session)
    if not photo:
        return False
    _delete_blobs(photo)
    session.delete(photo)
    session.commit()
    return True


def delete_all_photos(owner_id: str, session: Session) -> int:
    """Delete every photo of an owner. Returns the number of records removed."""
    photos = list_photos(owner_id, session)
    for photo in photos:
        _delete_blobs(photo)
        session.delete(photo)
    session.commit()
    logger.info("Deleted %d photos for %s", len(photos), owner_id)
    return len(photos)
