"""Photo API endpoints."""

import mimetypes

import jwt
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError
from sqlmodel import Session

from travelmap.api.deps import api_limiter, delete_limiter, get_owner_id, upload_limiter
from travelmap.config import settings
from travelmap.database import get_session
from travelmap.models.photo import Photo
from travelmap.schemas.photo import (
    MessageResponse,
    PhotoCreateRequest,
    PhotoListResponse,
    PhotoResponse,
    PhotoUpdateRequest,
    PhotoUrlResponse,
)
from travelmap.services.photo_service import (
    IMAGE_TYPES,
    create_photo,
    delete_all_photos,
    delete_photo,
    get_owned_photo,
    list_photos,
    signed_urls,
    update_photo,
)
from travelmap.utils.security import create_signed_url, decode_file_token
from travelmap.utils.storage import resolve_path

router = APIRouter(prefix="/photos", tags=["photos"], dependencies=[Depends(api_limiter)])
files_router = APIRouter(prefix="/files", tags=["files"])


def _photo_to_response(p: Photo) -> PhotoResponse:
    image_url, thumb_url = signed_urls(p)
    return PhotoResponse(
        id=p.id,
        user_id=p.user_id,
        location=p.location,
        lat=p.lat,
        lon=p.lon,
        date=p.date,
        note_title=p.note_title,
        note_description=p.note_description,
        country=p.country,
        country_code=p.country_code,
        has_image=bool(p.has_image),
        storage_path=p.storage_path,
        thumb_path=p.thumb_path,
        image_url=image_url,
        thumb_url=thumb_url,
        created_at=p.created_at.isoformat() if p.created_at else "",
    )


def _validation_error(e: ValidationError) -> HTTPException:
    details = [
        {"field": ".".join(str(x) for x in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "Validation failed", "details": details},
    )


@router.get("", response_model=PhotoListResponse)
def get_photos(
    owner_id: str = Depends(get_owner_id),
    session: Session = Depends(get_session),
):
    """List an owner's photos with signed URLs, newest first."""
    photos = list_photos(owner_id, session)
    return PhotoListResponse(photos=[_photo_to_response(p) for p in photos])


@router.get("/{photo_id}/url", response_model=PhotoUrlResponse)
def get_photo_url(
    photo_id: int,
    thumb: bool = Query(default=False),
    owner_id: str = Depends(get_owner_id),
    session: Session = Depends(get_session),
):
    """Fresh signed URL for the full image or its thumbnail."""
    photo = get_owned_photo(photo_id, owner_id, session)
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")

    storage_path = photo.thumb_path if thumb else photo.storage_path
    if not storage_path:
        raise HTTPException(status_code=404, detail="File not found in storage")
    return PhotoUrlResponse(url=create_signed_url(storage_path))


@router.post("", response_model=PhotoResponse, dependencies=[Depends(upload_limiter)])
def post_photo(
    user_id: str = Form(alias="userId"),
    location: str | None = Form(default=None),
    lat: float | None = Form(default=None),
    lon: float | None = Form(default=None),
    date: str | None = Form(default=None),
    note_title: str = Form(default="", alias="noteTitle"),
    note_description: str = Form(default="", alias="noteDescription"),
    country: str | None = Form(default=None),
    country_code: str | None = Form(default=None, alias="countryCode"),
    file: UploadFile | None = File(default=None),
    session: Session = Depends(get_session),
):
    """Create a photo record, optionally with its image file."""
    try:
        request = PhotoCreateRequest(
            user_id=user_id.strip(),
            location=location,
            lat=lat,
            lon=lon,
            date=date,
            note_title=note_title.strip(),
            note_description=note_description.strip(),
            country=country,
            country_code=country_code or None,
        )
    except ValidationError as e:
        raise _validation_error(e)

    file_data = None
    filename = None
    if file is not None:
        content_type = file.content_type or "application/octet-stream"
        if content_type not in IMAGE_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {content_type}")
        file_data = file.file.read()
        if len(file_data) > settings.max_upload_bytes:
            raise HTTPException(status_code=413, detail="File too large (max 10MB)")
        filename = file.filename

    photo = create_photo(request, session, file_data=file_data or None, filename=filename)
    return _photo_to_response(photo)


@router.put("/{photo_id}", response_model=MessageResponse)
def put_photo(
    photo_id: int,
    request: PhotoUpdateRequest,
    session: Session = Depends(get_session),
):
    """Update a photo's editable fields."""
    if not update_photo(photo_id, request, session):
        raise HTTPException(status_code=404, detail="Photo not found")
    return MessageResponse(message="Photo updated successfully")


@router.delete("/{photo_id}", response_model=MessageResponse, dependencies=[Depends(delete_limiter)])
def remove_photo(
    photo_id: int,
    owner_id: str = Depends(get_owner_id),
    session: Session = Depends(get_session),
):
    """Delete a photo and its stored files."""
    if not delete_photo(photo_id, owner_id, session):
        raise HTTPException(status_code=404, detail="Photo not found")
    return MessageResponse(message="Photo deleted successfully")


@router.delete("", response_model=MessageResponse, dependencies=[Depends(delete_limiter)])
def remove_all_photos(
    delete_all: bool = Query(default=False, alias="all"),
    owner_id: str = Depends(get_owner_id),
    session: Session = Depends(get_session),
):
    """Delete every photo of an owner. Requires all=true."""
    if not delete_all:
        raise HTTPException(status_code=400, detail="all must be true for bulk deletion")
    count = delete_all_photos(owner_id, session)
    return MessageResponse(message=f"Deleted {count} photos successfully", count=count)


@files_router.get("/{token}")
def get_file(token: str):
    """Serve a stored object for a valid, unexpired signed token."""
    try:
        storage_path = decode_file_token(token)
        file_path = resolve_path(storage_path)
    except (jwt.PyJWTError, ValueError):
        raise HTTPException(status_code=403, detail="Invalid or expired link")

    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    return FileResponse(path=str(file_path), media_type=media_type)
