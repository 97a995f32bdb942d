"""Photo request/response schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PhotoFields(CamelModel):
    """Editable photo metadata shared by create and update."""

    location: Optional[str] = Field(default=None, max_length=500)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    date: Optional[str] = None
    note_title: str = Field(default="", max_length=200)
    note_description: str = Field(default="", max_length=1000)
    country: Optional[str] = Field(default=None, max_length=100)
    country_code: Optional[str] = Field(default=None, pattern=r"^[A-Z]{2}$")


class PhotoCreateRequest(PhotoFields):
    user_id: str = Field(min_length=1, max_length=100)


class PhotoUpdateRequest(PhotoFields):
    user_id: str = Field(min_length=1, max_length=100)


class PhotoResponse(CamelModel):
    id: int
    user_id: str
    location: Optional[str]
    lat: Optional[float]
    lon: Optional[float]
    date: Optional[str]
    note_title: str
    note_description: str
    country: Optional[str]
    country_code: Optional[str]
    has_image: bool
    storage_path: Optional[str]
    thumb_path: Optional[str]
    image_url: Optional[str] = None
    thumb_url: Optional[str] = None
    created_at: str


class PhotoListResponse(CamelModel):
    photos: list[PhotoResponse]


class PhotoUrlResponse(CamelModel):
    url: str


class MessageResponse(CamelModel):
    message: str
    count: Optional[int] = None
