"""Remote photo record."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Photo(SQLModel, table=True):
    __tablename__ = "photos"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    location: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    date: Optional[str] = None
    note_title: str = ""
    note_description: str = ""
    country: Optional[str] = None
    country_code: Optional[str] = None
    has_image: bool = Field(default=False)
    storage_path: Optional[str] = None
    thumb_path: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
