"""Travel Map Database Models."""

from travelmap.models.photo import Photo

__all__ = [
    "Photo",
]
