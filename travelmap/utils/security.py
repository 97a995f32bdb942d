"""Security utilities: signed, expiring file URLs."""

from datetime import datetime, timedelta, timezone

import jwt

from travelmap.config import settings


def create_file_token(storage_path: str, expires_in: int | None = None) -> str:
    """Sign a storage path for read access, valid for expires_in seconds."""
    seconds = expires_in if expires_in is not None else settings.signed_url_expire_seconds
    payload = {
        "path": storage_path,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=seconds),
        "type": "file",
    }
    return jwt.encode(payload, settings.signing_secret, algorithm=settings.signing_algorithm)


def decode_file_token(token: str) -> str:
    """Return the storage path of a valid file token. Raises jwt.PyJWTError on failure."""
    payload = jwt.decode(token, settings.signing_secret, algorithms=[settings.signing_algorithm])
    if payload.get("type") != "file":
        raise jwt.InvalidTokenError("Invalid token type")
    return payload["path"]


def create_signed_url(storage_path: str, expires_in: int | None = None) -> str:
    """Absolute URL serving storage_path until the token expires."""
    token = create_file_token(storage_path, expires_in)
    return f"{settings.public_base_url.rstrip('/')}/api/files/{token}"
