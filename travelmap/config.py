"""Travel Map Configuration."""

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "Travel Map Server"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    allowed_origins: list[str] = ["http://localhost:8080", "http://127.0.0.1:8080"]
    public_base_url: str = "http://localhost:3000"

    # Paths
    data_dir: Path = Path.home() / "travelmap" / "data"
    storage_dir: Path = Path.home() / "travelmap" / "objects"

    # Database
    db_path: Path = Path.home() / "travelmap" / "data" / "travelmap.db"

    # Signed file URLs
    signing_secret: str = ""
    signing_algorithm: str = "HS256"
    signed_url_expire_seconds: int = 3600  # 1 hour

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024  # 10MB
    thumbnail_width: int = 300

    # Rate limits (requests per window, window in seconds)
    api_rate_limit: int = 100
    api_rate_window: int = 15 * 60
    upload_rate_limit: int = 20
    upload_rate_window: int = 60 * 60
    delete_rate_limit: int = 50
    delete_rate_window: int = 60 * 60

    # Client: schema & storage keys
    schema_version: int = 1
    photos_storage_key: str = "viajes-fran-photos"

    # Client: fallback place
    default_location: str = "Madrid, España"
    default_country: str = "España"
    default_city: str = "Madrid"
    unknown_date: str = "Fecha desconocida"

    # Client: caches & timers
    url_cache_seconds: float = 50 * 60  # must stay below signed_url_expire_seconds
    marker_debounce_seconds: float = 0.3
    map_settle_seconds: float = 2.0
    geocode_stagger_seconds: float = 1.0
    map_fit_padding: int = 50
    map_max_zoom: int = 15

    # Client: local cache limits
    local_quota_bytes: int = 5 * 1024 * 1024
    local_max_bytes: int = 4 * 1024 * 1024
    fallback_photo_count: int = 10

    # Client: recompression tiers (max width px, JPEG quality 0-1)
    compress_max_width: int = 600
    compress_quality: float = 0.6
    low_quality_max_width: int = 400
    low_quality_quality: float = 0.4
    minimum_max_width: int = 300
    minimum_quality: float = 0.3

    # Geocoding
    geocoder_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "Viajes-Fran-App/1.0"
    geocoder_language: str = "es,en"
    geocoder_search_limit: int = 10
    geocoder_reverse_zoom: int = 10
    geocoder_min_interval: float = 1.1  # Nominatim: max 1 request per second

    # Remote store client
    remote_api_url: str = "http://localhost:3000/api"
    remote_timeout: float = 10.0

    model_config = {"env_prefix": "TRAVELMAP_"}

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.storage_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate the signing secret if not set, persist it so signed URLs survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.signing_secret:
            self.signing_secret = saved.get("signing_secret", "") or secrets.token_urlsafe(32)

        secrets_file.write_text(f"signing_secret={self.signing_secret}\n")


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
