"""Travel Map Server - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from travelmap.config import settings
from travelmap.database import init_db

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info("%s listening on %s:%s", settings.server_name, settings.host, settings.port)
    yield


app = FastAPI(
    title="Travel Map",
    description="Photo travel map: photo records, image storage and signed URLs",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

# --- Register API routers ---
from travelmap.api.photos import files_router, router as photos_router  # noqa: E402

API_PREFIX = "/api"

app.include_router(photos_router, prefix=API_PREFIX)
app.include_router(files_router, prefix=API_PREFIX)


@app.get("/")
def root():
    """Server info."""
    return {
        "name": settings.server_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Travel Map API is running"}


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run("travelmap.main:app", host=settings.host, port=settings.port)
