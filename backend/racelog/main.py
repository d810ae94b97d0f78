"""
racelog - FastAPI Backend

Main application entry point and configuration.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from racelog.api.runs import folder_router, router as runs_router
from racelog.api.tracks import router as tracks_router
from racelog.services.repository import DEFAULT_DATA_FOLDER, RunRepository
from racelog.services.track_catalog import TrackCatalog


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting racelog backend")

    repo: RunRepository = app.state.repository
    if repo.data_folder is None and app.state.use_default_folder:
        if DEFAULT_DATA_FOLDER.exists():
            repo.set_data_folder(DEFAULT_DATA_FOLDER)
            logger.info("Initialized repository with folder: %s", DEFAULT_DATA_FOLDER)
        else:
            logger.info("Default data folder not found: %s", DEFAULT_DATA_FOLDER)
            logger.info("Use POST /folder to set data folder")

    yield

    logger.info("Shutting down racelog backend")


def create_app(
    repository: Optional[RunRepository] = None,
    catalog: Optional[TrackCatalog] = None,
) -> FastAPI:
    """
    Build the API application.

    The repository and track catalog are owned by the app (app.state). When
    no repository is given, the default data folder is scanned at start-up.
    """
    app = FastAPI(
        title="racelog",
        description="""
    Backend API for GPS lap-timing log analysis.

    ## Features
    - Decode UBX, NMEA, VBO, Alfano CSV and AiM CSV logs (auto-detected)
    - Derive lateral/longitudinal G from GPS
    - Lap, sector and optimal lap timing against track courses
    - Speed peak/valley detection

    ## Data Flow
    1. Set data folder via POST /folder, or upload via POST /runs/upload
    2. List available runs via GET /runs
    3. Time laps via GET /runs/{id}/laps?track=&course=
    4. Get playback data via GET /runs/{id}/playback
    """,
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.use_default_folder = repository is None
    app.state.repository = repository if repository is not None else RunRepository()
    app.state.catalog = catalog if catalog is not None else TrackCatalog()

    # CORS middleware (allow all origins for development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(runs_router)
    app.include_router(folder_router)
    app.include_router(tracks_router)

    @app.get("/")
    async def root():
        """Root endpoint - basic health check."""
        return {
            "name": "racelog",
            "version": VERSION,
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        repo: RunRepository = app.state.repository
        return {
            "status": "healthy",
            "data_folder": str(repo.data_folder) if repo.data_folder else None,
            "run_count": repo.run_count,
        }

    return app


app = create_app()
