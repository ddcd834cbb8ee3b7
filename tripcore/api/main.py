"""
FastAPI Application: local trip tracking service.

Exposes tracking control, the fix ingestion boundary, trip CRUD and backend
sync over REST. Fixes posted to /api/tracking/fixes are queued and drained by
the single-writer TrackingService.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tripcore.api.database import TripNotFoundError, TripStore, init_db
from tripcore.api.trips_client import AuthenticationError, TripsApiClient
from tripcore.api.sync_service import SyncService
from tripcore.tracking.tracking_service import TrackingService
from tripcore.tracking.trip_manager import TripManager
from tripcore.utils.config_loader import Config

logger = logging.getLogger(__name__)

# Global app state (accessed by route modules)
app_state: dict = {}

CONFIG_DIR = Path(os.environ.get("TRIPCORE_CONFIG_DIR", "config"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store and start services on startup, stop tracking on shutdown."""
    from dotenv import load_dotenv
    load_dotenv()

    t0 = time.perf_counter()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = Config(CONFIG_DIR)
    config.load_all()
    app_state["config"] = config

    init_db()
    store = TripStore()
    app_state["store"] = store

    manager = TripManager(
        store,
        detection_config=config.detection,
        segment_config=config.segments,
        validation_config=config.validation,
        classifier_config=config.classifier,
        sync_config=config.sync,
    )
    app_state["trip_manager"] = manager

    client = TripsApiClient(config.sync)
    app_state["api_client"] = client

    sync_service = SyncService(store, client, config.sync, config.validation)
    app_state["sync_service"] = sync_service

    tracking = TrackingService(
        store,
        manager=manager,
        sync_service=sync_service,
        config=config.tracking,
        ingestion_config=config.ingestion,
        detection_config=config.detection,
        classifier_config=config.classifier,
        sync_config=config.sync,
    )
    app_state["tracking_service"] = tracking

    elapsed = time.perf_counter() - t0
    logger.info("Backend ready in %.2fs, sync target %s", elapsed, config.sync.api_base_url)

    yield

    # Shutdown
    if tracking.is_tracking():
        await tracking.stop()
    logger.info("Backend shut down")


app = FastAPI(
    title="Trip Tracking API",
    description="GPS trip detection, validation and backend sync",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:8000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TripNotFoundError)
async def trip_not_found_handler(request: Request, exc: TripNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError):
    logger.warning("Backend rejected credentials: %s", exc)
    return JSONResponse(status_code=401, content={"detail": "Backend authentication failed, sign in again"})


# Register routes
from tripcore.api.routes.health import router as health_router
from tripcore.api.routes.sync import router as sync_router
from tripcore.api.routes.tracking import router as tracking_router
from tripcore.api.routes.trips import router as trips_router

app.include_router(health_router)
app.include_router(tracking_router)
app.include_router(trips_router)
app.include_router(sync_router)
