"""
Tracking endpoints: start/stop tracking, push fixes, foreground resume.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from tripcore.api.models import (
    FixBatchResponse,
    FixIn,
    ResumeResponse,
    TrackingStatus,
    TripStatusEnum,
)
from tripcore.tracking.tracking_service import TrackingPermissionError

router = APIRouter(prefix="/api/tracking", tags=["tracking"])
logger = logging.getLogger(__name__)


def _get_tracking_service():
    from tripcore.api.main import app_state
    return app_state["tracking_service"]


def _status() -> TrackingStatus:
    service = _get_tracking_service()
    trip = service.store.get_active_trip()
    return TrackingStatus(
        is_tracking=service.is_tracking(),
        active_trip_id=trip.id if trip else None,
        active_trip_status=TripStatusEnum(trip.status.value) if trip else None,
        queue_size=service.queue_size,
        processed_fixes=service.processed_fixes,
        rejected_fixes=service.rejected_fixes,
    )


@router.post("/start", response_model=TrackingStatus)
async def start_tracking(foreground: bool = True):
    """Start consuming fixes; optionally run the foreground watcher."""
    service = _get_tracking_service()
    try:
        await service.start(foreground=foreground)
    except TrackingPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return _status()


@router.post("/stop", response_model=TrackingStatus)
async def stop_tracking():
    """Stop consuming fixes. An open trip stays open."""
    await _get_tracking_service().stop()
    return _status()


@router.get("/status", response_model=TrackingStatus)
async def tracking_status():
    return _status()


@router.post("/fixes", response_model=FixBatchResponse)
async def push_fixes(fixes: list[FixIn]):
    """Enqueue a batch of fixes delivered by the location provider."""
    service = _get_tracking_service()
    if not service.is_tracking():
        raise HTTPException(status_code=409, detail="Tracking is not running")
    queued = await service.submit([f.to_fix() for f in fixes])
    logger.debug("Queued %d fixes", queued)
    return FixBatchResponse(queued=queued, queue_size=service.queue_size)


@router.post("/resume", response_model=ResumeResponse)
async def foreground_resume():
    """Run the zombie-trip and permission checks done when the app returns to the foreground."""
    outcome = await _get_tracking_service().handle_foreground_resume()
    return ResumeResponse(
        zombie_terminated=outcome.zombie_terminated,
        trip_id=outcome.trip_id,
        background_permission=outcome.background_permission,
    )
