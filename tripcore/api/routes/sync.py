"""
Sync endpoints: upload pending trips to the backend, report sync state.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from tripcore.api.models import SyncErrorOut, SyncResultOut, SyncStatusOut

router = APIRouter(prefix="/api/sync", tags=["sync"])
logger = logging.getLogger(__name__)


def _get_sync_service():
    from tripcore.api.main import app_state
    return app_state["sync_service"]


@router.post("", response_model=SyncResultOut)
async def sync_all_pending_trips():
    """
    Upload every completed, unsynced trip.

    Per-trip failures are reported in the result; a credential rejection is
    answered with 401.
    """
    result = await _get_sync_service().sync_all()
    return SyncResultOut(
        success=result.success,
        synced_count=result.synced_count,
        failed_count=result.failed_count,
        skipped_count=result.skipped_count,
        total_attempted=result.total_attempted,
        errors=[SyncErrorOut(trip_id=e.trip_id, error=e.error) for e in result.errors],
    )


@router.post("/trips/{trip_id}")
async def sync_single_trip(trip_id: str):
    synced = await _get_sync_service().sync_single_trip(trip_id)
    return {"trip_id": trip_id, "synced": synced}


@router.post("/cleanup")
async def cleanup_invalid_trips():
    """Cancel completed, unsynced trips that no longer pass validation."""
    return {"cancelled": _get_sync_service().cleanup_invalid_trips()}


@router.get("/status", response_model=SyncStatusOut)
async def sync_status():
    status = _get_sync_service().get_sync_status()
    return SyncStatusOut(
        is_syncing=status.is_syncing,
        last_sync_time=status.last_sync_time,
        unsynced_count=status.unsynced_count,
    )
