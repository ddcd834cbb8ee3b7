"""
Trip endpoints: list, inspect, correct, delete and manually record trips.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query

from tripcore.api.database import TripNotFoundError
from tripcore.api.models import (
    ManualTripRequest,
    RouteCoordinate,
    TripDetail,
    TripPatch,
    TripStatusEnum,
    TripSummary,
    TripTypeEnum,
    UserStatsOut,
)
from tripcore.tracking.trip import TripStatus, TripType
from tripcore.tracking.trip_manager import InvalidTransitionError

router = APIRouter(prefix="/api/trips", tags=["trips"])
logger = logging.getLogger(__name__)


def _get_manager():
    """Get the TripManager from app state (injected at startup)."""
    from tripcore.api.main import app_state
    return app_state["trip_manager"]


@router.get("", response_model=list[TripSummary])
async def list_trips(
    type: TripTypeEnum | None = Query(None, description="Filter by trip type"),
    status: TripStatusEnum | None = Query(None, description="Filter by status"),
    synced: bool | None = Query(None),
    start_date: float | None = Query(None, description="Earliest start time (epoch seconds)"),
    end_date: float | None = Query(None, description="Latest start time (epoch seconds)"),
    limit: int = Query(100, ge=1, le=1000),
):
    """List trips, newest first."""
    trips = _get_manager().store.get_all_trips(
        type=TripType(type.value) if type else None,
        status=TripStatus(status.value) if status else None,
        synced=synced,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [TripSummary.from_trip(t) for t in trips]


@router.get("/active", response_model=TripSummary | None)
async def active_trip():
    trip = _get_manager().store.get_active_trip()
    return TripSummary.from_trip(trip) if trip else None


@router.get("/stats", response_model=UserStatsOut)
async def user_stats():
    """Totals over completed trips."""
    stats = _get_manager().get_user_stats()
    return UserStatsOut(
        total_trips=stats.total_trips,
        total_distance=stats.total_distance,
        total_duration=stats.total_duration,
        total_co2_saved=stats.total_co2_saved,
        total_calories=stats.total_calories,
        walk_trips=stats.walk_trips,
        cycle_trips=stats.cycle_trips,
    )


@router.post("/manual", response_model=TripSummary, status_code=201)
async def create_manual_trip(request: ManualTripRequest):
    from tripcore.api.main import app_state

    user_id = app_state["config"].tracking.user_id
    try:
        trip = _get_manager().create_manual_trip(
            user_id,
            TripType(request.type.value),
            distance=request.distance,
            duration=request.duration,
            start_time=request.start_time,
            notes=request.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return TripSummary.from_trip(trip)


@router.get("/{trip_id}", response_model=TripDetail)
async def get_trip(trip_id: str):
    """Trip with its route."""
    details = _get_manager().get_trip_details(trip_id)
    if details is None:
        raise TripNotFoundError(f"Trip {trip_id} not found")
    summary = TripSummary.from_trip(details.trip)
    return TripDetail(
        **summary.model_dump(),
        route=[RouteCoordinate(lat=lat, lng=lng) for lat, lng in details.route],
    )


@router.patch("/{trip_id}", response_model=TripSummary)
async def update_trip(trip_id: str, patch: TripPatch):
    """Manual correction of notes or trip type."""
    try:
        trip = _get_manager().update_trip(
            trip_id,
            notes=patch.notes,
            trip_type=TripType(patch.type.value) if patch.type else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return TripSummary.from_trip(trip)


@router.delete("/{trip_id}", status_code=204)
def delete_trip(trip_id: str):
    """Delete locally, and on the backend when the trip was synced."""
    from tripcore.api.main import app_state

    try:
        _get_manager().delete_trip(trip_id, client=app_state.get("api_client"))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Deleted trip %s", trip_id)
