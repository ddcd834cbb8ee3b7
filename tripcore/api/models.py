"""
Pydantic schemas for the trip tracking API and the backend sync wire format.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from tripcore.tracking.trip import Fix, Trip


class TripTypeEnum(str, Enum):
    WALK = "walk"
    CYCLE = "cycle"
    RUN = "run"
    DRIVE = "drive"


class TripStatusEnum(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# --- Backend wire format ---

class RoutePoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: str  # ISO 8601


class TripUploadPayload(BaseModel):
    client_id: str
    start_timestamp: str  # ISO 8601
    end_timestamp: str  # ISO 8601
    route: List[RoutePoint] = []
    type: TripTypeEnum
    is_manual: bool = False
    elevation_gain: Optional[float] = None
    notes: Optional[str] = None


class BackendTrip(BaseModel):
    """Subset of the backend's trip representation the client relies on."""
    id: int
    client_id: str


# --- Local API ---

class FixIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: float = Field(..., description="Epoch seconds")
    altitude: Optional[float] = None
    accuracy: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = Field(None, description="m/s; negative or null when unavailable")
    heading: Optional[float] = None

    def to_fix(self) -> Fix:
        return Fix(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=self.timestamp,
            altitude=self.altitude,
            accuracy=self.accuracy,
            speed=self.speed,
            heading=self.heading,
        )


class FixBatchResponse(BaseModel):
    queued: int
    queue_size: int


class TrackingStatus(BaseModel):
    is_tracking: bool
    active_trip_id: Optional[str] = None
    active_trip_status: Optional[TripStatusEnum] = None
    queue_size: int = 0
    processed_fixes: int = 0
    rejected_fixes: int = 0


class ResumeResponse(BaseModel):
    zombie_terminated: bool
    trip_id: Optional[str] = None
    background_permission: Optional[bool] = None


class TripSummary(BaseModel):
    id: str
    user_id: str
    type: TripTypeEnum
    status: TripStatusEnum
    is_manual: bool = False
    start_time: float
    end_time: Optional[float] = None
    distance: float = 0.0
    duration: float = 0.0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    elevation_gain: float = 0.0
    calories: int = 0
    co2_saved: float = 0.0
    notes: Optional[str] = None
    synced: bool = False
    backend_id: Optional[int] = None

    @classmethod
    def from_trip(cls, trip: Trip) -> "TripSummary":
        return cls(
            id=trip.id,
            user_id=trip.user_id,
            type=TripTypeEnum(trip.type.value),
            status=TripStatusEnum(trip.status.value),
            is_manual=trip.is_manual,
            start_time=trip.start_time,
            end_time=trip.end_time,
            distance=trip.distance,
            duration=trip.duration,
            avg_speed=trip.avg_speed,
            max_speed=trip.max_speed,
            elevation_gain=trip.elevation_gain,
            calories=trip.calories,
            co2_saved=trip.co2_saved,
            notes=trip.notes,
            synced=trip.synced,
            backend_id=trip.backend_id,
        )


class RouteCoordinate(BaseModel):
    lat: float
    lng: float


class TripDetail(TripSummary):
    route: List[RouteCoordinate] = []


class TripPatch(BaseModel):
    notes: Optional[str] = None
    type: Optional[TripTypeEnum] = None


class ManualTripRequest(BaseModel):
    type: TripTypeEnum
    distance: float = Field(..., gt=0, description="meters")
    duration: float = Field(..., gt=0, description="seconds")
    start_time: float = Field(..., description="Epoch seconds")
    notes: Optional[str] = None


class SyncErrorOut(BaseModel):
    trip_id: str
    error: str


class SyncResultOut(BaseModel):
    success: bool
    synced_count: int
    failed_count: int
    skipped_count: int
    total_attempted: int
    errors: List[SyncErrorOut] = []


class SyncStatusOut(BaseModel):
    is_syncing: bool
    last_sync_time: Optional[float] = None
    unsynced_count: int


class HealthResponse(BaseModel):
    status: str
    database: str
    tracking: bool
    time_iso: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class UserStatsOut(BaseModel):
    total_trips: int
    total_distance: float
    total_duration: float
    total_co2_saved: float
    total_calories: int
    walk_trips: int
    cycle_trips: int
