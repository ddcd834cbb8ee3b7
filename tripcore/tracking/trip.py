"""
Trip domain records.

Classes:
    TripType: Final trip categories (only WALK and CYCLE are kept)
    TripStatus: Trip lifecycle states
    Fix: One raw GPS reading from the location provider
    LocationPoint: A fix accepted into a trip
    Trip: A recorded trip with its cumulative statistics
    TripStats: Statistics derived from a point sequence
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from tripcore.ml.activity.classifier import ActivityType
from tripcore.utils.geo import (
    calories_burned,
    co2_saved_kg,
    distance_between,
    elevation_gain_loss,
    speed_kmh,
)
from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.trip")

# Single transit policy: a "walk" moving faster than this on average is a vehicle
TRANSIT_AVG_SPEED_KMH = 10.0

# Device speed may not exceed the computed inter-point speed by more than this factor
MAX_SPEED_CROSS_CHECK = 1.5


class TripType(Enum):
    """Trip categories. RUN and DRIVE are detected but never completed."""
    WALK = "walk"
    CYCLE = "cycle"
    RUN = "run"
    DRIVE = "drive"


ALLOWED_TRIP_TYPES = (TripType.WALK, TripType.CYCLE)


class TripStatus(Enum):
    """Trip lifecycle states."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"      # Terminal
    CANCELLED = "cancelled"      # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (TripStatus.COMPLETED, TripStatus.CANCELLED)

    @property
    def is_open(self) -> bool:
        return self in (TripStatus.ACTIVE, TripStatus.PAUSED)


ACTIVITY_TO_TRIP_TYPE = {
    ActivityType.WALKING: TripType.WALK,
    ActivityType.RUNNING: TripType.RUN,
    ActivityType.CYCLING: TripType.CYCLE,
    ActivityType.DRIVING: TripType.DRIVE,
}


@dataclass(frozen=True)
class Fix:
    """
    Raw GPS reading.

    Attributes:
        latitude, longitude: Position (degrees)
        timestamp: Epoch seconds
        altitude: Meters above sea level, if known
        accuracy: Horizontal accuracy radius in meters, if reported
        speed: Device speed in m/s; None or negative when unavailable
        heading: Degrees clockwise from north, if known
    """
    latitude: float
    longitude: float
    timestamp: float
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class LocationPoint:
    """A fix stored against a trip, labelled with its activity."""
    trip_id: str
    latitude: float
    longitude: float
    timestamp: float
    activity_type: ActivityType
    activity_confidence: int
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    synced: bool = False
    id: Optional[int] = None

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Trip:
    """
    Recorded trip.

    Distances are meters, durations seconds, speeds km/h, times epoch seconds.
    ``route_data`` is only populated once the trip completes.
    """
    id: str
    user_id: str
    type: TripType
    status: TripStatus
    start_time: float
    is_manual: bool = False
    end_time: Optional[float] = None
    distance: float = 0.0
    duration: float = 0.0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    elevation_gain: float = 0.0
    calories: int = 0
    co2_saved: float = 0.0
    notes: Optional[str] = None
    route_data: Optional[str] = None
    synced: bool = False
    backend_id: Optional[int] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None


@dataclass
class TripStats:
    """Statistics computed over a trip's point sequence."""
    distance: float = 0.0
    duration: float = 0.0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    co2_saved: float = 0.0
    calories: int = 0
    start_time: Optional[float] = None
    end_time: Optional[float] = None


def compute_trip_stats(points: Sequence[LocationPoint], trip_type: TripType = TripType.CYCLE) -> TripStats:
    """
    Compute cumulative statistics for an ordered point sequence.

    Max speed uses the device speed at each point, capped at 1.5x the speed
    computed from the previous point so a single bad speed reading cannot
    dominate.

    Args:
        points: Points in timestamp order
        trip_type: Activity used for the calorie estimate

    Returns:
        TripStats (all zero for an empty sequence)
    """
    if not points:
        return TripStats()

    distance = 0.0
    max_speed = 0.0
    for i, point in enumerate(points):
        device_kmh = max(point.speed or 0.0, 0.0) * 3.6
        point_max = device_kmh
        if i > 0:
            prev = points[i - 1]
            leg = distance_between(prev.coordinate, point.coordinate)
            distance += leg
            dt = point.timestamp - prev.timestamp
            if dt > 0:
                point_max = min(device_kmh, speed_kmh(leg, dt) * MAX_SPEED_CROSS_CHECK)
        max_speed = max(max_speed, point_max)

    duration = points[-1].timestamp - points[0].timestamp
    gain, loss = elevation_gain_loss(p.altitude for p in points)

    return TripStats(
        distance=distance,
        duration=duration,
        avg_speed=speed_kmh(distance, duration),
        max_speed=max_speed,
        elevation_gain=gain,
        elevation_loss=loss,
        co2_saved=co2_saved_kg(distance),
        calories=calories_burned(distance, trip_type.value),
        start_time=points[0].timestamp,
        end_time=points[-1].timestamp,
    )


def apply_transit_override(
    trip_type: TripType,
    distance_m: float,
    duration_s: float,
    threshold_kmh: float = TRANSIT_AVG_SPEED_KMH,
) -> TripType:
    """
    Relabel a walk as a drive when its computed average speed is vehicle-like.

    On trains and buses the device often reports near-zero speed, so the
    per-point labels say walking while the positions move too fast for it.
    """
    if trip_type is TripType.WALK and speed_kmh(distance_m, duration_s) > threshold_kmh:
        logger.info(
            f"Transit override: avg {speed_kmh(distance_m, duration_s):.1f} km/h "
            f"labelled walk, relabelling drive"
        )
        return TripType.DRIVE
    return trip_type


def dominant_trip_type(
    points: Sequence[LocationPoint],
    transit_threshold_kmh: float = TRANSIT_AVG_SPEED_KMH,
) -> TripType:
    """
    Most frequent non-stationary activity across the points, as a TripType.

    Falls back to WALK when every point is stationary, then applies the
    transit override using the computed average speed.
    """
    counts = {}
    for point in points:
        if point.activity_type is ActivityType.STATIONARY:
            continue
        counts[point.activity_type] = counts.get(point.activity_type, 0) + 1

    dominant = ActivityType.WALKING
    max_count = 0
    for activity, count in counts.items():
        if count > max_count:
            dominant, max_count = activity, count

    trip_type = ACTIVITY_TO_TRIP_TYPE[dominant]
    if len(points) >= 2:
        distance = sum(
            distance_between(points[i - 1].coordinate, points[i].coordinate)
            for i in range(1, len(points))
        )
        trip_type = apply_transit_override(
            trip_type, distance, points[-1].timestamp - points[0].timestamp, transit_threshold_kmh
        )
    return trip_type


def route_of(points: Sequence[LocationPoint]) -> List[Tuple[float, float, float]]:
    """(lat, lon, timestamp) triples for route serialisation."""
    return [(p.latitude, p.longitude, p.timestamp) for p in points]
