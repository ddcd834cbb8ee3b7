"""
Trip lifecycle management.

Creates trips, appends accepted points, and decides how a finished trip ends:
split into per-mode sub-trips, cancelled with a reason, or completed with its
final statistics and route.

Classes:
    TripManager: Lifecycle operations over a TripStore
    FinalizeResult: What finalizing a trip produced
    TripDetails: A trip together with its route
    UserStats: Totals over completed trips
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from tripcore.api.database import TripNotFoundError, TripStore
from tripcore.api.trips_client import ApiError
from tripcore.ml.activity.classifier import ActivityClassification
from tripcore.ml.activity.patterns import classify_with_patterns
from tripcore.tracking.segment_detector import SegmentDetector, TripSegment
from tripcore.tracking.trip import (
    ALLOWED_TRIP_TYPES,
    Fix,
    LocationPoint,
    Trip,
    TripStatus,
    TripType,
    compute_trip_stats,
    dominant_trip_type,
    route_of,
)
from tripcore.tracking.trip_detector import DetectionState, can_transition, is_too_short, state_of
from tripcore.tracking.trip_validator import validate_trip
from tripcore.utils.config_loader import (
    ClassifierConfig,
    DetectionConfig,
    SegmentConfig,
    SyncConfig,
    ValidationConfig,
)
from tripcore.utils.geo import co2_saved_kg, calories_burned, parse_route_data, serialize_route, speed_kmh
from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.manager")

ZOMBIE_NOTE = "[Auto-ended: background tracking timeout]"


class InvalidTransitionError(Exception):
    """Raised when a lifecycle operation does not apply to the trip's state."""


@dataclass
class FinalizeResult:
    """
    Outcome of finalizing a trip.

    Attributes:
        trip: The trip as stored afterwards (completed or cancelled)
        sub_trips: Completed trips created from a multi-modal split
    """
    trip: Trip
    sub_trips: List[Trip] = field(default_factory=list)

    @property
    def completed_trip_ids(self) -> List[str]:
        ids = [t.id for t in self.sub_trips]
        if self.trip.status is TripStatus.COMPLETED:
            ids.insert(0, self.trip.id)
        return ids


@dataclass
class TripDetails:
    trip: Trip
    route: List[Tuple[float, float]]


@dataclass
class UserStats:
    total_trips: int = 0
    total_distance: float = 0.0
    total_duration: float = 0.0
    total_co2_saved: float = 0.0
    total_calories: int = 0
    walk_trips: int = 0
    cycle_trips: int = 0


def new_trip_id(prefix: str = "trip") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


class TripManager:
    """
    Lifecycle operations for trips.

    Args:
        store: Persistence for trips and points
        detection_config: Minimum trip duration and distance
        segment_config: Segmentation thresholds
        validation_config: Drift detection thresholds
        classifier_config: Speed bands and transit threshold
        sync_config: Per-type minimum distances

    Example:
        >>> manager = TripManager(TripStore())
        >>> trip = manager.start_trip("current_user", start_time=fixes[0].timestamp)
        >>> for fix, label in labelled:
        ...     manager.record_point(trip.id, fix, label)
        >>> result = manager.finalize_trip(trip.id, end_time=fixes[-1].timestamp)
    """

    def __init__(
        self,
        store: TripStore,
        detection_config: Optional[DetectionConfig] = None,
        segment_config: Optional[SegmentConfig] = None,
        validation_config: Optional[ValidationConfig] = None,
        classifier_config: Optional[ClassifierConfig] = None,
        sync_config: Optional[SyncConfig] = None,
    ):
        self.store = store
        self.detection_config = detection_config or DetectionConfig()
        self.validation_config = validation_config or ValidationConfig()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.sync_config = sync_config or SyncConfig()
        self.segment_detector = SegmentDetector(segment_config, self.classifier_config)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def start_trip(self, user_id: str, start_time: float, trip_id: Optional[str] = None) -> Trip:
        """Create a new active trip. The store rejects a second open trip."""
        trip = Trip(
            id=trip_id or new_trip_id(),
            user_id=user_id,
            type=TripType.WALK,
            status=TripStatus.ACTIVE,
            start_time=start_time,
            created_at=start_time,
            updated_at=start_time,
        )
        trip = self.store.create_trip(trip)
        logger.bind(trip=trip.id).info("Started trip")
        return trip

    def record_point(self, trip_id: str, fix: Fix, classification: ActivityClassification) -> LocationPoint:
        """
        Append an accepted fix to a trip and refresh its running statistics.

        Returns:
            The stored point
        """
        point = self.store.append_location(LocationPoint(
            trip_id=trip_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
            altitude=fix.altitude,
            accuracy=fix.accuracy,
            speed=fix.speed,
            heading=fix.heading,
            activity_type=classification.type,
            activity_confidence=classification.confidence,
        ))

        points = self.store.get_locations_by_trip(trip_id)
        trip_type = dominant_trip_type(points, self.classifier_config.transit_avg_speed_kmh)
        stats = compute_trip_stats(points, trip_type)
        self.store.update_trip(
            trip_id,
            type=trip_type,
            distance=stats.distance,
            duration=stats.duration,
            avg_speed=stats.avg_speed,
            max_speed=stats.max_speed,
            elevation_gain=stats.elevation_gain,
            calories=stats.calories,
            co2_saved=stats.co2_saved,
            updated_at=fix.timestamp,
        )
        return point

    def pause_trip(self, trip_id: str) -> Trip:
        return self._transition(trip_id, DetectionState.PAUSED)

    def resume_trip(self, trip_id: str) -> Trip:
        return self._transition(trip_id, DetectionState.ACTIVE)

    def _transition(self, trip_id: str, target: DetectionState) -> Trip:
        trip = self._require(trip_id)
        current = state_of(trip)
        if not can_transition(current, target):
            raise InvalidTransitionError(f"Cannot move trip {trip_id} from {current.value} to {target.value}")
        trip = self.store.update_trip(trip_id, status=TripStatus(target.value))
        logger.bind(trip=trip_id).info(f"{current.value} -> {target.value}")
        return trip

    def _require(self, trip_id: str) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFoundError(f"Trip {trip_id} not found")
        return trip

    # ------------------------------------------------------------------
    # Ending
    # ------------------------------------------------------------------

    def cancel_trip(self, trip_id: str, reason: str, end_time: Optional[float] = None) -> Trip:
        """Mark a trip cancelled with a human-readable reason."""
        trip = self.store.update_trip(
            trip_id,
            status=TripStatus.CANCELLED,
            end_time=end_time if end_time is not None else time.time(),
            notes=reason,
        )
        logger.bind(trip=trip_id).info(f"Cancelled: {reason}")
        return trip

    def finalize_trip(self, trip_id: str, end_time: Optional[float] = None,
                      note: Optional[str] = None) -> FinalizeResult:
        """
        Decide the terminal state of a trip.

        Multi-modal trips are split into one completed trip per surviving
        segment and the parent is cancelled. Single-mode trips must be a walk
        or a ride, meet the per-type minimum distance and pass drift
        validation to complete; otherwise they are cancelled with the reason.

        Args:
            trip_id: Trip to finalize
            end_time: Terminal timestamp (defaults to now)
            note: Note stored on a completed trip (e.g. zombie recovery)

        Returns:
            FinalizeResult
        """
        trip = self._require(trip_id)
        if trip.status.is_terminal:
            raise InvalidTransitionError(f"Trip {trip_id} is already {trip.status.value}")

        end_time = end_time if end_time is not None else time.time()
        points = self.store.get_locations_by_trip(trip_id)

        if len(points) < 2:
            return FinalizeResult(self.cancel_trip(
                trip_id, f"Not enough location points ({len(points)})", end_time))

        stats = compute_trip_stats(points)
        if is_too_short(stats.duration, stats.distance, self.detection_config):
            return FinalizeResult(self.cancel_trip(
                trip_id, f"Trip too short ({stats.duration:.0f}s, {stats.distance:.0f}m)", end_time))

        analysis = self.segment_detector.analyze_trip(points)
        if analysis.is_multi_modal and len(analysis.segments) > 1:
            return self._split(trip, analysis.segments, end_time)

        trip_type = dominant_trip_type(points, self.classifier_config.transit_avg_speed_kmh)
        pattern = classify_with_patterns(
            [p.speed or 0.0 for p in points], [p.coordinate for p in points], self.classifier_config
        )
        if pattern.overridden:
            trip_type = TripType.DRIVE

        stats = compute_trip_stats(points, trip_type)
        reason = self._rejection_reason(trip_type, stats.distance, [p.coordinate for p in points])
        if reason:
            return FinalizeResult(self.cancel_trip(trip_id, reason, end_time))

        changes = dict(
            status=TripStatus.COMPLETED,
            type=trip_type,
            end_time=end_time,
            distance=stats.distance,
            duration=stats.duration,
            avg_speed=stats.avg_speed,
            max_speed=stats.max_speed,
            elevation_gain=stats.elevation_gain,
            calories=stats.calories,
            co2_saved=stats.co2_saved,
            route_data=serialize_route(route_of(points)),
        )
        if note:
            changes["notes"] = note
        completed = self.store.update_trip(trip_id, **changes)
        logger.bind(trip=trip_id).info(
            f"Completed: {trip_type.value}, {stats.distance:.0f}m in {stats.duration:.0f}s"
        )
        return FinalizeResult(completed)

    def _rejection_reason(self, trip_type: TripType, distance: float, coordinates) -> Optional[str]:
        if trip_type not in ALLOWED_TRIP_TYPES:
            return f"Trip type '{trip_type.value}' not supported (only walk/cycle allowed)"
        if trip_type is TripType.WALK and distance < self.sync_config.min_walk_distance_m:
            return f"Walk distance ({distance:.0f}m) below minimum ({self.sync_config.min_walk_distance_m:.0f}m)"
        if trip_type is TripType.CYCLE and distance < self.sync_config.min_cycle_distance_m:
            return f"Ride distance ({distance:.0f}m) below minimum ({self.sync_config.min_cycle_distance_m:.0f}m)"
        validation = validate_trip(coordinates, distance, self.validation_config)
        if not validation.is_valid:
            return validation.note
        return None

    def _split(self, trip: Trip, segments: List[TripSegment], end_time: float) -> FinalizeResult:
        logger.info(f"Multi-modal trip {trip.id}: {len(segments)} segments")
        sub_trips = []
        for i, segment in enumerate(segments):
            reason = self._rejection_reason(
                segment.type, segment.distance, [p.coordinate for p in segment.points]
            )
            if reason:
                logger.info(f"Skipping {segment.type.value} segment {i}: {reason}")
                continue
            sub_trips.append(self._create_sub_trip(trip, segment, i, len(segments)))

        parent = self.cancel_trip(
            trip.id, f"Multi-modal trip split into {len(sub_trips)} segments", end_time
        )
        return FinalizeResult(parent, sub_trips)

    def _create_sub_trip(self, parent: Trip, segment: TripSegment, index: int, total: int) -> Trip:
        sub_id = f"{parent.id}_segment{index}"
        stats = compute_trip_stats(segment.points, segment.type)
        sub_trip = self.store.create_trip(Trip(
            id=sub_id,
            user_id=parent.user_id,
            type=segment.type,
            status=TripStatus.COMPLETED,
            start_time=segment.points[0].timestamp,
            end_time=segment.points[-1].timestamp,
            distance=segment.distance,
            duration=segment.duration,
            avg_speed=segment.avg_speed,
            max_speed=segment.max_speed,
            elevation_gain=stats.elevation_gain,
            calories=calories_burned(segment.distance, segment.type.value),
            co2_saved=co2_saved_kg(segment.distance),
            notes=f"Segment {index + 1} of {total} (multi-modal trip)",
            route_data=serialize_route(route_of(segment.points)),
        ))
        for point in segment.points:
            self.store.append_location(replace(point, trip_id=sub_id, id=None))
        logger.info(f"Created sub-trip {sub_id} ({segment.type.value}, {segment.distance:.0f}m)")
        return sub_trip

    # ------------------------------------------------------------------
    # Manual trips and CRUD
    # ------------------------------------------------------------------

    def create_manual_trip(
        self,
        user_id: str,
        trip_type: TripType,
        distance: float,
        duration: float,
        start_time: float,
        notes: Optional[str] = None,
        route: Optional[List[Tuple[float, float, float]]] = None,
    ) -> Trip:
        """
        Record a trip entered by hand.

        Raises:
            ValueError: Unsupported type, non-positive duration, or distance
                below the per-type minimum
        """
        if trip_type not in ALLOWED_TRIP_TYPES:
            raise ValueError(f"Trip type '{trip_type.value}' not supported (only walk/cycle allowed)")
        if duration <= 0:
            raise ValueError("Duration must be positive")
        minimum = (self.sync_config.min_walk_distance_m if trip_type is TripType.WALK
                   else self.sync_config.min_cycle_distance_m)
        if distance < minimum:
            raise ValueError(f"{trip_type.value} distance ({distance:.0f}m) below minimum ({minimum:.0f}m)")

        trip = self.store.create_trip(Trip(
            id=new_trip_id("manual"),
            user_id=user_id,
            type=trip_type,
            status=TripStatus.COMPLETED,
            is_manual=True,
            start_time=start_time,
            end_time=start_time + duration,
            distance=distance,
            duration=duration,
            avg_speed=speed_kmh(distance, duration),
            calories=calories_burned(distance, trip_type.value),
            co2_saved=co2_saved_kg(distance),
            notes=notes,
            route_data=serialize_route(route) if route else None,
        ))
        logger.info(f"Created manual trip {trip.id} ({trip_type.value}, {distance:.0f}m)")
        return trip

    def update_trip(self, trip_id: str, notes: Optional[str] = None,
                    trip_type: Optional[TripType] = None) -> Trip:
        """Apply a manual correction to a trip's notes or type."""
        self._require(trip_id)
        changes = {}
        if notes is not None:
            changes["notes"] = notes
        if trip_type is not None:
            if trip_type not in ALLOWED_TRIP_TYPES:
                raise ValueError(f"Trip type '{trip_type.value}' not supported (only walk/cycle allowed)")
            changes["type"] = trip_type
        if not changes:
            return self.store.get_trip(trip_id)
        return self.store.update_trip(trip_id, **changes)

    def get_trip_details(self, trip_id: str) -> Optional[TripDetails]:
        """Trip plus its route, from route_data when stored, else from its points."""
        trip = self.store.get_trip(trip_id)
        if trip is None:
            return None
        route = parse_route_data(trip.route_data)
        if not route:
            route = [p.coordinate for p in self.store.get_locations_by_trip(trip_id)]
        return TripDetails(trip=trip, route=route)

    def get_user_stats(self) -> UserStats:
        stats = UserStats()
        for trip in self.store.get_all_trips(status=TripStatus.COMPLETED):
            stats.total_trips += 1
            stats.total_distance += trip.distance
            stats.total_duration += trip.duration
            stats.total_co2_saved += trip.co2_saved
            stats.total_calories += trip.calories
            if trip.type is TripType.WALK:
                stats.walk_trips += 1
            elif trip.type is TripType.CYCLE:
                stats.cycle_trips += 1
        return stats

    def get_recent_trips(self, limit: int = 10) -> List[Trip]:
        return self.store.get_all_trips(status=TripStatus.COMPLETED, limit=limit)

    def delete_trip(self, trip_id: str, client=None) -> None:
        """
        Delete a trip locally, and remotely when it was synced.

        A failed remote delete is logged; the local delete still happens.

        Raises:
            InvalidTransitionError: The trip is still active or paused
        """
        trip = self._require(trip_id)
        if trip.status.is_open:
            raise InvalidTransitionError(f"Trip {trip_id} is {trip.status.value}; end it before deleting")
        if client is not None and trip.synced and trip.backend_id is not None:
            try:
                client.delete_trip(trip.backend_id)
            except ApiError as e:
                logger.warning(f"Remote delete of trip {trip_id} failed: {e}")
        self.store.delete_trip(trip_id)
