"""
Trip detection state machine.

Decides when a trip starts, when it ends, and when an abandoned trip must be
force-terminated. The functions here are pure: they read fixes, session state
and trip records and return decisions; applying them is the caller's job.

States:
    IDLE → ACTIVE → (PAUSED ⇄ ACTIVE) → COMPLETED | CANCELLED
"""

from enum import Enum
from typing import Optional

from tripcore.ml.activity.classifier import ActivityClassification, ActivityType
from tripcore.tracking.ingestion_filter import IngestionSession
from tripcore.tracking.trip import Trip, TripStatus
from tripcore.utils.config_loader import DetectionConfig
from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.detector")

DEFAULT_CONFIG = DetectionConfig()

START_ACTIVITIES = (ActivityType.WALKING, ActivityType.RUNNING, ActivityType.CYCLING)


class DetectionState(Enum):
    """Trip lifecycle as seen by the state machine."""
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    DetectionState.IDLE: {DetectionState.ACTIVE},
    DetectionState.ACTIVE: {DetectionState.PAUSED, DetectionState.COMPLETED, DetectionState.CANCELLED},
    DetectionState.PAUSED: {DetectionState.ACTIVE, DetectionState.COMPLETED, DetectionState.CANCELLED},
    DetectionState.COMPLETED: set(),
    DetectionState.CANCELLED: set(),
}


class StopDecision(Enum):
    """What to do with an active trip after a fix."""
    CONTINUE = "continue"
    FINALIZE = "finalize"
    DISCARD = "discard"


def state_of(trip: Optional[Trip]) -> DetectionState:
    """Map the current trip record (or its absence) onto a detection state."""
    if trip is None:
        return DetectionState.IDLE
    return DetectionState(trip.status.value)


def can_transition(current: DetectionState, target: DetectionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def should_start_trip(
    speed_mps: float,
    classification: ActivityClassification,
    config: DetectionConfig = DEFAULT_CONFIG,
) -> bool:
    """
    Movement check for leaving IDLE.

    The user must exceed the movement speed and be classified as a human
    activity. Driving never starts a trip.
    """
    if speed_mps < config.movement_speed_mps:
        return False
    return classification.type in START_ACTIVITIES


def update_stationary(session: IngestionSession, speed_mps: float, timestamp: float,
                      config: DetectionConfig = DEFAULT_CONFIG) -> Optional[float]:
    """
    Start or clear the stationary timer for an accepted fix.

    Returns:
        The timestamp the user became stationary, or None while moving
    """
    if speed_mps <= config.stationary_speed_mps:
        if session.stationary_since is None:
            session.stationary_since = timestamp
            logger.debug(f"User became stationary at {timestamp:.0f}")
    else:
        session.stationary_since = None
    return session.stationary_since


def is_too_short(duration_s: float, distance_m: float, config: DetectionConfig = DEFAULT_CONFIG) -> bool:
    """True when a trip fails the minimum duration or distance gate."""
    return duration_s < config.min_trip_duration_s or distance_m < config.min_trip_distance_m


def evaluate_stop(
    duration_s: float,
    distance_m: float,
    stationary_since: Optional[float],
    now: float,
    config: DetectionConfig = DEFAULT_CONFIG,
) -> StopDecision:
    """
    Decide whether an active trip should end.

    Once the user has been stationary for ``stationary_duration_s`` the trip
    ends: trips meeting the minimum duration and distance are finalized, the
    rest are discarded as too short.

    Args:
        duration_s: Trip duration so far
        distance_m: Trip distance so far
        stationary_since: When the stationary timer started, if running
        now: Timestamp of the current fix

    Returns:
        StopDecision
    """
    if stationary_since is None:
        return StopDecision.CONTINUE
    if now - stationary_since < config.stationary_duration_s:
        return StopDecision.CONTINUE
    if is_too_short(duration_s, distance_m, config):
        return StopDecision.DISCARD
    return StopDecision.FINALIZE


def zombie_reference_time(trip: Trip, last_point_timestamp: Optional[float]) -> float:
    """Last sign of life for a trip: its newest point, else its start."""
    return last_point_timestamp if last_point_timestamp is not None else trip.start_time


def is_zombie(
    trip: Trip,
    last_point_timestamp: Optional[float],
    now: float,
    config: DetectionConfig = DEFAULT_CONFIG,
) -> bool:
    """
    Check whether an open trip has been abandoned.

    Args:
        trip: Active or paused trip
        last_point_timestamp: Timestamp of its newest stored point, if any
        now: Current time (epoch seconds)

    Returns:
        True when nothing has been recorded for longer than the zombie threshold
    """
    if not trip.status.is_open:
        return False
    idle_for = now - zombie_reference_time(trip, last_point_timestamp)
    if idle_for > config.zombie_threshold_s:
        logger.warning(f"Zombie trip detected: {trip.id}, last update {idle_for / 60:.0f} minutes ago")
        return True
    return False


def is_recording(trip: Optional[Trip]) -> bool:
    """True when fixes should be appended to the trip (paused trips ignore them)."""
    return trip is not None and trip.status is TripStatus.ACTIVE
