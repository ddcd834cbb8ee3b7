"""
GPS ingestion filter.

Screens raw fixes before they reach the trip state machine:

- accuracy gate (relaxed while idle, strict during a trip)
- stabilization buffering before a trip may start
- physical outlier rejection against the last stored point
- speed fallback when the device reports no speed

All mutable state lives in an explicit IngestionSession owned by the caller.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence

from tripcore.tracking.trip import Fix
from tripcore.utils.config_loader import IngestionConfig
from tripcore.utils.geo import distance_between
from tripcore.utils.logging_config import get_logger

logger = get_logger("ingestion.filter")


class FilterDecision(Enum):
    """Outcome of screening a single fix."""
    ACCEPTED = "accepted"
    BUFFERING = "buffering"
    REJECTED_ACCURACY = "rejected_accuracy"
    REJECTED_OUTLIER = "rejected_outlier"
    REJECTED_ORDER = "rejected_order"


@dataclass
class IngestionSession:
    """
    Per-tracking-session filter state.

    Created when tracking starts and reset whenever a trip ends or tracking
    stops.

    Attributes:
        stabilization_buffer: Accurate fixes collected before a trip starts
        stabilized: True once enough accurate fixes have been seen
        best_fix: Most accurate fix seen during the current stabilization attempt
        stabilization_started_at: Timestamp of the first fix of that attempt
        last_stored: Last fix appended to the trip (outlier reference)
        previous_raw: Last raw fix seen (speed fallback reference)
        stationary_since: Timestamp at which the user became stationary
    """
    stabilization_buffer: List[Fix] = field(default_factory=list)
    stabilized: bool = False
    best_fix: Optional[Fix] = None
    stabilization_started_at: Optional[float] = None
    last_stored: Optional[Fix] = None
    previous_raw: Optional[Fix] = None
    stationary_since: Optional[float] = None

    def reset_stabilization(self):
        """Discard the current stabilization attempt."""
        self.stabilization_buffer = []
        self.stabilized = False
        self.best_fix = None
        self.stabilization_started_at = None

    def reset(self):
        """Return to the freshly-constructed state."""
        self.reset_stabilization()
        self.last_stored = None
        self.previous_raw = None
        self.stationary_since = None


@dataclass
class StabilizationResult:
    """
    Result of feeding a fix into stabilization.

    Attributes:
        ready: True when a trip may start
        fixes: Fixes to replay as the trip's first points, oldest first
        anchor: Most accurate of those fixes
        degraded: True when the timeout fallback was used
    """
    ready: bool
    fixes: List[Fix] = field(default_factory=list)
    anchor: Optional[Fix] = None
    degraded: bool = False


def _accuracy_key(fix: Fix) -> float:
    return fix.accuracy if fix.accuracy is not None else math.inf


class IngestionFilter:
    """
    Stateless fix screening over an IngestionSession.

    Args:
        config: Thresholds (accuracy gates, stabilization, outlier ceiling)

    Example:
        >>> session = IngestionSession()
        >>> gate = IngestionFilter()
        >>> fix = gate.with_speed(raw_fix, session)
        >>> if gate.accept_for_trip(fix, session) is FilterDecision.ACCEPTED:
        ...     store(fix)
    """

    def __init__(self, config: Optional[IngestionConfig] = None):
        self.config = config or IngestionConfig()

    def passes_accuracy(self, fix: Fix, trip_active: bool) -> bool:
        """
        Check the reported accuracy against the gate for the current mode.

        Fixes without a reported accuracy are accepted.
        """
        if fix.accuracy is None:
            return True
        threshold = self.config.active_accuracy_m if trip_active else self.config.idle_accuracy_m
        return fix.accuracy <= threshold

    def with_speed(self, fix: Fix, session: IngestionSession) -> Fix:
        """
        Fill in a missing or negative device speed.

        The speed is derived from the previous raw fix when it is at most
        ``speed_fallback_max_gap_s`` older, otherwise it is 0. The session's
        previous raw fix is always advanced.

        Returns:
            The fix with a usable ``speed``
        """
        previous = session.previous_raw
        session.previous_raw = fix

        if fix.speed is not None and fix.speed >= 0:
            return fix

        derived = 0.0
        if previous is not None:
            dt = fix.timestamp - previous.timestamp
            if 0 < dt <= self.config.speed_fallback_max_gap_s:
                derived = distance_between(previous.coordinate, fix.coordinate) / dt
        logger.debug(f"Derived speed {derived:.2f} m/s (device reported {fix.speed})")
        return replace(fix, speed=derived)

    def stabilize(self, fix: Fix, session: IngestionSession) -> StabilizationResult:
        """
        Feed a moving fix into stabilization while no trip is active.

        Accurate fixes are buffered; once ``stabilization_points`` have been
        collected the whole buffer is released. If the timeout passes first,
        the single best fix seen is released instead and flagged degraded.

        Args:
            fix: Fix already carrying a usable speed
            session: Session state, mutated in place

        Returns:
            StabilizationResult; ``ready`` is False while still buffering
        """
        if session.stabilization_started_at is None:
            session.stabilization_started_at = fix.timestamp

        if session.best_fix is None or _accuracy_key(fix) < _accuracy_key(session.best_fix):
            session.best_fix = fix

        if self.passes_accuracy(fix, trip_active=False):
            session.stabilization_buffer.append(fix)
            logger.debug(
                f"GPS stabilization: {len(session.stabilization_buffer)}/"
                f"{self.config.stabilization_points} accurate readings"
            )
        else:
            logger.debug(f"Skipping inaccurate fix during stabilization: {fix.accuracy}m")

        if len(session.stabilization_buffer) >= self.config.stabilization_points:
            fixes = sorted(session.stabilization_buffer, key=lambda f: f.timestamp)
            anchor = min(fixes, key=_accuracy_key)
            self._mark_stabilized(session)
            logger.info(f"GPS stabilized with {len(fixes)} fixes (best accuracy {anchor.accuracy}m)")
            return StabilizationResult(ready=True, fixes=fixes, anchor=anchor)

        elapsed = fix.timestamp - session.stabilization_started_at
        if elapsed >= self.config.stabilization_timeout_s:
            best = session.best_fix
            self._mark_stabilized(session)
            logger.warning(
                f"GPS stabilization timed out after {elapsed:.0f}s, "
                f"continuing with degraded accuracy ({best.accuracy}m)"
            )
            return StabilizationResult(ready=True, fixes=[best], anchor=best, degraded=True)

        return StabilizationResult(ready=False)

    def _mark_stabilized(self, session: IngestionSession):
        session.stabilized = True
        session.stabilization_buffer = []
        session.best_fix = None
        session.stabilization_started_at = None

    def check_outlier(self, fix: Fix, session: IngestionSession) -> FilterDecision:
        """
        Compare a fix against the last stored point.

        Rejects fixes that are not newer than the last stored point and fixes
        whose implied speed exceeds the physical ceiling. The last stored point
        is left untouched either way.
        """
        last = session.last_stored
        if last is None:
            return FilterDecision.ACCEPTED

        dt = fix.timestamp - last.timestamp
        if dt <= 0:
            logger.debug(f"Dropping out-of-order fix ({dt:.1f}s behind last stored point)")
            return FilterDecision.REJECTED_ORDER

        implied = distance_between(last.coordinate, fix.coordinate) / dt
        if implied > self.config.max_physical_speed_mps:
            logger.debug(
                f"Dropping outlier: implied {implied:.1f} m/s exceeds "
                f"{self.config.max_physical_speed_mps:.0f} m/s"
            )
            return FilterDecision.REJECTED_OUTLIER

        return FilterDecision.ACCEPTED

    def accept_for_trip(self, fix: Fix, session: IngestionSession) -> FilterDecision:
        """
        Screen a fix for appending to an active trip.

        Applies the strict accuracy gate and the outlier check; on acceptance
        the session's last stored point advances to this fix.
        """
        if not self.passes_accuracy(fix, trip_active=True):
            logger.debug(f"Dropping inaccurate fix: {fix.accuracy}m > {self.config.active_accuracy_m}m")
            return FilterDecision.REJECTED_ACCURACY

        decision = self.check_outlier(fix, session)
        if decision is FilterDecision.ACCEPTED:
            session.last_stored = fix
        return decision

    @staticmethod
    def order_batch(fixes: Sequence[Fix]) -> List[Fix]:
        """Sort a delivered batch by timestamp; providers may deliver out of order."""
        return sorted(fixes, key=lambda f: f.timestamp)
