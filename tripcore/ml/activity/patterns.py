"""
Path-shape evidence for separating human movement from vehicles.

A train or bus can hold running or cycling speeds, but it travels a straighter
line at a steadier speed than a person. The indicators here combine the speed
distribution with sinuosity and bearing-change density to override those
verdicts to driving.
"""

from dataclasses import dataclass, field
from typing import Dict, Sequence

from tripcore.ml.activity.classifier import (
    DEFAULT_CONFIG,
    ActivityType,
    classify_by_speed_distribution,
)
from tripcore.utils.config_loader import ClassifierConfig
from tripcore.utils.geo import Coordinate, bearing_changes_per_km, calculate_sinuosity
from tripcore.utils.logging_config import get_logger

logger = get_logger("classification.patterns")

# Indicator weights; a verdict is overridden at OVERRIDE_SCORE or more
INDICATOR_WEIGHTS = {
    "speed_band": 1,
    "low_sinuosity": 2,
    "few_bearing_changes": 2,
    "high_speed_ratio": 1,
    "narrow_iqr": 1,
}
OVERRIDE_SCORE = 4
MAX_SCORE = sum(INDICATOR_WEIGHTS.values())

SINUOSITY_THRESHOLD = 1.15
BEARING_CHANGES_PER_KM_THRESHOLD = 3.0

# Verdicts that a vehicle can masquerade as
OVERRIDABLE = (ActivityType.RUNNING, ActivityType.CYCLING)


@dataclass
class PatternClassification:
    """
    Pattern-refined activity verdict.

    Attributes:
        type: Final activity type
        confidence: 0-100 confidence
        base_type: Verdict from the speed distribution alone
        score: Sum of weights of the indicators that fired
        indicators: Which indicators fired
        sinuosity: Path length over straight-line distance
        bearing_changes_per_km: Direction changes per km travelled
        possible_transit: Transit flag from the speed distribution
        overridden: True when the base verdict was replaced by DRIVING
    """
    type: ActivityType
    confidence: int
    base_type: ActivityType
    score: int = 0
    indicators: Dict[str, bool] = field(default_factory=dict)
    sinuosity: float = 1.0
    bearing_changes_per_km: float = 0.0
    possible_transit: bool = False
    overridden: bool = False


def classify_with_patterns(
    speeds: Sequence[float],
    coordinates: Sequence[Coordinate],
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> PatternClassification:
    """
    Classify a trip using speed distribution plus path shape.

    Args:
        speeds: Per-point speeds in m/s, oldest first
        coordinates: Route as (lat, lon) tuples in the same order
        config: Classifier thresholds

    Returns:
        PatternClassification; ``type`` is DRIVING when a running or cycling
        verdict with a running-like or transit-like speed profile collects
        enough vehicle indicators

    Example:
        >>> result = classify_with_patterns(speeds, route)
        >>> if result.overridden:
        ...     print(f"Transit detected (score {result.score}/{MAX_SCORE})")
    """
    # Use every reading, not just a trailing window
    base = classify_by_speed_distribution(speeds, window=max(len(speeds), 1), config=config)
    result = PatternClassification(
        type=base.type,
        confidence=base.confidence,
        base_type=base.type,
        possible_transit=base.possible_transit,
    )
    dist = base.distribution
    if dist is None:
        return result

    result.sinuosity = calculate_sinuosity(coordinates)
    result.bearing_changes_per_km = bearing_changes_per_km(coordinates)
    has_path = len(coordinates) >= 2

    result.indicators = {
        "speed_band": 8.0 <= dist.median <= 20.0,
        "low_sinuosity": has_path and result.sinuosity < SINUOSITY_THRESHOLD,
        "few_bearing_changes": has_path and result.bearing_changes_per_km < BEARING_CHANGES_PER_KM_THRESHOLD,
        "high_speed_ratio": dist.high_speed_ratio > 0.7,
        "narrow_iqr": dist.iqr < 3.0,
    }
    result.score = sum(INDICATOR_WEIGHTS[name] for name, fired in result.indicators.items() if fired)

    # Only a running-like median or a transit-like speed profile opens the override
    vehicle_like_speed = result.indicators["speed_band"] or base.possible_transit
    if base.type in OVERRIDABLE and vehicle_like_speed and result.score >= OVERRIDE_SCORE:
        result.type = ActivityType.DRIVING
        result.confidence = max(base.confidence, round(100 * result.score / MAX_SCORE))
        result.overridden = True
        logger.info(
            f"Pattern override {base.type.value} -> driving "
            f"(score {result.score}/{MAX_SCORE}, sinuosity={result.sinuosity:.2f}, "
            f"turns/km={result.bearing_changes_per_km:.1f})"
        )

    return result
