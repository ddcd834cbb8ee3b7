"""
Speed-based activity classification.

Maps GPS speeds onto activity bands with a confidence score, and refines
single readings with moving-average and distribution statistics.

Functions:
    classify_by_speed: Single reading → activity + confidence
    classify_by_moving_average: Mean of the recent window, boosted when steady
    classify_by_speed_distribution: Median-based classification with spread stats
    get_dominant_activity: Most frequent activity in a series of classifications
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from tripcore.utils.config_loader import ClassifierConfig
from tripcore.utils.geo import MPS_TO_KMH
from tripcore.utils.logging_config import get_logger

logger = get_logger("classification.speed")

DEFAULT_CONFIG = ClassifierConfig()

# Readings at or above this speed count towards the high-speed ratio
HIGH_SPEED_KMH = 7.0


class ActivityType(Enum):
    """Activity categories a speed reading can fall into."""
    STATIONARY = "stationary"
    WALKING = "walking"
    RUNNING = "running"
    CYCLING = "cycling"
    DRIVING = "driving"


@dataclass
class ActivityClassification:
    """Activity verdict with a 0-100 confidence."""
    type: ActivityType
    confidence: int


@dataclass
class SpeedDistribution:
    """
    Summary statistics over a window of speeds (all in km/h).

    Attributes:
        median, mean, p25, p75: Location statistics
        iqr: Interquartile range (p75 - p25)
        std_dev: Population standard deviation
        variance: Population variance
        high_speed_ratio: Fraction of readings >= 7 km/h
        sample_count: Number of readings used
    """
    median: float
    mean: float
    p25: float
    p75: float
    iqr: float
    std_dev: float
    variance: float
    high_speed_ratio: float
    sample_count: int


@dataclass
class DistributionClassification:
    """Distribution-based verdict plus the statistics it was derived from."""
    type: ActivityType
    confidence: int
    distribution: Optional[SpeedDistribution]
    possible_transit: bool = False


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_confidence(value: float) -> int:
    return max(0, min(100, _round_half_up(value)))


def classify_by_speed(speed_mps: float, config: ClassifierConfig = DEFAULT_CONFIG) -> ActivityClassification:
    """
    Classify a single speed reading.

    Bands (km/h): stationary below 2, walking 2-7, cycling 7-30, driving 30+.
    Running speeds fall inside the cycling band, so this never returns RUNNING.

    Args:
        speed_mps: Speed in m/s (negative values are treated as 0)
        config: Band edges

    Returns:
        ActivityClassification with confidence peaking at the band midpoint

    Example:
        >>> classify_by_speed(1.4).type
        <ActivityType.WALKING: 'walking'>
    """
    kmh = max(0.0, speed_mps) * MPS_TO_KMH

    if kmh < config.stationary_max_kmh:
        return ActivityClassification(ActivityType.STATIONARY, 95 if kmh < 0.5 else 85)

    if kmh < config.walking_max_kmh:
        mid = (config.stationary_max_kmh + config.walking_max_kmh) / 2
        confidence = max(65.0, 80.0 - abs(kmh - mid) * 3)
        return ActivityClassification(ActivityType.WALKING, _clamp_confidence(confidence))

    if kmh < config.cycling_max_kmh:
        mid = (config.walking_max_kmh + config.cycling_max_kmh) / 2
        confidence = max(70.0, 85.0 - abs(kmh - mid) * 1.5)
        return ActivityClassification(ActivityType.CYCLING, _clamp_confidence(confidence))

    return ActivityClassification(ActivityType.DRIVING, 95 if kmh > 40 else 85)


def classify_by_moving_average(
    speeds: Sequence[float],
    window: Optional[int] = None,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> ActivityClassification:
    """
    Classify the mean of the last ``window`` speeds (m/s).

    Confidence gets +10 (capped at 95) when the window's standard deviation
    is below 2 km/h.
    """
    if not speeds:
        return ActivityClassification(ActivityType.STATIONARY, 50)

    window = window or config.moving_average_window
    recent = np.asarray(speeds[-window:], dtype=float)
    result = classify_by_speed(float(recent.mean()), config)

    if float(np.std(recent * MPS_TO_KMH)) < 2.0:
        result.confidence = min(95, result.confidence + 10)
    return result


def speed_distribution(speeds: Sequence[float], window: Optional[int] = None,
                       config: ClassifierConfig = DEFAULT_CONFIG) -> Optional[SpeedDistribution]:
    """Compute distribution statistics over the last ``window`` speeds (m/s in, km/h out)."""
    if not speeds:
        return None

    window = window or config.distribution_window
    kmh = np.asarray(speeds[-window:], dtype=float).clip(min=0.0) * MPS_TO_KMH
    p25, median, p75 = np.percentile(kmh, [25, 50, 75])
    variance = float(np.var(kmh))

    return SpeedDistribution(
        median=float(median),
        mean=float(kmh.mean()),
        p25=float(p25),
        p75=float(p75),
        iqr=float(p75 - p25),
        std_dev=math.sqrt(variance),
        variance=variance,
        high_speed_ratio=float(np.mean(kmh >= HIGH_SPEED_KMH)),
        sample_count=int(kmh.size),
    )


def is_possible_transit(dist: SpeedDistribution) -> bool:
    """
    Flag speed profiles that look like a train or bus.

    Vehicles hold a steady speed in the running/cycling range without the
    variance a human produces. Two of three indicators must hold.
    """
    indicators = [
        8.0 <= dist.median <= 20.0,
        dist.iqr < 3.0 and dist.std_dev < 2.0,
        dist.high_speed_ratio > 0.7,
    ]
    return sum(indicators) >= 2


def classify_by_speed_distribution(
    speeds: Sequence[float],
    window: Optional[int] = None,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> DistributionClassification:
    """
    Classify on the median speed, which is robust to GPS spikes.

    Confidence is reduced by 10 for a wide spread (IQR > 5 km/h) and raised by
    10 for a tight one (IQR < 2 and variance < 2).

    Args:
        speeds: Speed readings in m/s, oldest first
        window: Number of trailing readings to use
        config: Band edges and default window

    Returns:
        DistributionClassification including the statistics and transit flag
    """
    dist = speed_distribution(speeds, window, config)
    if dist is None:
        return DistributionClassification(ActivityType.STATIONARY, 50, None)

    base = classify_by_speed(dist.median / MPS_TO_KMH, config)
    confidence = base.confidence
    if dist.iqr > 5.0:
        confidence -= 10
    elif dist.iqr < 2.0 and dist.variance < 2.0:
        confidence += 10

    transit = is_possible_transit(dist)
    if transit:
        logger.debug(
            f"Possible transit: median={dist.median:.1f} km/h iqr={dist.iqr:.1f} "
            f"high_ratio={dist.high_speed_ratio:.2f}"
        )

    return DistributionClassification(
        type=base.type,
        confidence=_clamp_confidence(confidence),
        distribution=dist,
        possible_transit=transit,
    )


def get_dominant_activity(classifications: Sequence[ActivityClassification]) -> ActivityClassification:
    """
    Most frequent activity in a series, with its mean confidence.

    Ties go to the earlier member of ActivityType. An empty series yields
    walking with zero confidence.
    """
    if not classifications:
        return ActivityClassification(ActivityType.WALKING, 0)

    counts = {t: 0 for t in ActivityType}
    totals = {t: 0 for t in ActivityType}
    for c in classifications:
        counts[c.type] += 1
        totals[c.type] += c.confidence

    dominant = max(ActivityType, key=lambda t: counts[t])
    return ActivityClassification(dominant, _round_half_up(totals[dominant] / counts[dominant]))