"""
Activity classification from GPS speed and path shape.

Speed bands give a per-reading verdict; distribution statistics and path
geometry refine it over a window and catch vehicles posing as cyclists.
"""

from tripcore.ml.activity.classifier import (
    ActivityType,
    ActivityClassification,
    DistributionClassification,
    SpeedDistribution,
    classify_by_speed,
    classify_by_moving_average,
    classify_by_speed_distribution,
    get_dominant_activity,
    is_possible_transit,
)
from tripcore.ml.activity.patterns import PatternClassification, classify_with_patterns

__all__ = [
    "ActivityType",
    "ActivityClassification",
    "DistributionClassification",
    "SpeedDistribution",
    "classify_by_speed",
    "classify_by_moving_average",
    "classify_by_speed_distribution",
    "get_dominant_activity",
    "is_possible_transit",
    "PatternClassification",
    "classify_with_patterns",
]
