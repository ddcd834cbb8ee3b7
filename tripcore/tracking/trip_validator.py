"""
GPS-drift detection.

A receiver sitting still wanders by tens of meters, and summing those jumps
can add up to a convincing distance. These geometric checks catch trips
whose points never actually went anywhere.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from tripcore.utils.config_loader import ValidationConfig
from tripcore.utils.geo import (
    Coordinate,
    bounding_box_dimensions,
    max_distance_from_start,
    net_displacement,
    radius_of_gyration,
)
from tripcore.utils.logging_config import get_logger

logger = get_logger("validation.drift")

DEFAULT_CONFIG = ValidationConfig()


@dataclass
class ValidationMetrics:
    """Geometry of a trip's points (meters unless noted)."""
    max_distance_from_start: float = 0.0
    net_displacement: float = 0.0
    displacement_ratio: float = 0.0      # net_displacement / total_distance
    bounding_box_width: float = 0.0
    bounding_box_height: float = 0.0
    radius_of_gyration: float = 0.0
    total_distance: float = 0.0


@dataclass
class ValidationResult:
    """Outcome of drift validation; ``reasons`` lists every failed check."""
    is_valid: bool
    reasons: List[str] = field(default_factory=list)
    metrics: ValidationMetrics = field(default_factory=ValidationMetrics)

    @property
    def note(self) -> str:
        return "; ".join(self.reasons)


def calculate_metrics(coordinates: Sequence[Coordinate], total_distance: float) -> ValidationMetrics:
    """Compute the drift metrics for a route and its claimed distance."""
    if len(coordinates) < 2:
        return ValidationMetrics(total_distance=total_distance)

    displacement = net_displacement(coordinates)
    width, height = bounding_box_dimensions(coordinates)
    return ValidationMetrics(
        max_distance_from_start=max_distance_from_start(coordinates),
        net_displacement=displacement,
        displacement_ratio=displacement / total_distance if total_distance > 0 else 0.0,
        bounding_box_width=width,
        bounding_box_height=height,
        radius_of_gyration=radius_of_gyration(coordinates),
        total_distance=total_distance,
    )


def validate_trip(
    coordinates: Sequence[Coordinate],
    total_distance: float,
    config: Optional[ValidationConfig] = None,
) -> ValidationResult:
    """
    Decide whether a trip represents real movement.

    Checks:
        1. The trip got at least 150 m from its start.
        2. A trip that stayed within 200 m of its start is not circular
           (net displacement at least 10% of the distance).
        3. A trip claiming over 400 m covers a box at least 80 m across.
        4. A trip claiming over 300 m has a radius of gyration of at least 25 m.

    Args:
        coordinates: Route as (lat, lon) tuples, start first
        total_distance: Claimed path length in meters
        config: Thresholds

    Returns:
        ValidationResult with all failure reasons and the metrics

    Example:
        >>> result = validate_trip(route, 600.0)
        >>> if not result.is_valid:
        ...     print(result.note)
    """
    config = config or DEFAULT_CONFIG
    metrics = calculate_metrics(coordinates, total_distance)
    reasons = []

    logger.debug(
        f"Metrics: max_from_start={metrics.max_distance_from_start:.0f}m "
        f"net={metrics.net_displacement:.0f}m ratio={metrics.displacement_ratio:.2f} "
        f"box={metrics.bounding_box_width:.0f}x{metrics.bounding_box_height:.0f}m "
        f"gyration={metrics.radius_of_gyration:.0f}m total={total_distance:.0f}m"
    )

    if metrics.max_distance_from_start < config.min_max_distance_from_start_m:
        reasons.append(
            f"Never went far enough from start ({metrics.max_distance_from_start:.0f}m < "
            f"{config.min_max_distance_from_start_m:.0f}m required)"
        )

    if (metrics.max_distance_from_start < config.displacement_check_radius_m
            and metrics.displacement_ratio < config.min_displacement_ratio):
        reasons.append(
            f"Circular movement pattern detected (displacement ratio "
            f"{metrics.displacement_ratio * 100:.0f}% < {config.min_displacement_ratio * 100:.0f}% required)"
        )

    if (total_distance > config.bounding_box_check_distance_m
            and max(metrics.bounding_box_width, metrics.bounding_box_height) < config.min_bounding_box_m):
        reasons.append(
            f"Claimed {total_distance:.0f}m but stayed in "
            f"{metrics.bounding_box_width:.0f}x{metrics.bounding_box_height:.0f}m area"
        )

    if (total_distance > config.gyration_check_distance_m
            and metrics.radius_of_gyration < config.min_radius_of_gyration_m):
        reasons.append(
            f"Points too clustered (radius of gyration {metrics.radius_of_gyration:.0f}m < "
            f"{config.min_radius_of_gyration_m:.0f}m for {total_distance:.0f}m trip)"
        )

    result = ValidationResult(is_valid=not reasons, reasons=reasons, metrics=metrics)
    if result.is_valid:
        logger.info("Trip passed drift validation")
    else:
        logger.info(f"Trip failed drift validation: {result.note}")
    return result
