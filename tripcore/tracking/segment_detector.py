"""
Multi-modal segment detection.

Splits a finished trip's points into contiguous runs of a single activity,
e.g. walk → cycle → walk. A change only opens a new segment when it persists
across a short lookahead window, so one misclassified fix does not split a
trip.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from tripcore.ml.activity.classifier import ActivityType, classify_by_speed
from tripcore.tracking.trip import LocationPoint, TripType, apply_transit_override
from tripcore.utils.config_loader import ClassifierConfig, SegmentConfig
from tripcore.utils.geo import distance_between, speed_kmh
from tripcore.utils.logging_config import get_logger

logger = get_logger("segmentation.detector")

# Running shares the cycling band, so both map to CYCLE
SEGMENT_TYPE_MAPPING = {
    ActivityType.STATIONARY: TripType.WALK,
    ActivityType.WALKING: TripType.WALK,
    ActivityType.RUNNING: TripType.CYCLE,
    ActivityType.CYCLING: TripType.CYCLE,
    ActivityType.DRIVING: TripType.DRIVE,
}


@dataclass
class PointLabel:
    """Per-point classification used during segmentation."""
    type: TripType
    speed_kmh: float
    confidence: int


@dataclass
class TripSegment:
    """
    Contiguous range of a trip's points sharing one activity.

    Attributes:
        start_index, end_index: Inclusive indices into the trip's points
        points: The points in the range (concatenated when merged)
        type: Segment activity
        distance: Meters
        duration: Seconds
        avg_speed: km/h
        max_speed: km/h
        confidence: 0-100
    """
    start_index: int
    end_index: int
    type: TripType
    distance: float
    duration: float
    avg_speed: float
    max_speed: float
    confidence: int
    points: List[LocationPoint] = field(default_factory=list)


@dataclass
class SegmentAnalysis:
    """Result of segmenting a trip."""
    is_multi_modal: bool
    segments: List[TripSegment]
    dominant_type: TripType
    confidence: int


class SegmentDetector:
    """
    Post-hoc segmentation of a trip's point sequence.

    Args:
        config: Lookahead and minimum segment size
        classifier_config: Speed bands and transit threshold
    """

    def __init__(self, config: Optional[SegmentConfig] = None,
                 classifier_config: Optional[ClassifierConfig] = None):
        self.config = config or SegmentConfig()
        self.classifier_config = classifier_config or ClassifierConfig()

    def analyze_trip(self, points: Sequence[LocationPoint]) -> SegmentAnalysis:
        """
        Segment a trip.

        Args:
            points: The trip's points in timestamp order

        Returns:
            SegmentAnalysis with the surviving segments, whether more than one
            activity survived, and the distance-weighted dominant type and
            confidence
        """
        if len(points) < 2:
            return SegmentAnalysis(False, [], TripType.WALK, 0)

        labels = [self._label(p) for p in points]

        raw_segments = []
        start = 0
        current = labels[0].type
        for i in range(1, len(labels)):
            if self._should_split(labels, i, current):
                segment = self._build_segment(points, labels, start, i - 1, current)
                if segment:
                    raw_segments.append(segment)
                start = i
                current = labels[i].type

        segment = self._build_segment(points, labels, start, len(labels) - 1, current)
        if segment:
            raw_segments.append(segment)

        segments = self._filter_and_merge(raw_segments)
        distinct = {s.type for s in segments}

        analysis = SegmentAnalysis(
            is_multi_modal=len(distinct) > 1,
            segments=segments,
            dominant_type=self._dominant_type(segments),
            confidence=self._overall_confidence(segments),
        )
        logger.info(
            f"Segmented {len(points)} points into {len(segments)} segments "
            f"{[s.type.value for s in segments]} (multi-modal={analysis.is_multi_modal})"
        )
        return analysis

    def _label(self, point: LocationPoint) -> PointLabel:
        speed = max(point.speed or 0.0, 0.0)
        classification = classify_by_speed(speed, self.classifier_config)
        return PointLabel(
            type=SEGMENT_TYPE_MAPPING[classification.type],
            speed_kmh=speed * 3.6,
            confidence=classification.confidence,
        )

    def _should_split(self, labels: List[PointLabel], index: int, current: TripType) -> bool:
        """A split needs the new type to hold for most of the lookahead window."""
        new_type = labels[index].type
        if new_type == current:
            return False

        window = min(self.config.lookahead_points, len(labels) - index)
        if window < 2:
            return False

        matches = sum(1 for label in labels[index:index + window] if label.type == new_type)
        return matches >= math.ceil(window * self.config.match_fraction)

    def _build_segment(self, points: Sequence[LocationPoint], labels: List[PointLabel],
                       start: int, end: int, seg_type: TripType) -> Optional[TripSegment]:
        seg_points = list(points[start:end + 1])
        if len(seg_points) < 2:
            return None

        seg_labels = labels[start:end + 1]
        duration = seg_points[-1].timestamp - seg_points[0].timestamp
        distance = sum(
            distance_between(seg_points[i - 1].coordinate, seg_points[i].coordinate)
            for i in range(1, len(seg_points))
        )
        seg_type = apply_transit_override(
            seg_type, distance, duration, self.classifier_config.transit_avg_speed_kmh
        )

        return TripSegment(
            start_index=start,
            end_index=end,
            type=seg_type,
            distance=distance,
            duration=duration,
            avg_speed=speed_kmh(distance, duration),
            max_speed=max(label.speed_kmh for label in seg_labels),
            confidence=round(sum(label.confidence for label in seg_labels) / len(seg_labels)),
            points=seg_points,
        )

    def _filter_and_merge(self, segments: List[TripSegment]) -> List[TripSegment]:
        """Drop segments below the minimum size and merge equal-type neighbours."""
        kept: List[TripSegment] = []
        for segment in segments:
            if (segment.duration < self.config.min_segment_duration_s
                    or segment.distance < self.config.min_segment_distance_m):
                logger.debug(
                    f"Dropping {segment.type.value} segment [{segment.start_index}, {segment.end_index}]: "
                    f"{segment.duration:.0f}s, {segment.distance:.0f}m"
                )
                continue

            if kept and kept[-1].type == segment.type:
                prev = kept[-1]
                total = prev.distance + segment.distance
                if total > 0:
                    prev.confidence = round(
                        (prev.confidence * prev.distance + segment.confidence * segment.distance) / total
                    )
                prev.end_index = segment.end_index
                prev.points = prev.points + segment.points
                prev.distance = total
                prev.duration += segment.duration
                prev.avg_speed = speed_kmh(prev.distance, prev.duration)
                prev.max_speed = max(prev.max_speed, segment.max_speed)
                continue

            kept.append(segment)
        return kept

    @staticmethod
    def _dominant_type(segments: List[TripSegment]) -> TripType:
        if not segments:
            return TripType.WALK
        by_type: Dict[TripType, float] = {}
        for segment in segments:
            by_type[segment.type] = by_type.get(segment.type, 0.0) + segment.distance
        return max(by_type, key=by_type.get)

    @staticmethod
    def _overall_confidence(segments: List[TripSegment]) -> int:
        total = sum(s.distance for s in segments)
        if total <= 0:
            return 0
        return round(sum(s.confidence * s.distance for s in segments) / total)
