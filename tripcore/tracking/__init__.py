"""
Trip tracking - from raw GPS fixes to finished, validated trips.

Components:
- trip: Domain records (Fix, LocationPoint, Trip) and trip statistics
- ingestion_filter: Accuracy gate, stabilization, outlier rejection
- trip_detector: Start, stop and zombie decisions
- segment_detector: Multi-modal splitting of finished trips
- trip_validator: GPS-drift detection
- trip_manager: Trip lifecycle over the store
- tracking_service: Queue-fed single-writer orchestrator

Example:
    >>> from tripcore.tracking.tracking_service import TrackingService
    >>> service = TrackingService(TripStore())
    >>> await service.start()
"""

__version__ = "0.1.0"

# Store-backed components (trip_manager, tracking_service) are imported from
# their modules directly; tripcore.api.database depends on this package.
from .trip import Fix, LocationPoint, Trip, TripStatus, TripType, compute_trip_stats
from .ingestion_filter import FilterDecision, IngestionFilter, IngestionSession
from .trip_detector import DetectionState, StopDecision
from .segment_detector import SegmentAnalysis, SegmentDetector, TripSegment
from .trip_validator import ValidationResult, validate_trip

__all__ = [
    "Fix",
    "LocationPoint",
    "Trip",
    "TripStatus",
    "TripType",
    "compute_trip_stats",
    "FilterDecision",
    "IngestionFilter",
    "IngestionSession",
    "DetectionState",
    "StopDecision",
    "SegmentAnalysis",
    "SegmentDetector",
    "TripSegment",
    "ValidationResult",
    "validate_trip",
]
