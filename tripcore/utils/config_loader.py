"""
Configuration management for the trip tracking core.
Loads YAML configs with validation and environment variable support.
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class ClassifierConfig(BaseModel):
    """Configuration for speed-based activity classification."""

    stationary_max_kmh: float = Field(2.0, gt=0, description="Below this speed is stationary")
    walking_max_kmh: float = Field(7.0, gt=0, description="Upper edge of the walking band")
    cycling_max_kmh: float = Field(30.0, gt=0, description="Upper edge of the cycling band; above is driving")

    moving_average_window: int = Field(5, ge=1, description="Readings averaged by the moving-average classifier")
    distribution_window: int = Field(10, ge=1, description="Readings used for distribution statistics")

    # Single transit policy shared by trip-level and segment-level overrides
    transit_avg_speed_kmh: float = Field(10.0, gt=0, description="Computed average speed above which a walk is transit")

    class Config:
        """Pydantic config."""
        validate_assignment = True

    @field_validator("cycling_max_kmh")
    @classmethod
    def _bands_ordered(cls, value, info):
        walking = info.data.get("walking_max_kmh", 0.0)
        if value <= walking:
            raise ValueError("cycling_max_kmh must be above walking_max_kmh")
        return value


class IngestionConfig(BaseModel):
    """Configuration for the GPS ingestion filter."""

    idle_accuracy_m: float = Field(100.0, gt=0, description="Accuracy gate while no trip is active (relaxed)")
    active_accuracy_m: float = Field(50.0, gt=0, description="Accuracy gate once a trip is active (strict)")
    stabilization_points: int = Field(2, ge=1, description="Accurate fixes required before trusting GPS")
    stabilization_timeout_s: float = Field(15.0, gt=0, description="Fall back to the best fix after this long")
    max_physical_speed_mps: float = Field(50.0, gt=0, description="Implied speeds above this are rejected (~180 km/h)")
    speed_fallback_max_gap_s: float = Field(30.0, gt=0, description="Max gap for deriving speed from raw fixes")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class DetectionConfig(BaseModel):
    """Configuration for the trip detection state machine."""

    movement_speed_mps: float = Field(1.0, gt=0, description="Speed above which a trip may start")
    stationary_speed_mps: float = Field(0.5, ge=0, description="Speed at or below which the user is stationary")
    stationary_duration_s: float = Field(180.0, gt=0, description="Stationary time that ends a trip")
    min_trip_duration_s: float = Field(60.0, ge=0, description="Shorter trips are discarded")
    min_trip_distance_m: float = Field(100.0, ge=0, description="Shorter trips are discarded")
    zombie_threshold_s: float = Field(45 * 60.0, gt=0, description="Active trips idle this long are force-ended")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class SegmentConfig(BaseModel):
    """Configuration for multi-modal segmentation."""

    lookahead_points: int = Field(3, ge=1, description="Points inspected to confirm an activity change")
    match_fraction: float = Field(0.66, gt=0, le=1, description="Fraction of lookahead that must match")
    min_segment_duration_s: float = Field(30.0, ge=0, description="Shorter segments are dropped")
    min_segment_distance_m: float = Field(100.0, ge=0, description="Shorter segments are dropped")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class ValidationConfig(BaseModel):
    """Thresholds for GPS-drift detection."""

    min_max_distance_from_start_m: float = Field(150.0, ge=0)
    min_displacement_ratio: float = Field(0.10, ge=0, le=1)
    displacement_check_radius_m: float = Field(200.0, ge=0)
    min_bounding_box_m: float = Field(80.0, ge=0)
    bounding_box_check_distance_m: float = Field(400.0, ge=0)
    min_radius_of_gyration_m: float = Field(25.0, ge=0)
    gyration_check_distance_m: float = Field(300.0, ge=0)

    class Config:
        """Pydantic config."""
        validate_assignment = True


class SyncConfig(BaseModel):
    """Configuration for backend synchronisation."""

    api_base_url: str = Field("http://localhost:8000", description="Backend base URL")
    api_token: Optional[str] = Field(None, description="Bearer token for the backend")
    request_timeout_s: float = Field(15.0, gt=0, description="HTTP request timeout")
    batch_size: int = Field(50, ge=1, description="Trips per batch upload")
    retry_delays_s: List[float] = Field([1.0, 2.0, 4.0, 8.0], min_length=1, description="Network retry backoff")
    min_walk_distance_m: float = Field(400.0, ge=0, description="Walks shorter than this are never uploaded")
    min_cycle_distance_m: float = Field(1000.0, ge=0, description="Rides shorter than this are never uploaded")
    auto_sync_on_completion: bool = Field(True, description="Schedule a sync when a trip completes")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class TrackingConfig(BaseModel):
    """Configuration for the tracking orchestrator."""

    user_id: str = Field("current_user", description="Local user id stamped on new trips")
    foreground_interval_s: float = Field(3.0, gt=0, description="Foreground watcher delivery interval")
    fix_queue_size: int = Field(1000, ge=1, description="Capacity of the fix queue")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class Config:
    """Main configuration manager."""

    SECTIONS = {
        "classifier": ("classifier.yaml", ClassifierConfig),
        "ingestion": ("ingestion.yaml", IngestionConfig),
        "detection": ("detection.yaml", DetectionConfig),
        "segments": ("segments.yaml", SegmentConfig),
        "validation": ("validation.yaml", ValidationConfig),
        "sync": ("sync.yaml", SyncConfig),
        "tracking": ("tracking.yaml", TrackingConfig),
    }

    def __init__(self, config_dir: Path = Path("config")):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.classifier = ClassifierConfig()
        self.ingestion = IngestionConfig()
        self.detection = DetectionConfig()
        self.segments = SegmentConfig()
        self.validation = ValidationConfig()
        self.sync = SyncConfig()
        self.tracking = TrackingConfig()

    def load_all(self):
        """Load all configuration files, then apply environment overrides."""
        for attr, (filename, config_class) in self.SECTIONS.items():
            setattr(self, attr, self.load_config(filename, config_class))

        api_url = os.environ.get("TRIPCORE_API_URL")
        if api_url:
            self.sync.api_base_url = api_url
        api_token = os.environ.get("TRIPCORE_API_TOKEN")
        if api_token:
            self.sync.api_token = api_token
        return self

    def load_config(self, filename: str, config_class: type[BaseModel]) -> BaseModel:
        """
        Load and validate a configuration file.

        Args:
            filename: Config file name
            config_class: Pydantic model class for validation

        Returns:
            Validated configuration object

        Example:
            >>> config = Config()
            >>> detection = config.load_config("detection.yaml", DetectionConfig)
            >>> print(f"Trips end after {detection.stationary_duration_s}s stationary")
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            return config_class()

        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return config_class()

        return config_class(**config_dict)

    def save_config(self, config: BaseModel, filename: str):
        """
        Save configuration to YAML file.

        Args:
            config: Configuration object to save
            filename: Output filename
        """
        filepath = self.config_dir / filename
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    def create_default_configs(self):
        """Create default configuration files if they don't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        for filename, config_class in self.SECTIONS.values():
            filepath = self.config_dir / filename
            if not filepath.exists():
                self.save_config(config_class(), filename)


if __name__ == "__main__":
    config_manager = Config()
    config_manager.create_default_configs()
    config_manager.load_all()

    print(f"Detection: trips end after {config_manager.detection.stationary_duration_s:.0f}s stationary")
    print(f"Sync: batches of {config_manager.sync.batch_size} to {config_manager.sync.api_base_url}")
