"""
Unit tests for utility modules.
"""

import pytest
import yaml

from tripcore.utils.config_loader import (
    ClassifierConfig,
    Config,
    DetectionConfig,
    IngestionConfig,
    SyncConfig,
    TrackingConfig,
)
from tripcore.utils.logging_config import LogConfig, get_logger


class TestConfigLoader:
    """Test configuration loading and validation."""

    def test_detection_config_defaults(self):
        config = DetectionConfig()
        assert config.movement_speed_mps == 1.0
        assert config.stationary_duration_s == 180.0
        assert config.min_trip_duration_s == 60.0
        assert config.min_trip_distance_m == 100.0
        assert config.zombie_threshold_s == 2700.0

    def test_ingestion_config_defaults(self):
        config = IngestionConfig()
        assert config.idle_accuracy_m == 100.0
        assert config.active_accuracy_m == 50.0
        assert config.stabilization_points == 2
        assert config.stabilization_timeout_s == 15.0
        assert config.max_physical_speed_mps == 50.0

    def test_sync_config_defaults(self):
        config = SyncConfig()
        assert config.retry_delays_s == [1.0, 2.0, 4.0, 8.0]
        assert config.batch_size == 50
        assert config.min_walk_distance_m == 400.0
        assert config.min_cycle_distance_m == 1000.0

    def test_validation(self):
        with pytest.raises(ValueError):
            DetectionConfig(stationary_duration_s=-1)
        with pytest.raises(ValueError):
            SyncConfig(retry_delays_s=[])
        with pytest.raises(ValueError):
            ClassifierConfig(walking_max_kmh=10.0, cycling_max_kmh=8.0)

    def test_validate_assignment(self):
        config = TrackingConfig()
        with pytest.raises(ValueError):
            config.fix_queue_size = 0

    def test_missing_files_give_defaults(self, tmp_path):
        config = Config(tmp_path / "missing").load_all()
        assert config.detection == DetectionConfig()
        assert config.tracking.user_id == "current_user"

    def test_yaml_overrides(self, tmp_path):
        (tmp_path / "detection.yaml").write_text(yaml.safe_dump({"stationary_duration_s": 240.0}))
        (tmp_path / "sync.yaml").write_text("")

        config = Config(tmp_path).load_all()

        assert config.detection.stationary_duration_s == 240.0
        assert config.detection.min_trip_distance_m == 100.0
        assert config.sync == SyncConfig()

    def test_save_and_create_defaults(self, tmp_path):
        manager = Config(tmp_path)
        manager.create_default_configs()

        assert (tmp_path / "ingestion.yaml").exists()
        assert len(list(tmp_path.glob("*.yaml"))) == len(Config.SECTIONS)
        reloaded = Config(tmp_path).load_all()
        assert reloaded.ingestion == IngestionConfig()
        assert reloaded.sync.retry_delays_s == [1.0, 2.0, 4.0, 8.0]

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TRIPCORE_API_URL", "https://trips.example.test")
        monkeypatch.setenv("TRIPCORE_API_TOKEN", "secret")

        config = Config(tmp_path).load_all()

        assert config.sync.api_base_url == "https://trips.example.test"
        assert config.sync.api_token == "secret"


class TestLogging:
    def test_get_logger_binds_component(self):
        messages = []
        log = get_logger("tracking.detector")
        sink_id = log.add(lambda message: messages.append(message.record), level="DEBUG")
        try:
            log.info("Trip started")
        finally:
            log.remove(sink_id)

        assert messages[-1]["extra"]["component"] == "tracking.detector"
        assert messages[-1]["message"] == "Trip started"

    def test_trip_context_defaults_and_binding(self):
        messages = []
        log = get_logger("tracking.manager")
        sink_id = log.add(lambda message: messages.append(message.record), level="DEBUG")
        try:
            log.info("No trip yet")
            log.bind(trip="trip_1").info("Started trip")
        finally:
            log.remove(sink_id)

        assert messages[-2]["extra"]["trip"] == "-"
        assert messages[-1]["extra"]["trip"] == "trip_1"
        assert messages[-1]["extra"]["component"] == "tracking.manager"

    def test_console_format_shows_trip(self):
        assert "{extra[component]}" in LogConfig.LOG_FORMAT
        assert "{extra[trip]}" in LogConfig.LOG_FORMAT
        assert LogConfig.COMPONENTS == [
            "ingestion", "tracking", "classification", "segmentation", "validation", "sync",
        ]
