"""
Unit tests for activity classification.

Tests cover:
- Speed bands and confidence shaping
- Moving-average and distribution classifiers
- Transit flagging
- Path-pattern override of vehicle-like trips
"""

import pytest

from tripcore.ml.activity import (
    ActivityClassification,
    ActivityType,
    classify_by_moving_average,
    classify_by_speed,
    classify_by_speed_distribution,
    classify_with_patterns,
    get_dominant_activity,
)
from tripcore.ml.activity.patterns import MAX_SCORE
from tripcore.utils.config_loader import ClassifierConfig

from conftest import build_fixes


class TestClassifyBySpeed:
    """Per-reading speed bands."""

    def test_stationary(self):
        assert classify_by_speed(0.0) == ActivityClassification(ActivityType.STATIONARY, 95)
        assert classify_by_speed(0.3) == ActivityClassification(ActivityType.STATIONARY, 85)

    def test_negative_speed_treated_as_zero(self):
        assert classify_by_speed(-1.0).type == ActivityType.STATIONARY

    def test_walking_peaks_at_band_midpoint(self):
        assert classify_by_speed(1.25) == ActivityClassification(ActivityType.WALKING, 80)
        assert classify_by_speed(1.5) == ActivityClassification(ActivityType.WALKING, 77)

    def test_cycling(self):
        assert classify_by_speed(6.0) == ActivityClassification(ActivityType.CYCLING, 80)

    def test_driving(self):
        assert classify_by_speed(10.0) == ActivityClassification(ActivityType.DRIVING, 85)
        assert classify_by_speed(15.0) == ActivityClassification(ActivityType.DRIVING, 95)

    def test_bands_and_confidence_bounds(self):
        config = ClassifierConfig()
        for i in range(0, 200):
            speed = i * 0.25
            result = classify_by_speed(speed)
            kmh = speed * 3.6
            assert 0 <= result.confidence <= 100
            assert result.type != ActivityType.RUNNING
            if kmh < config.stationary_max_kmh - 1e-9:
                assert result.type == ActivityType.STATIONARY
            elif config.stationary_max_kmh + 1e-9 < kmh < config.walking_max_kmh - 1e-9:
                assert result.type == ActivityType.WALKING
            elif config.walking_max_kmh + 1e-9 < kmh < config.cycling_max_kmh - 1e-9:
                assert result.type == ActivityType.CYCLING
            elif kmh > config.cycling_max_kmh + 1e-9:
                assert result.type == ActivityType.DRIVING

    def test_custom_bands(self):
        config = ClassifierConfig(walking_max_kmh=10.0)
        assert classify_by_speed(2.5, config).type == ActivityType.WALKING


class TestMovingAverage:
    def test_steady_walk_gets_consistency_bonus(self):
        result = classify_by_moving_average([1.4] * 5)
        assert result.type == ActivityType.WALKING
        assert result.confidence == 88

    def test_noisy_window_gets_no_bonus(self):
        result = classify_by_moving_average([0.5, 3.0, 0.5, 3.0, 0.5])
        assert result.type == ActivityType.WALKING
        assert result.confidence == 77

    def test_only_trailing_window_used(self):
        speeds = [10.0] * 10 + [1.4] * 5
        assert classify_by_moving_average(speeds, window=5).type == ActivityType.WALKING

    def test_empty(self):
        assert classify_by_moving_average([]) == ActivityClassification(ActivityType.STATIONARY, 50)


class TestSpeedDistribution:
    def test_steady_walk(self):
        result = classify_by_speed_distribution([1.4] * 10)
        assert result.type == ActivityType.WALKING
        assert result.confidence == 88
        assert result.distribution.median == pytest.approx(5.04)
        assert result.distribution.iqr == pytest.approx(0.0)
        assert result.possible_transit is False

    def test_steady_mid_speed_flags_transit(self):
        result = classify_by_speed_distribution([3.5] * 10)
        assert result.type == ActivityType.CYCLING
        assert result.confidence == 86
        assert result.possible_transit is True

    def test_wide_spread_lowers_confidence(self):
        result = classify_by_speed_distribution([1.0, 4.0] * 5)
        assert result.type == ActivityType.CYCLING
        assert result.distribution.iqr == pytest.approx(10.8)
        assert result.confidence == 61

    def test_median_ignores_spikes(self):
        speeds = [1.4] * 9 + [40.0]
        assert classify_by_speed_distribution(speeds).type == ActivityType.WALKING

    def test_empty(self):
        result = classify_by_speed_distribution([])
        assert result.type == ActivityType.STATIONARY
        assert result.confidence == 50
        assert result.distribution is None


class TestDominantActivity:
    def test_most_frequent_with_mean_confidence(self):
        result = get_dominant_activity([
            ActivityClassification(ActivityType.WALKING, 80),
            ActivityClassification(ActivityType.WALKING, 70),
            ActivityClassification(ActivityType.CYCLING, 85),
        ])
        assert result == ActivityClassification(ActivityType.WALKING, 75)

    def test_empty(self):
        assert get_dominant_activity([]) == ActivityClassification(ActivityType.WALKING, 0)


class TestPatternClassification:
    """Path shape plus speed profile separating vehicles from people."""

    def test_straight_steady_ride_is_overridden_to_driving(self):
        fixes = build_fixes([(4.0, 20)])
        result = classify_with_patterns([f.speed for f in fixes], [f.coordinate for f in fixes])
        assert result.base_type == ActivityType.CYCLING
        assert result.type == ActivityType.DRIVING
        assert result.overridden is True
        assert result.score == MAX_SCORE
        assert result.confidence == 100
        assert result.sinuosity == pytest.approx(1.0, abs=1e-6)

    def test_winding_variable_ride_stays_cycling(self):
        fixes = build_fixes([(4.5, 1), (7.0, 1)] * 10, zigzag_deg=35)
        result = classify_with_patterns([f.speed for f in fixes], [f.coordinate for f in fixes])
        assert result.type == ActivityType.CYCLING
        assert result.overridden is False
        assert result.sinuosity > 1.15
        assert result.bearing_changes_per_km > 3.0
        assert result.score < 4

    def test_straight_variable_ride_above_running_pace_stays_cycling(self):
        # Road ride: straight, but median 21.6 km/h with human speed variance
        fixes = build_fixes([(4.5, 1), (7.5, 1)] * 10)
        result = classify_with_patterns([f.speed for f in fixes], [f.coordinate for f in fixes])
        assert result.score >= 4
        assert result.indicators["speed_band"] is False
        assert result.possible_transit is False
        assert result.type == ActivityType.CYCLING
        assert result.overridden is False

    def test_steady_fast_straight_trip_overridden_via_transit(self):
        # 23.4 km/h with no variance: outside the running band but transit-like
        fixes = build_fixes([(6.5, 20)])
        result = classify_with_patterns([f.speed for f in fixes], [f.coordinate for f in fixes])
        assert result.indicators["speed_band"] is False
        assert result.possible_transit is True
        assert result.type == ActivityType.DRIVING
        assert result.overridden is True

    def test_walking_is_never_overridden(self):
        fixes = build_fixes([(1.4, 20)])
        result = classify_with_patterns([f.speed for f in fixes], [f.coordinate for f in fixes])
        assert result.score >= 4
        assert result.type == ActivityType.WALKING
        assert result.overridden is False

    def test_no_speeds(self):
        result = classify_with_patterns([], [])
        assert result.type == ActivityType.STATIONARY
        assert result.score == 0
