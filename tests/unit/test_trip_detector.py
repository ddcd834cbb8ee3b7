"""
Unit tests for the trip detection state machine.
"""

import pytest

from tripcore.ml.activity.classifier import classify_by_speed
from tripcore.tracking.ingestion_filter import IngestionSession
from tripcore.tracking.trip import Trip, TripStatus, TripType
from tripcore.tracking.trip_detector import (
    DetectionState,
    StopDecision,
    can_transition,
    evaluate_stop,
    is_recording,
    is_too_short,
    is_zombie,
    should_start_trip,
    state_of,
    update_stationary,
    zombie_reference_time,
)

from conftest import T0


def make_trip(status=TripStatus.ACTIVE, start_time=T0):
    return Trip(id="trip_1", user_id="current_user", type=TripType.WALK, status=status, start_time=start_time)


class TestTransitions:
    def test_state_of(self):
        assert state_of(None) is DetectionState.IDLE
        assert state_of(make_trip()) is DetectionState.ACTIVE
        assert state_of(make_trip(TripStatus.PAUSED)) is DetectionState.PAUSED

    def test_allowed(self):
        assert can_transition(DetectionState.IDLE, DetectionState.ACTIVE)
        assert can_transition(DetectionState.ACTIVE, DetectionState.PAUSED)
        assert can_transition(DetectionState.PAUSED, DetectionState.ACTIVE)
        assert can_transition(DetectionState.PAUSED, DetectionState.CANCELLED)

    def test_terminal_states_are_final(self):
        for target in DetectionState:
            assert not can_transition(DetectionState.COMPLETED, target)
            assert not can_transition(DetectionState.CANCELLED, target)

    def test_idle_cannot_complete(self):
        assert not can_transition(DetectionState.IDLE, DetectionState.COMPLETED)

    def test_is_recording(self):
        assert is_recording(make_trip())
        assert not is_recording(make_trip(TripStatus.PAUSED))
        assert not is_recording(None)


class TestStart:
    @pytest.mark.parametrize("speed,expected", [
        (1.4, True),    # walking
        (6.0, True),    # cycling
        (0.8, False),   # below movement threshold
        (12.0, False),  # driving never starts a trip
    ])
    def test_should_start_trip(self, speed, expected):
        assert should_start_trip(speed, classify_by_speed(speed)) is expected


class TestStop:
    def test_stationary_timer(self):
        session = IngestionSession()
        assert update_stationary(session, 0.3, T0) == T0
        assert update_stationary(session, 0.1, T0 + 10) == T0
        assert update_stationary(session, 1.2, T0 + 20) is None
        assert session.stationary_since is None

    def test_continue_while_moving(self):
        assert evaluate_stop(600, 800, None, T0) is StopDecision.CONTINUE

    def test_continue_until_stationary_long_enough(self):
        assert evaluate_stop(600, 800, T0, T0 + 179) is StopDecision.CONTINUE

    def test_finalize_after_stationary_duration(self):
        assert evaluate_stop(600, 800, T0, T0 + 180) is StopDecision.FINALIZE

    def test_discard_short_trip(self):
        assert evaluate_stop(45, 800, T0, T0 + 200) is StopDecision.DISCARD
        assert evaluate_stop(600, 90, T0, T0 + 200) is StopDecision.DISCARD

    def test_is_too_short(self):
        assert is_too_short(59, 500)
        assert is_too_short(120, 99)
        assert not is_too_short(60, 100)


class TestZombie:
    def test_44_minutes_is_alive(self):
        trip = make_trip()
        last = T0 + 600
        assert not is_zombie(trip, last, last + 44 * 60)

    def test_46_minutes_is_zombie(self):
        trip = make_trip()
        last = T0 + 600
        assert is_zombie(trip, last, last + 46 * 60)

    def test_trip_without_points_measured_from_start(self):
        trip = make_trip()
        assert zombie_reference_time(trip, None) == T0
        assert is_zombie(trip, None, T0 + 46 * 60)
        assert not is_zombie(trip, None, T0 + 44 * 60)

    def test_paused_trip_can_be_zombie(self):
        assert is_zombie(make_trip(TripStatus.PAUSED), T0, T0 + 46 * 60)

    def test_closed_trip_is_never_zombie(self):
        assert not is_zombie(make_trip(TripStatus.COMPLETED), T0, T0 + 10 * 3600)
