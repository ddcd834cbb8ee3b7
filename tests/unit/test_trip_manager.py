"""
Unit tests for trip lifecycle management.

Tests cover:
- Finalization outcomes (complete, cancel, split)
- Vehicle rejection via pattern override
- Manual trips, corrections and stats
- Pause/resume transitions
- Local and remote deletion
"""

import json
from unittest.mock import MagicMock

import pytest

from tripcore.api.database import TripNotFoundError, TripStore, TripStoreError
from tripcore.api.trips_client import ApiError
from tripcore.ml.activity.classifier import classify_by_speed
from tripcore.tracking.trip import TripStatus, TripType
from tripcore.tracking.trip_manager import InvalidTransitionError, TripManager, new_trip_id

from conftest import T0, build_fixes


@pytest.fixture
def manager(fresh_db):
    return TripManager(TripStore())


def record(manager, fixes, trip_id=None):
    """Start a trip at the first fix and record every fix into it."""
    trip = manager.start_trip("current_user", start_time=fixes[0].timestamp, trip_id=trip_id)
    for fix in fixes:
        manager.record_point(trip.id, fix, classify_by_speed(fix.speed))
    return trip


class TestRecording:
    def test_start_trip(self, manager):
        trip = manager.start_trip("current_user", start_time=T0)
        assert trip.status is TripStatus.ACTIVE
        assert trip.type is TripType.WALK
        assert trip.id.startswith("trip_")
        assert manager.store.get_active_trip().id == trip.id

    def test_second_trip_rejected(self, manager):
        manager.start_trip("current_user", start_time=T0)
        with pytest.raises(TripStoreError):
            manager.start_trip("current_user", start_time=T0 + 10)

    def test_running_stats_updated(self, manager):
        trip = record(manager, build_fixes([(1.5, 11)]))
        stored = manager.store.get_trip(trip.id)
        assert stored.distance == pytest.approx(75, rel=1e-3)
        assert stored.duration == pytest.approx(50)
        assert stored.avg_speed == pytest.approx(5.4, rel=1e-3)
        assert stored.type is TripType.WALK
        assert manager.store.count_locations(trip.id) == 11

    def test_new_trip_id_unique(self):
        assert new_trip_id() != new_trip_id()
        assert new_trip_id("manual").startswith("manual_")


class TestFinalize:
    def test_steady_walk_completes(self, manager):
        fixes = build_fixes([(1.5, 61)])
        trip = record(manager, fixes)

        result = manager.finalize_trip(trip.id, end_time=fixes[-1].timestamp)

        completed = result.trip
        assert completed.status is TripStatus.COMPLETED
        assert completed.type is TripType.WALK
        assert completed.distance == pytest.approx(450, rel=1e-3)
        assert completed.duration == pytest.approx(300)
        assert completed.end_time == fixes[-1].timestamp
        assert len(json.loads(completed.route_data)) == 61
        assert result.sub_trips == []
        assert result.completed_trip_ids == [trip.id]
        assert manager.store.get_active_trip() is None

    def test_note_attached_on_completion(self, manager):
        fixes = build_fixes([(1.5, 61)])
        trip = record(manager, fixes)
        result = manager.finalize_trip(trip.id, end_time=fixes[-1].timestamp, note="[recovered]")
        assert result.trip.notes == "[recovered]"

    def test_single_point_cancelled(self, manager):
        trip = record(manager, build_fixes([(1.5, 1)]))
        result = manager.finalize_trip(trip.id, end_time=T0 + 60)
        assert result.trip.status is TripStatus.CANCELLED
        assert result.trip.notes == "Not enough location points (1)"
        assert result.completed_trip_ids == []

    def test_too_short_cancelled(self, manager):
        trip = record(manager, build_fixes([(1.5, 5)]))
        result = manager.finalize_trip(trip.id)
        assert result.trip.status is TripStatus.CANCELLED
        assert result.trip.notes.startswith("Trip too short")

    def test_short_walk_below_minimum(self, manager):
        trip = record(manager, build_fixes([(1.4, 40)]))
        result = manager.finalize_trip(trip.id)
        assert result.trip.status is TripStatus.CANCELLED
        assert result.trip.notes == "Walk distance (273m) below minimum (400m)"

    def test_steady_running_pace_straight_trip_rejected_as_vehicle(self, manager):
        # 14.4 km/h without variance on a straight line: bus or train
        trip = record(manager, build_fixes([(4.0, 80)]))
        result = manager.finalize_trip(trip.id)
        assert result.trip.status is TripStatus.CANCELLED
        assert result.trip.notes == "Trip type 'drive' not supported (only walk/cycle allowed)"

    def test_straight_variable_ride_completes(self, manager):
        trip = record(manager, build_fixes([(4.5, 1), (7.5, 1)] * 40))
        result = manager.finalize_trip(trip.id)
        assert result.trip.status is TripStatus.COMPLETED
        assert result.trip.type is TripType.CYCLE
        assert result.trip.distance == pytest.approx(2377.5, rel=1e-3)

    def test_winding_ride_completes(self, manager):
        trip = record(manager, build_fixes([(4.5, 1), (7.0, 1)] * 40, zigzag_deg=35))
        result = manager.finalize_trip(trip.id)
        assert result.trip.status is TripStatus.COMPLETED
        assert result.trip.type is TripType.CYCLE
        assert result.trip.distance > 1000

    def test_multi_modal_trip_split(self, manager):
        trip = record(manager, build_fixes([(1.4, 25), (6.0, 36), (1.4, 24)]))

        result = manager.finalize_trip(trip.id)

        assert result.trip.status is TripStatus.CANCELLED
        assert result.trip.notes == "Multi-modal trip split into 1 segments"
        assert len(result.sub_trips) == 1

        ride = result.sub_trips[0]
        assert ride.id == f"{trip.id}_segment1"
        assert ride.type is TripType.CYCLE
        assert ride.status is TripStatus.COMPLETED
        assert ride.distance == pytest.approx(1050, rel=1e-3)
        assert ride.notes == "Segment 2 of 3 (multi-modal trip)"
        assert manager.store.count_locations(ride.id) == 36
        assert result.completed_trip_ids == [ride.id]

    def test_terminal_trip_cannot_be_finalized(self, manager):
        trip = record(manager, build_fixes([(1.5, 61)]))
        manager.finalize_trip(trip.id)
        with pytest.raises(InvalidTransitionError):
            manager.finalize_trip(trip.id)

    def test_missing_trip(self, manager):
        with pytest.raises(TripNotFoundError):
            manager.finalize_trip("nope")


class TestPauseResume:
    def test_pause_and_resume(self, manager):
        trip = manager.start_trip("current_user", start_time=T0)
        assert manager.pause_trip(trip.id).status is TripStatus.PAUSED
        assert manager.resume_trip(trip.id).status is TripStatus.ACTIVE

    def test_double_pause_rejected(self, manager):
        trip = manager.start_trip("current_user", start_time=T0)
        manager.pause_trip(trip.id)
        with pytest.raises(InvalidTransitionError):
            manager.pause_trip(trip.id)

    def test_cancelled_trip_cannot_resume(self, manager):
        trip = manager.start_trip("current_user", start_time=T0)
        manager.cancel_trip(trip.id, "User cancelled", end_time=T0 + 10)
        with pytest.raises(InvalidTransitionError):
            manager.resume_trip(trip.id)


class TestManualTrips:
    def test_create(self, manager):
        trip = manager.create_manual_trip("current_user", TripType.WALK, 1200.0, 900.0, T0, notes="lunch")
        assert trip.is_manual is True
        assert trip.status is TripStatus.COMPLETED
        assert trip.id.startswith("manual_")
        assert trip.end_time == T0 + 900
        assert trip.avg_speed == pytest.approx(4.8)
        assert trip.calories == 48

    @pytest.mark.parametrize("trip_type,distance,duration", [
        (TripType.DRIVE, 5000.0, 600.0),
        (TripType.WALK, 1200.0, 0.0),
        (TripType.WALK, 300.0, 600.0),
        (TripType.CYCLE, 900.0, 600.0),
    ])
    def test_invalid(self, manager, trip_type, distance, duration):
        with pytest.raises(ValueError):
            manager.create_manual_trip("current_user", trip_type, distance, duration, T0)

    def test_update(self, manager):
        trip = manager.create_manual_trip("current_user", TripType.WALK, 1200.0, 900.0, T0)
        updated = manager.update_trip(trip.id, notes="edited", trip_type=TripType.CYCLE)
        assert updated.notes == "edited"
        assert updated.type is TripType.CYCLE

        with pytest.raises(ValueError):
            manager.update_trip(trip.id, trip_type=TripType.RUN)


class TestQueries:
    def test_details_from_route_data(self, manager):
        fixes = build_fixes([(1.5, 61)])
        trip = record(manager, fixes)
        manager.finalize_trip(trip.id)
        details = manager.get_trip_details(trip.id)
        assert len(details.route) == 61
        assert details.route[0] == pytest.approx(fixes[0].coordinate)

    def test_details_from_points_while_active(self, manager):
        trip = record(manager, build_fixes([(1.5, 4)]))
        assert len(manager.get_trip_details(trip.id).route) == 4

    def test_details_missing(self, manager):
        assert manager.get_trip_details("nope") is None

    def test_user_stats(self, manager):
        manager.create_manual_trip("current_user", TripType.WALK, 1000.0, 600.0, T0)
        manager.create_manual_trip("current_user", TripType.CYCLE, 5000.0, 900.0, T0 + 3600)
        stats = manager.get_user_stats()
        assert stats.total_trips == 2
        assert stats.total_distance == pytest.approx(6000)
        assert stats.total_duration == pytest.approx(1500)
        assert stats.walk_trips == 1
        assert stats.cycle_trips == 1
        assert stats.total_co2_saved == pytest.approx(0.72)

    def test_recent_trips(self, manager):
        for i in range(3):
            manager.create_manual_trip("current_user", TripType.WALK, 1000.0, 600.0, T0 + i * 3600)
        recent = manager.get_recent_trips(limit=2)
        assert [t.start_time for t in recent] == [T0 + 7200, T0 + 3600]


class TestDelete:
    def test_local_only(self, manager):
        trip = manager.create_manual_trip("current_user", TripType.WALK, 1000.0, 600.0, T0)
        client = MagicMock()
        manager.delete_trip(trip.id, client=client)
        client.delete_trip.assert_not_called()
        assert manager.store.get_trip(trip.id) is None

    def test_synced_trip_deleted_remotely(self, manager):
        trip = manager.create_manual_trip("current_user", TripType.WALK, 1000.0, 600.0, T0)
        manager.store.update_trip(trip.id, synced=True, backend_id=42)
        client = MagicMock()

        manager.delete_trip(trip.id, client=client)

        client.delete_trip.assert_called_once_with(42)
        assert manager.store.get_trip(trip.id) is None

    def test_remote_failure_still_deletes_locally(self, manager):
        trip = manager.create_manual_trip("current_user", TripType.WALK, 1000.0, 600.0, T0)
        manager.store.update_trip(trip.id, synced=True, backend_id=42)
        client = MagicMock()
        client.delete_trip.side_effect = ApiError("HTTP 500: boom", 500)

        manager.delete_trip(trip.id, client=client)

        assert manager.store.get_trip(trip.id) is None

    def test_missing(self, manager):
        with pytest.raises(TripNotFoundError):
            manager.delete_trip("nope")

    def test_open_trip_cannot_be_deleted(self, manager):
        trip = record(manager, build_fixes([(1.5, 5)]))

        with pytest.raises(InvalidTransitionError):
            manager.delete_trip(trip.id)

        assert manager.store.get_trip(trip.id) is not None
        assert manager.store.count_locations(trip.id) == 5
