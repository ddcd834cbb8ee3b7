"""
Unit tests for the SQLAlchemy trip store.
"""

import pytest

from tripcore.api.database import TripNotFoundError, TripStore, TripStoreError
from tripcore.tracking.trip import Trip, TripStatus, TripType

from conftest import T0, build_fixes, to_points


def make_trip(trip_id, status=TripStatus.ACTIVE, start_time=T0, trip_type=TripType.WALK, **kwargs):
    return Trip(id=trip_id, user_id="current_user", type=trip_type, status=status,
                start_time=start_time, **kwargs)


@pytest.fixture
def store(fresh_db):
    return TripStore()


class TestTripCrud:
    def test_create_and_get(self, store):
        created = store.create_trip(make_trip("trip_1"))
        fetched = store.get_trip("trip_1")

        assert fetched == created
        assert fetched.type is TripType.WALK
        assert fetched.status is TripStatus.ACTIVE
        assert fetched.created_at is not None

    def test_missing_trip(self, store):
        assert store.get_trip("nope") is None

    def test_duplicate_id_rejected(self, store):
        store.create_trip(make_trip("trip_1", TripStatus.COMPLETED))
        with pytest.raises(TripStoreError, match="already exists"):
            store.create_trip(make_trip("trip_1", TripStatus.COMPLETED))

    def test_update(self, store):
        store.create_trip(make_trip("trip_1"))
        updated = store.update_trip("trip_1", type=TripType.CYCLE, distance=1200.0, notes="commute")
        assert updated.type is TripType.CYCLE
        assert updated.distance == 1200.0
        assert updated.notes == "commute"

    def test_update_unknown_field(self, store):
        store.create_trip(make_trip("trip_1"))
        with pytest.raises(TripStoreError, match="Unknown trip fields"):
            store.update_trip("trip_1", colour="red")

    def test_update_missing_trip(self, store):
        with pytest.raises(TripStoreError):
            store.update_trip("nope", notes="x")


class TestOpenTripInvariant:
    def test_only_one_open_trip(self, store):
        store.create_trip(make_trip("trip_1"))
        with pytest.raises(TripStoreError, match="already active"):
            store.create_trip(make_trip("trip_2"))

    def test_paused_trip_counts_as_open(self, store):
        store.create_trip(make_trip("trip_1", TripStatus.PAUSED))
        with pytest.raises(TripStoreError):
            store.create_trip(make_trip("trip_2"))
        assert store.get_active_trip().id == "trip_1"

    def test_closed_trips_do_not_block(self, store):
        store.create_trip(make_trip("trip_1"))
        store.update_trip("trip_1", status=TripStatus.COMPLETED)
        store.create_trip(make_trip("trip_2"))
        assert store.get_active_trip().id == "trip_2"

    def test_terminal_trip_cannot_reopen(self, store):
        store.create_trip(make_trip("trip_1", TripStatus.CANCELLED))
        with pytest.raises(TripStoreError, match="cannot be reopened"):
            store.update_trip("trip_1", status=TripStatus.ACTIVE)

    def test_no_active_trip(self, store):
        assert store.get_active_trip() is None


class TestLocations:
    def test_points_returned_in_time_order(self, store):
        store.create_trip(make_trip("trip_1"))
        points = to_points("trip_1", build_fixes([(1.4, 5)]))
        for point in reversed(points):
            store.append_location(point)

        stored = store.get_locations_by_trip("trip_1")
        assert [p.timestamp for p in stored] == [p.timestamp for p in points]
        assert all(p.id is not None for p in stored)
        assert store.count_locations("trip_1") == 5
        assert store.get_last_location("trip_1").timestamp == points[-1].timestamp

    def test_no_points(self, store):
        store.create_trip(make_trip("trip_1"))
        assert store.get_locations_by_trip("trip_1") == []
        assert store.get_last_location("trip_1") is None

    def test_delete_cascades_to_points(self, store):
        store.create_trip(make_trip("trip_1"))
        for point in to_points("trip_1", build_fixes([(1.4, 3)])):
            store.append_location(point)

        store.delete_trip("trip_1")

        assert store.get_trip("trip_1") is None
        assert store.count_locations("trip_1") == 0

    def test_delete_missing(self, store):
        with pytest.raises(TripNotFoundError):
            store.delete_trip("nope")


class TestQueries:
    @pytest.fixture
    def populated(self, store):
        store.create_trip(make_trip("walk_old", TripStatus.COMPLETED, T0, TripType.WALK))
        store.create_trip(make_trip("cycle_mid", TripStatus.COMPLETED, T0 + 3600, TripType.CYCLE, synced=True))
        store.create_trip(make_trip("walk_new", TripStatus.CANCELLED, T0 + 7200, TripType.WALK))
        return store

    def test_newest_first(self, populated):
        assert [t.id for t in populated.get_all_trips()] == ["walk_new", "cycle_mid", "walk_old"]

    def test_filters(self, populated):
        assert [t.id for t in populated.get_all_trips(type=TripType.WALK)] == ["walk_new", "walk_old"]
        assert [t.id for t in populated.get_all_trips(status=TripStatus.COMPLETED)] == ["cycle_mid", "walk_old"]
        assert [t.id for t in populated.get_all_trips(synced=True)] == ["cycle_mid"]
        assert [t.id for t in populated.get_all_trips(start_date=T0 + 1, end_date=T0 + 3600)] == ["cycle_mid"]

    def test_limit(self, populated):
        assert [t.id for t in populated.get_all_trips(limit=1)] == ["walk_new"]
