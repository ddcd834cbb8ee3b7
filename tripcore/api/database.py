"""
Trip store: PostgreSQL in production, SQLite fallback on device/local dev.

Reads DATABASE_URL from environment. Falls back to local SQLite when unset.
Every call opens and closes its own session, so each read or write is atomic
at the single-record level. Records leave this module as the immutable
dataclasses from tripcore.tracking.trip.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, relationship, sessionmaker

from tripcore.ml.activity.classifier import ActivityType
from tripcore.tracking.trip import LocationPoint, Trip, TripStatus, TripType

logger = logging.getLogger(__name__)

DB_PATH = Path("data/trips.db")

OPEN_STATUSES = (TripStatus.ACTIVE.value, TripStatus.PAUSED.value)


class TripStoreError(Exception):
    """Raised when a store operation would break a trip invariant."""


class TripNotFoundError(TripStoreError):
    """Raised when the requested trip does not exist."""


class Base(DeclarativeBase):
    pass


class TripRecord(Base):
    __tablename__ = "trips"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    status = Column(String, index=True, nullable=False)
    is_manual = Column(Boolean, nullable=False, default=False)
    start_time = Column(Float, index=True, nullable=False)  # Unix timestamp
    end_time = Column(Float, nullable=True)
    distance = Column(Float, nullable=False, default=0.0)  # meters
    duration = Column(Float, nullable=False, default=0.0)  # seconds
    avg_speed = Column(Float, nullable=False, default=0.0)  # km/h
    max_speed = Column(Float, nullable=False, default=0.0)  # km/h
    elevation_gain = Column(Float, nullable=False, default=0.0)
    calories = Column(Integer, nullable=False, default=0)
    co2_saved = Column(Float, nullable=False, default=0.0)  # kg
    notes = Column(Text, nullable=True)
    route_data = Column(Text, nullable=True)  # JSON [{lat, lng, timestamp}]
    synced = Column(Boolean, index=True, nullable=False, default=False)
    backend_id = Column(Integer, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    locations = relationship(
        "LocationRecord", back_populates="trip", cascade="all, delete-orphan"
    )


class LocationRecord(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    altitude = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)  # m/s
    heading = Column(Float, nullable=True)
    timestamp = Column(Float, index=True, nullable=False)
    activity_type = Column(String, nullable=False)
    activity_confidence = Column(Integer, nullable=False)
    synced = Column(Boolean, nullable=False, default=False)

    trip = relationship("TripRecord", back_populates="locations")


# Engine and session
_engine = None
_SessionLocal = None


def init_db() -> None:
    """Initialize the database, creating tables if needed.

    Uses DATABASE_URL env var for PostgreSQL when set.
    Falls back to local SQLite otherwise.
    """
    global _engine, _SessionLocal

    database_url = os.environ.get("DATABASE_URL")

    if database_url:
        # Some hosts hand out postgres:// but SQLAlchemy requires postgresql://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        _engine = create_engine(database_url, echo=False, pool_pre_ping=True)
        logger.info("Database initialized from DATABASE_URL")
    else:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{DB_PATH}", echo=False)
        logger.info("Database initialized at %s (SQLite fallback)", DB_PATH)

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)


def get_session() -> Session:
    if _SessionLocal is None:
        init_db()
    return _SessionLocal()


def _to_trip(record: TripRecord) -> Trip:
    return Trip(
        id=record.id,
        user_id=record.user_id,
        type=TripType(record.type),
        status=TripStatus(record.status),
        start_time=record.start_time,
        is_manual=bool(record.is_manual),
        end_time=record.end_time,
        distance=record.distance,
        duration=record.duration,
        avg_speed=record.avg_speed,
        max_speed=record.max_speed,
        elevation_gain=record.elevation_gain,
        calories=record.calories,
        co2_saved=record.co2_saved,
        notes=record.notes,
        route_data=record.route_data,
        synced=bool(record.synced),
        backend_id=record.backend_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_point(record: LocationRecord) -> LocationPoint:
    return LocationPoint(
        id=record.id,
        trip_id=record.trip_id,
        latitude=record.latitude,
        longitude=record.longitude,
        altitude=record.altitude,
        accuracy=record.accuracy,
        speed=record.speed,
        heading=record.heading,
        timestamp=record.timestamp,
        activity_type=ActivityType(record.activity_type),
        activity_confidence=record.activity_confidence,
        synced=bool(record.synced),
    )


def _column_value(value):
    """Enums are stored by value."""
    if isinstance(value, (TripType, TripStatus, ActivityType)):
        return value.value
    return value


class TripStore:
    """
    Persistence contract for trips and their location points.

    Enforces that at most one trip is active or paused at a time and that
    terminal trips are never reopened.
    """

    UPDATABLE = {
        "type", "status", "is_manual", "start_time", "end_time", "distance", "duration",
        "avg_speed", "max_speed", "elevation_gain", "calories", "co2_saved", "notes",
        "route_data", "synced", "backend_id",
    }

    def create_trip(self, trip: Trip) -> Trip:
        """Insert a new trip. Raises TripStoreError on a duplicate id or a second open trip."""
        now = time.time()
        session = get_session()
        try:
            if session.get(TripRecord, trip.id) is not None:
                raise TripStoreError(f"Trip {trip.id} already exists")
            if trip.status.is_open and self._open_trip_query(session).first() is not None:
                raise TripStoreError("Another trip is already active")

            record = TripRecord(
                id=trip.id,
                user_id=trip.user_id,
                type=trip.type.value,
                status=trip.status.value,
                is_manual=trip.is_manual,
                start_time=trip.start_time,
                end_time=trip.end_time,
                distance=trip.distance,
                duration=trip.duration,
                avg_speed=trip.avg_speed,
                max_speed=trip.max_speed,
                elevation_gain=trip.elevation_gain,
                calories=trip.calories,
                co2_saved=trip.co2_saved,
                notes=trip.notes,
                route_data=trip.route_data,
                synced=trip.synced,
                backend_id=trip.backend_id,
                created_at=trip.created_at if trip.created_at is not None else now,
                updated_at=trip.updated_at if trip.updated_at is not None else now,
            )
            session.add(record)
            session.commit()
            logger.debug("Created trip %s (%s)", trip.id, trip.status.value)
            return _to_trip(record)
        finally:
            session.close()

    def get_trip(self, trip_id: str) -> Trip | None:
        session = get_session()
        try:
            record = session.get(TripRecord, trip_id)
            return _to_trip(record) if record else None
        finally:
            session.close()

    def update_trip(self, trip_id: str, **changes) -> Trip:
        """
        Apply a partial update and return the updated trip.

        Raises TripStoreError when the trip is missing, a field is unknown, a
        terminal trip would be reopened, or a second open trip would result.
        """
        unknown = set(changes) - self.UPDATABLE - {"updated_at"}
        if unknown:
            raise TripStoreError(f"Unknown trip fields: {sorted(unknown)}")

        session = get_session()
        try:
            record = session.get(TripRecord, trip_id)
            if record is None:
                raise TripStoreError(f"Trip {trip_id} not found")

            new_status = _column_value(changes.get("status", record.status))
            if new_status in OPEN_STATUSES:
                if TripStatus(record.status).is_terminal:
                    raise TripStoreError(f"Trip {trip_id} is {record.status} and cannot be reopened")
                other = self._open_trip_query(session).filter(TripRecord.id != trip_id).first()
                if other is not None:
                    raise TripStoreError(f"Trip {other.id} is already active")

            for key, value in changes.items():
                setattr(record, key, _column_value(value))
            if "updated_at" not in changes:
                record.updated_at = time.time()

            session.commit()
            return _to_trip(record)
        finally:
            session.close()

    def delete_trip(self, trip_id: str) -> None:
        """Delete a trip and its locations. Raises TripNotFoundError when missing."""
        session = get_session()
        try:
            record = session.get(TripRecord, trip_id)
            if record is None:
                raise TripNotFoundError(f"Trip {trip_id} not found")
            session.delete(record)
            session.commit()
            logger.info("Deleted trip %s", trip_id)
        finally:
            session.close()

    def get_active_trip(self) -> Trip | None:
        """The single active or paused trip, if any."""
        session = get_session()
        try:
            record = self._open_trip_query(session).first()
            return _to_trip(record) if record else None
        finally:
            session.close()

    def append_location(self, point: LocationPoint) -> LocationPoint:
        session = get_session()
        try:
            record = LocationRecord(
                trip_id=point.trip_id,
                latitude=point.latitude,
                longitude=point.longitude,
                altitude=point.altitude,
                accuracy=point.accuracy,
                speed=point.speed,
                heading=point.heading,
                timestamp=point.timestamp,
                activity_type=point.activity_type.value,
                activity_confidence=point.activity_confidence,
                synced=point.synced,
            )
            session.add(record)
            session.commit()
            return _to_point(record)
        finally:
            session.close()

    def get_locations_by_trip(self, trip_id: str) -> list[LocationPoint]:
        """All points of a trip, oldest first."""
        session = get_session()
        try:
            records = (
                session.query(LocationRecord)
                .filter_by(trip_id=trip_id)
                .order_by(LocationRecord.timestamp.asc(), LocationRecord.id.asc())
                .all()
            )
            return [_to_point(r) for r in records]
        finally:
            session.close()

    def get_last_location(self, trip_id: str) -> LocationPoint | None:
        session = get_session()
        try:
            record = (
                session.query(LocationRecord)
                .filter_by(trip_id=trip_id)
                .order_by(LocationRecord.timestamp.desc(), LocationRecord.id.desc())
                .first()
            )
            return _to_point(record) if record else None
        finally:
            session.close()

    def count_locations(self, trip_id: str) -> int:
        session = get_session()
        try:
            return session.query(LocationRecord).filter_by(trip_id=trip_id).count()
        finally:
            session.close()

    def get_all_trips(
        self,
        type: TripType | None = None,
        status: TripStatus | None = None,
        synced: bool | None = None,
        start_date: float | None = None,
        end_date: float | None = None,
        limit: int | None = None,
    ) -> list[Trip]:
        """Trips matching every given filter, newest first."""
        session = get_session()
        try:
            query = session.query(TripRecord)
            if type is not None:
                query = query.filter(TripRecord.type == type.value)
            if status is not None:
                query = query.filter(TripRecord.status == status.value)
            if synced is not None:
                query = query.filter(TripRecord.synced == synced)
            if start_date is not None:
                query = query.filter(TripRecord.start_time >= start_date)
            if end_date is not None:
                query = query.filter(TripRecord.start_time <= end_date)
            query = query.order_by(TripRecord.start_time.desc())
            if limit is not None:
                query = query.limit(limit)
            return [_to_trip(r) for r in query.all()]
        finally:
            session.close()

    @staticmethod
    def _open_trip_query(session: Session):
        return session.query(TripRecord).filter(TripRecord.status.in_(OPEN_STATUSES))
