"""
Shared fixtures and synthetic route builders.
"""

import math

import pytest

from tripcore.api.database import init_db
from tripcore.ml.activity.classifier import classify_by_speed
from tripcore.tracking.trip import Fix, LocationPoint

EARTH_RADIUS_M = 6371e3
START = (47.6062, -122.3321)
T0 = 1_700_000_000.0


@pytest.fixture
def fresh_db(tmp_path, monkeypatch):
    """Use a fresh SQLite DB for each test."""
    import tripcore.api.database as db_mod

    # Reset module-level state
    db_mod._engine = None
    db_mod._SessionLocal = None

    # Ensure no DATABASE_URL so we get SQLite
    monkeypatch.delenv("DATABASE_URL", raising=False)
    # Point SQLite at temp dir
    monkeypatch.setattr(db_mod, "DB_PATH", tmp_path / "test.db")

    init_db()
    yield
    db_mod._engine = None
    db_mod._SessionLocal = None


def offset(origin, north_m=0.0, east_m=0.0):
    """Move a (lat, lon) by meters north and east."""
    lat, lon = origin
    d_lat = math.degrees(north_m / EARTH_RADIUS_M)
    d_lon = math.degrees(east_m / (EARTH_RADIUS_M * math.cos(math.radians(lat))))
    return (lat + d_lat, lon + d_lon)


def build_fixes(legs, start=START, t0=T0, interval=5.0, accuracy=5.0, zigzag_deg=0.0):
    """
    Fixes for a route travelling north.

    Args:
        legs: Sequence of (speed_mps, n_fixes); each fix moves speed * interval
            from the previous one and reports that speed
        zigzag_deg: Alternate the heading left and right of north by this angle

    Returns:
        List of Fix, the first one at ``start``
    """
    fixes = []
    position = start
    t = t0
    first = True
    sign = 1
    for speed, count in legs:
        for _ in range(count):
            if not first:
                step = speed * interval
                angle = math.radians(zigzag_deg * sign)
                position = offset(position, step * math.cos(angle), step * math.sin(angle))
                sign = -sign
                t += interval
            first = False
            fixes.append(Fix(latitude=position[0], longitude=position[1], timestamp=t,
                             accuracy=accuracy, speed=speed))
    return fixes


def to_points(trip_id, fixes):
    """Label fixes the way the tracking pipeline stores them."""
    points = []
    for fix in fixes:
        label = classify_by_speed(fix.speed or 0.0)
        points.append(LocationPoint(
            trip_id=trip_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
            activity_type=label.type,
            activity_confidence=label.confidence,
            accuracy=fix.accuracy,
            speed=fix.speed,
        ))
    return points


def jitter_coordinates(n=20, radius_m=10.0, center=START):
    """Points scattered on a circle of ``radius_m`` around a fixed spot (GPS drift)."""
    return [
        offset(center, radius_m * math.cos(2 * math.pi * i / n * 7), radius_m * math.sin(2 * math.pi * i / n * 7))
        for i in range(n)
    ]
