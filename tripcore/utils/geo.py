"""
Geodesic helpers for GPS trip processing.
Distances are great-circle (haversine) in meters, speeds in m/s unless named *_kmh.
"""

import json
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.geo")

EARTH_RADIUS_M = 6371e3
MPS_TO_KMH = 3.6
CO2_KG_PER_KM = 0.12

# Calories per km per kg of body weight
CALORIES_PER_KM_PER_KG = {
    "walk": 0.57,
    "run": 1.0,
    "cycle": 0.5,
}
DEFAULT_WEIGHT_KG = 70.0

Coordinate = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two coordinates.

    Args:
        lat1, lon1: Start point (degrees)
        lat2, lon2: End point (degrees)

    Returns:
        Distance in meters

    Example:
        >>> d = haversine_distance(51.5007, -0.1246, 51.5055, -0.0754)
        >>> print(f"{d:.0f} m")
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_between(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two (lat, lon) tuples, in meters."""
    return haversine_distance(a[0], a[1], b[0], b[1])


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from the first coordinate to the second.

    Returns:
        Bearing in degrees clockwise from north, in [0, 360)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_difference(b1: float, b2: float) -> float:
    """Smallest absolute angle between two bearings, in [0, 180]."""
    diff = abs(b1 - b2) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def route_distance(coordinates: Sequence[Coordinate]) -> float:
    """Total path length of an ordered route in meters (0 for fewer than 2 points)."""
    if len(coordinates) < 2:
        return 0.0
    return sum(
        distance_between(coordinates[i - 1], coordinates[i])
        for i in range(1, len(coordinates))
    )


def net_displacement(coordinates: Sequence[Coordinate]) -> float:
    """Straight-line distance from the first to the last coordinate."""
    if len(coordinates) < 2:
        return 0.0
    return distance_between(coordinates[0], coordinates[-1])


def max_distance_from_start(coordinates: Sequence[Coordinate]) -> float:
    """Furthest any point gets from the first point, in meters."""
    if len(coordinates) < 2:
        return 0.0
    start = coordinates[0]
    return max(distance_between(start, c) for c in coordinates)


def calculate_sinuosity(coordinates: Sequence[Coordinate]) -> float:
    """
    Ratio of path length to straight-line distance.

    Values near 1 indicate a straight, road- or rail-like path. Returns
    ``inf`` when the route starts and ends at (almost) the same place,
    and 1.0 for routes with fewer than 2 points.
    """
    if len(coordinates) < 2:
        return 1.0
    straight = net_displacement(coordinates)
    if straight < 1e-6:
        return math.inf
    return route_distance(coordinates) / straight


def count_bearing_changes(
    coordinates: Sequence[Coordinate],
    threshold_deg: float = 30.0,
    min_leg_m: float = 5.0,
) -> int:
    """
    Count direction changes sharper than ``threshold_deg`` between consecutive legs.

    Legs shorter than ``min_leg_m`` are skipped since their bearing is GPS noise.
    """
    bearings = []
    for i in range(1, len(coordinates)):
        prev, curr = coordinates[i - 1], coordinates[i]
        if distance_between(prev, curr) < min_leg_m:
            continue
        bearings.append(calculate_bearing(prev[0], prev[1], curr[0], curr[1]))

    return sum(
        1
        for i in range(1, len(bearings))
        if bearing_difference(bearings[i - 1], bearings[i]) > threshold_deg
    )


def bearing_changes_per_km(coordinates: Sequence[Coordinate], threshold_deg: float = 30.0) -> float:
    """Direction changes normalised by path length (0 for an empty path)."""
    length_km = route_distance(coordinates) / 1000.0
    if length_km <= 0:
        return 0.0
    return count_bearing_changes(coordinates, threshold_deg) / length_km


def elevation_gain_loss(altitudes: Iterable[Optional[float]]) -> Tuple[float, float]:
    """
    Cumulative climb and descent over an altitude sequence.

    Pairs where either altitude is missing are skipped.

    Returns:
        Tuple of (gain, loss) in meters, both non-negative
    """
    gain = 0.0
    loss = 0.0
    prev = None
    for alt in altitudes:
        if prev is not None and alt is not None:
            if alt > prev:
                gain += alt - prev
            elif alt < prev:
                loss += prev - alt
        prev = alt
    return gain, loss


def bounding_box(coordinates: Sequence[Coordinate]) -> Optional[Dict[str, float]]:
    """Min/max latitude and longitude of a coordinate set, or None when empty."""
    if not coordinates:
        return None
    lats = [c[0] for c in coordinates]
    lons = [c[1] for c in coordinates]
    return {
        "min_lat": min(lats),
        "max_lat": max(lats),
        "min_lng": min(lons),
        "max_lng": max(lons),
    }


def bounding_box_dimensions(coordinates: Sequence[Coordinate]) -> Optional[Tuple[float, float]]:
    """
    Physical size of the bounding box.

    Returns:
        Tuple of (width, height) in meters, or None when empty
    """
    box = bounding_box(coordinates)
    if box is None:
        return None
    width = haversine_distance(box["min_lat"], box["min_lng"], box["min_lat"], box["max_lng"])
    height = haversine_distance(box["min_lat"], box["min_lng"], box["max_lat"], box["min_lng"])
    return width, height


def centroid(coordinates: Sequence[Coordinate]) -> Optional[Coordinate]:
    """Arithmetic mean of latitudes and longitudes."""
    if not coordinates:
        return None
    arr = np.asarray(coordinates, dtype=float)
    lat, lon = arr.mean(axis=0)
    return float(lat), float(lon)


def radius_of_gyration(coordinates: Sequence[Coordinate]) -> float:
    """
    RMS distance of the points from their centroid, in meters.

    Low values mean the points are clustered, which is typical of GPS drift
    around a stationary receiver.
    """
    center = centroid(coordinates)
    if center is None:
        return 0.0
    squared = np.array([distance_between(c, center) ** 2 for c in coordinates])
    return float(np.sqrt(squared.mean()))


def speed_kmh(distance_m: float, duration_s: float) -> float:
    """Average speed in km/h (0 when no time elapsed)."""
    if duration_s <= 0:
        return 0.0
    return distance_m / duration_s * MPS_TO_KMH


def mps_to_kmh(mps: float) -> float:
    return mps * MPS_TO_KMH


def kmh_to_mps(kmh: float) -> float:
    return kmh / MPS_TO_KMH


def co2_saved_kg(distance_m: float) -> float:
    """CO2 avoided compared with driving the same distance."""
    return distance_m / 1000.0 * CO2_KG_PER_KM


def calories_burned(distance_m: float, trip_type: str, weight_kg: float = DEFAULT_WEIGHT_KG) -> int:
    """Rough calorie estimate from distance and activity."""
    rate = CALORIES_PER_KM_PER_KG.get(trip_type, 0.5)
    return round(distance_m / 1000.0 * rate * weight_kg)


def _perpendicular_distance(point: Coordinate, start: Coordinate, end: Coordinate) -> float:
    # Triangle height from Heron's formula over haversine side lengths
    d1 = distance_between(point, start)
    d2 = distance_between(point, end)
    base = distance_between(start, end)
    if base == 0:
        return d1
    s = (d1 + d2 + base) / 2
    area = math.sqrt(max(0.0, s * (s - d1) * (s - d2) * (s - base)))
    return 2 * area / base


def simplify_route(points: Sequence[Coordinate], tolerance_m: float = 11.0) -> List[Coordinate]:
    """
    Douglas-Peucker simplification.

    Args:
        points: Ordered route coordinates
        tolerance_m: Maximum perpendicular deviation to discard, in meters

    Returns:
        Subset of the input keeping the first and last points
    """
    points = list(points)
    if len(points) <= 2:
        return points

    first, last = points[0], points[-1]
    max_dist = 0.0
    max_index = 0
    for i in range(1, len(points) - 1):
        dist = _perpendicular_distance(points[i], first, last)
        if dist > max_dist:
            max_dist = dist
            max_index = i

    if max_dist > tolerance_m:
        left = simplify_route(points[: max_index + 1], tolerance_m)
        right = simplify_route(points[max_index:], tolerance_m)
        return left[:-1] + right

    return [first, last]


def serialize_route(route: Iterable[Tuple[float, float, float]]) -> str:
    """
    Encode (lat, lon, epoch_seconds) triples as route JSON.

    Output entries are ``{"lat", "lng", "timestamp"}`` with ISO-8601 UTC times.
    """
    return json.dumps([
        {
            "lat": round(lat, 6),
            "lng": round(lon, 6),
            "timestamp": datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(),
        }
        for lat, lon, ts in route
    ])


def parse_route_data(route_data: Optional[str]) -> List[Coordinate]:
    """
    Decode stored route JSON into (lat, lon) tuples.

    Accepts both ``lat``/``lng`` and ``latitude``/``longitude`` keys. Malformed
    input yields an empty route.
    """
    if not route_data:
        return []
    try:
        parsed = json.loads(route_data)
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not parse route data: {e}")
        return []
    if not isinstance(parsed, list):
        return []

    coords = []
    for entry in parsed:
        lat = entry.get("lat", entry.get("latitude"))
        lon = entry.get("lng", entry.get("longitude"))
        if lat is None or lon is None:
            continue
        coords.append((float(lat), float(lon)))
    return coords
