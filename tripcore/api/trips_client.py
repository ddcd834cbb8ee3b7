"""
HTTP client for the remote trips backend.

Endpoints:
    POST   /api/trips/         create one trip
    POST   /api/trips/sync/    create a batch of trips
    DELETE /api/trips/{id}/    delete a synced trip

Backend failures are mapped onto a small error taxonomy so the sync service
can decide between retrying, giving up, and treating a conflict as success.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import requests

from tripcore.api.models import BackendTrip, RoutePoint, TripTypeEnum, TripUploadPayload
from tripcore.tracking.trip import Trip
from tripcore.utils.config_loader import SyncConfig

logger = logging.getLogger(__name__)

DUPLICATE_MARKERS = ("client_id", "duplicate", "unique")


class ApiError(Exception):
    """Backend request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ApiError):
    """Credentials rejected; retrying will not help."""


class DuplicateTripError(ApiError):
    """The backend already holds a trip with this client_id."""


class NetworkError(ApiError):
    """The backend could not be reached."""


def _iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def build_route(route_data: str | None) -> list[RoutePoint]:
    """
    Convert stored route JSON into wire route points.

    Accepts ``lat``/``lng`` or ``latitude``/``longitude`` keys. Entries with
    missing or out-of-range coordinates are dropped; entries without a usable
    timestamp get the current time.
    """
    if not route_data:
        return []
    try:
        entries = json.loads(route_data)
    except (TypeError, ValueError):
        logger.warning("Unparseable route data, uploading without route")
        return []
    if not isinstance(entries, list):
        return []

    route = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        try:
            lat = float(entry.get("lat", entry.get("latitude")))
            lng = float(entry.get("lng", entry.get("longitude")))
        except (TypeError, ValueError):
            logger.warning("Invalid route coordinate at index %d: %s", index, entry)
            continue
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            logger.warning("Invalid route coordinate at index %d: %s", index, entry)
            continue

        try:
            timestamp = datetime.fromisoformat(entry.get("timestamp")).astimezone(timezone.utc).isoformat()
        except (TypeError, ValueError):
            timestamp = datetime.now(timezone.utc).isoformat()
        route.append(RoutePoint(lat=lat, lng=lng, timestamp=timestamp))
    return route


def build_payload(trip: Trip) -> TripUploadPayload:
    """
    Transform a local trip into the backend's create payload.

    The end timestamp falls back to start + duration when the trip has no end
    time. Raises ValueError when the resulting window is empty or inverted.
    """
    end_time = trip.end_time if trip.end_time else trip.start_time + trip.duration
    if trip.start_time >= end_time:
        raise ValueError(f"Invalid timestamps for trip {trip.id}: start time >= end time")

    return TripUploadPayload(
        client_id=trip.id,
        start_timestamp=_iso(trip.start_time),
        end_timestamp=_iso(end_time),
        route=build_route(trip.route_data),
        type=TripTypeEnum(trip.type.value),
        is_manual=trip.is_manual,
        elevation_gain=trip.elevation_gain if trip.elevation_gain > 0 else None,
        notes=trip.notes or None,
    )


class TripsApiClient:
    """
    Thin requests wrapper around the trips backend.

    Args:
        config: Base URL, token and timeout
        session: Optional pre-configured requests session
    """

    def __init__(self, config: SyncConfig | None = None, session: requests.Session | None = None):
        self.config = config or SyncConfig()
        self.base_url = self.config.api_base_url.rstrip("/")
        self.session = session or requests.Session()
        if self.config.api_token:
            self.session.headers["Authorization"] = f"Bearer {self.config.api_token}"

    def _request(self, method: str, path: str, payload=None):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, json=payload, timeout=self.config.request_timeout_s
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise NetworkError(f"Network error: unable to reach {url}: {e}") from e
        except requests.RequestException as e:
            raise ApiError(f"Request to {url} failed: {e}") from e

        if response.ok:
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        raise self._classify(response)

    @staticmethod
    def _classify(response: requests.Response) -> ApiError:
        status = response.status_code
        try:
            detail = json.dumps(response.json())
        except ValueError:
            detail = response.text
        message = f"HTTP {status}: {detail}"

        if status in (401, 403) or "Unauthorized" in detail:
            return AuthenticationError(message, status)
        if status == 409 or any(marker in detail.lower() for marker in DUPLICATE_MARKERS):
            return DuplicateTripError(message, status)
        return ApiError(message, status)

    def create_trip(self, payload: TripUploadPayload) -> BackendTrip:
        data = self._request("POST", "/api/trips/", payload.model_dump(mode="json", exclude_none=True))
        return BackendTrip(**data)

    def create_trips_batch(self, payloads: list[TripUploadPayload]) -> list[BackendTrip]:
        """Upload several trips at once; returns the trips the backend stored."""
        body = [p.model_dump(mode="json", exclude_none=True) for p in payloads]
        logger.info("Uploading batch of %d trips", len(body))
        data = self._request("POST", "/api/trips/sync/", body) or []
        return [BackendTrip(**item) for item in data]

    def delete_trip(self, backend_id: int) -> None:
        self._request("DELETE", f"/api/trips/{backend_id}/")
        logger.info("Deleted backend trip %d", backend_id)

    def is_reachable(self) -> bool:
        """Connectivity probe; any HTTP answer counts as reachable."""
        try:
            self.session.head(self.base_url, timeout=self.config.request_timeout_s)
            return True
        except requests.RequestException as e:
            logger.info("Backend unreachable: %s", e)
            return False
