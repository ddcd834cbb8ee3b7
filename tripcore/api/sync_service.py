"""
Offline-first trip synchronisation.

Uploads completed, unsynced trips to the backend. The local store is the
source of truth: trips are re-read and re-validated right before upload, and
nothing read before an await is trusted after it.

Error handling per trip:
    AuthenticationError  propagated to the caller, never retried
    DuplicateTripError   backend already has it, marked synced
    NetworkError         retried with backoff, then counted as failed
    other ApiError       counted as failed, not retried
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from tripcore.api.database import TripStore
from tripcore.api.trips_client import (
    ApiError,
    AuthenticationError,
    DuplicateTripError,
    NetworkError,
    TripsApiClient,
    build_payload,
)
from tripcore.api.models import TripUploadPayload
from tripcore.tracking.trip import ALLOWED_TRIP_TYPES, Trip, TripStatus, TripType
from tripcore.tracking.trip_validator import validate_trip
from tripcore.utils.config_loader import SyncConfig, ValidationConfig

logger = logging.getLogger(__name__)


@dataclass
class SyncError:
    trip_id: str
    error: str


@dataclass
class SyncResult:
    """Aggregate outcome of a sync run; per-trip failures never raise."""
    success: bool
    synced_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_attempted: int = 0
    errors: list[SyncError] = field(default_factory=list)


@dataclass
class SyncStatus:
    is_syncing: bool
    last_sync_time: float | None
    unsynced_count: int


class UploadOutcome(Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncService:
    """
    Reconciles local trips with the backend.

    Only one sync (bulk or single) runs at a time; a call made while another
    is in flight returns immediately without uploading.

    Args:
        store: Local trip store
        client: Backend client
        config: Batch size, retry delays, per-type minimum distances
        validation_config: Drift thresholds for re-validation
        sleep: Awaitable used between retries (injectable for tests)
    """

    def __init__(
        self,
        store: TripStore,
        client: TripsApiClient,
        config: SyncConfig | None = None,
        validation_config: ValidationConfig | None = None,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.client = client
        self.config = config or SyncConfig()
        self.validation_config = validation_config or ValidationConfig()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_sync_time: float | None = None

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    async def check_network(self) -> bool:
        return await asyncio.to_thread(self.client.is_reachable)

    def rejection_reason(self, trip: Trip) -> str | None:
        """
        Re-validate a trip immediately before upload.

        Returns:
            Human-readable reason the trip must not be uploaded, or None
        """
        if trip.type not in ALLOWED_TRIP_TYPES:
            return f"Unsupported type: {trip.type.value}"
        if trip.type is TripType.WALK and trip.distance < self.config.min_walk_distance_m:
            return f"Walk too short ({trip.distance:.0f}m < {self.config.min_walk_distance_m:.0f}m)"
        if trip.type is TripType.CYCLE and trip.distance < self.config.min_cycle_distance_m:
            return f"Cycle too short ({trip.distance:.0f}m < {self.config.min_cycle_distance_m:.0f}m)"

        points = self.store.get_locations_by_trip(trip.id)
        if len(points) >= 2:
            validation = validate_trip([p.coordinate for p in points], trip.distance, self.validation_config)
            if not validation.is_valid:
                return f"GPS drift: {validation.note}"
        return None

    def _cancel(self, trip_id: str, reason: str):
        self.store.update_trip(trip_id, status=TripStatus.CANCELLED, notes=reason)
        logger.info("Cancelled trip %s before upload: %s", trip_id, reason)

    def _mark_synced(self, trip_id: str, backend_id: int | None):
        changes = {"synced": True}
        if backend_id is not None:
            changes["backend_id"] = backend_id
        self.store.update_trip(trip_id, **changes)

    async def sync_all(self) -> SyncResult:
        """
        Upload every completed, unsynced trip.

        Returns:
            SyncResult; zero progress when offline or when a sync is already running

        Raises:
            AuthenticationError: The backend rejected our credentials
        """
        if self._lock.locked():
            logger.info("Sync already in progress")
            return SyncResult(success=False, errors=[SyncError("all", "Sync already in progress")])

        async with self._lock:
            if not await self.check_network():
                logger.info("No network connection, skipping sync")
                return SyncResult(success=False, errors=[SyncError("all", "No network connection")])

            pending = self.store.get_all_trips(status=TripStatus.COMPLETED, synced=False)
            result = SyncResult(success=True, total_attempted=len(pending))
            if not pending:
                logger.info("No trips to sync")
                self._last_sync_time = time.time()
                return result

            logger.info("Found %d trips to sync", len(pending))
            ready: list[tuple[str, TripUploadPayload]] = []
            for trip in pending:
                reason = self.rejection_reason(trip)
                if reason:
                    self._cancel(trip.id, reason)
                    result.skipped_count += 1
                    continue
                try:
                    ready.append((trip.id, build_payload(trip)))
                except ValueError as e:
                    result.failed_count += 1
                    result.errors.append(SyncError(trip.id, f"Transform error: {e}"))

            size = self.config.batch_size
            for start in range(0, len(ready), size):
                await self._sync_batch(ready[start:start + size], result)

            self._last_sync_time = time.time()
            result.success = result.failed_count == 0
            logger.info(
                "Sync complete: %d synced, %d failed, %d skipped",
                result.synced_count, result.failed_count, result.skipped_count,
            )
            return result

    async def _sync_batch(self, batch: list[tuple[str, TripUploadPayload]], result: SyncResult):
        try:
            stored = await asyncio.to_thread(self.client.create_trips_batch, [p for _, p in batch])
        except AuthenticationError:
            logger.error("Authentication rejected during batch upload")
            raise
        except ApiError as e:
            logger.warning("Batch upload failed (%s), falling back to per-trip upload", e)
            for trip_id, _ in batch:
                outcome, error = await self._upload_one(trip_id)
                self._tally(result, trip_id, outcome, error)
            return

        acknowledged = {b.client_id: b.id for b in stored}
        for trip_id, _ in batch:
            if trip_id not in acknowledged:
                self._tally(result, trip_id, UploadOutcome.FAILED, "Not acknowledged by backend")
                continue
            if self.store.get_trip(trip_id) is None:
                logger.warning("Trip %s deleted during upload", trip_id)
                continue
            self._mark_synced(trip_id, acknowledged[trip_id])
            self._tally(result, trip_id, UploadOutcome.SYNCED, None)

    @staticmethod
    def _tally(result: SyncResult, trip_id: str, outcome: UploadOutcome, error: str | None):
        if outcome is UploadOutcome.SYNCED:
            result.synced_count += 1
        elif outcome is UploadOutcome.SKIPPED:
            result.skipped_count += 1
        else:
            result.failed_count += 1
            result.errors.append(SyncError(trip_id, error or "Unknown error"))

    async def _upload_one(self, trip_id: str) -> tuple[UploadOutcome, str | None]:
        """Validate and upload one trip with network retries."""
        trip = self.store.get_trip(trip_id)
        if trip is None:
            return UploadOutcome.FAILED, "Trip not found"
        if trip.synced:
            return UploadOutcome.SYNCED, None
        if trip.status is not TripStatus.COMPLETED:
            return UploadOutcome.SKIPPED, f"Trip not completed ({trip.status.value})"

        reason = self.rejection_reason(trip)
        if reason:
            self._cancel(trip_id, reason)
            return UploadOutcome.SKIPPED, reason
        try:
            payload = build_payload(trip)
        except ValueError as e:
            return UploadOutcome.FAILED, f"Transform error: {e}"

        attempt = 0
        while True:
            try:
                backend = await asyncio.to_thread(self.client.create_trip, payload)
            except AuthenticationError:
                logger.error("Authentication rejected uploading trip %s", trip_id)
                raise
            except DuplicateTripError:
                logger.info("Trip %s already exists on server, marking as synced", trip_id)
                self._mark_synced(trip_id, None)
                return UploadOutcome.SYNCED, None
            except NetworkError as e:
                if attempt >= len(self.config.retry_delays_s):
                    logger.warning("Giving up on trip %s after %d retries: %s", trip_id, attempt, e)
                    return UploadOutcome.FAILED, str(e)
                delay = self.config.retry_delays_s[attempt]
                attempt += 1
                logger.info("Network error, retrying trip %s in %.0fs (attempt %d)", trip_id, delay, attempt)
                await self._sleep(delay)
                continue
            except ApiError as e:
                logger.warning("Upload of trip %s failed: %s", trip_id, e)
                return UploadOutcome.FAILED, str(e)

            if self.store.get_trip(trip_id) is None:
                logger.warning("Trip %s deleted during upload", trip_id)
                return UploadOutcome.FAILED, "Trip deleted during upload"
            self._mark_synced(trip_id, backend.id)
            logger.info("Synced trip %s as backend id %d", trip_id, backend.id)
            return UploadOutcome.SYNCED, None

    async def sync_single_trip(self, trip_id: str) -> bool:
        """
        Upload one trip.

        Returns:
            True when the trip is synced afterwards

        Raises:
            AuthenticationError: The backend rejected our credentials
        """
        if self._lock.locked():
            logger.info("Sync in progress, trip %s will go with the next run", trip_id)
            return False

        async with self._lock:
            if not await self.check_network():
                logger.info("No network connection, skipping sync of %s", trip_id)
                return False
            outcome, error = await self._upload_one(trip_id)
            if error:
                logger.info("Trip %s not synced: %s", trip_id, error)
            return outcome is UploadOutcome.SYNCED

    def cleanup_invalid_trips(self) -> int:
        """Cancel completed, unsynced trips that would fail re-validation."""
        cleaned = 0
        for trip in self.store.get_all_trips(status=TripStatus.COMPLETED, synced=False):
            reason = self.rejection_reason(trip)
            if reason:
                self._cancel(trip.id, reason)
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d invalid trips", cleaned)
        return cleaned

    def get_sync_status(self) -> SyncStatus:
        unsynced = self.store.get_all_trips(status=TripStatus.COMPLETED, synced=False)
        return SyncStatus(
            is_syncing=self.is_syncing,
            last_sync_time=self._last_sync_time,
            unsynced_count=len(unsynced),
        )
