"""
Tracking orchestrator.

Receives fixes from the location provider, pushes them onto a single-consumer
queue, and drains that queue under one lock so that filtering, trip start,
point storage and end-of-trip evaluation never interleave. The foreground
watcher and the background delivery path both feed the same queue.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from tripcore.api.database import TripStore, TripStoreError
from tripcore.api.trips_client import AuthenticationError
from tripcore.ml.activity.classifier import classify_by_speed
from tripcore.tracking.ingestion_filter import FilterDecision, IngestionFilter, IngestionSession
from tripcore.tracking.trip import Fix, LocationPoint, Trip
from tripcore.tracking.trip_detector import (
    StopDecision,
    evaluate_stop,
    is_recording,
    is_zombie,
    should_start_trip,
    update_stationary,
    zombie_reference_time,
)
from tripcore.tracking.trip_manager import ZOMBIE_NOTE, FinalizeResult, TripManager
from tripcore.utils.config_loader import (
    ClassifierConfig,
    DetectionConfig,
    IngestionConfig,
    SyncConfig,
    TrackingConfig,
)
from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.service")


class TrackingPermissionError(Exception):
    """Raised when tracking cannot start without foreground location permission."""


class LocationProviderError(Exception):
    """Transient failure acquiring fixes from the provider."""


@dataclass
class LocationPermissions:
    foreground: bool
    background: bool


class LocationProvider(Protocol):
    """What the orchestrator needs from the OS location layer."""

    def start_updates(self) -> None: ...

    def stop_updates(self) -> None: ...

    def get_latest(self) -> List[Fix]: ...

    def get_permissions(self) -> LocationPermissions: ...


class FixOutcome(Enum):
    """What processing a single fix did."""
    IGNORED = "ignored"
    BUFFERING = "buffering"
    STARTED = "started"
    RECORDED = "recorded"
    REJECTED = "rejected"
    ENDED = "ended"
    FAILED = "failed"


@dataclass
class ResumeOutcome:
    zombie_terminated: bool = False
    trip_id: Optional[str] = None
    background_permission: Optional[bool] = None


def _fix_from_point(point: LocationPoint) -> Fix:
    return Fix(
        latitude=point.latitude,
        longitude=point.longitude,
        timestamp=point.timestamp,
        altitude=point.altitude,
        accuracy=point.accuracy,
        speed=point.speed,
        heading=point.heading,
    )


class TrackingService:
    """
    Single-writer ingestion pipeline.

    Args:
        store: Trip persistence
        manager: Trip lifecycle operations (built from store when omitted)
        sync_service: Scheduled after a trip completes, when configured
        provider: OS location provider (optional; fixes may also be submitted directly)
        config: Watcher interval, queue size, local user id
        ingestion_config: Accuracy, stabilization and outlier thresholds
        detection_config: Start, stationary and zombie thresholds
        classifier_config: Speed bands
        sync_config: Auto-sync toggle
        clock: Wall-clock source for zombie checks

    Example:
        >>> service = TrackingService(TripStore())
        >>> await service.start(foreground=False)
        >>> await service.submit(fixes)
        >>> await service.drain()
    """

    def __init__(
        self,
        store: TripStore,
        manager: Optional[TripManager] = None,
        sync_service=None,
        provider: Optional[LocationProvider] = None,
        config: Optional[TrackingConfig] = None,
        ingestion_config: Optional[IngestionConfig] = None,
        detection_config: Optional[DetectionConfig] = None,
        classifier_config: Optional[ClassifierConfig] = None,
        sync_config: Optional[SyncConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or TrackingConfig()
        self.detection_config = detection_config or DetectionConfig()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.sync_config = sync_config or SyncConfig()
        self.manager = manager or TripManager(
            store,
            detection_config=self.detection_config,
            classifier_config=self.classifier_config,
            sync_config=self.sync_config,
        )
        self.sync_service = sync_service
        self.provider = provider
        self.filter = IngestionFilter(ingestion_config)
        self.session = IngestionSession()
        self._clock = clock

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.fix_queue_size)
        self._lock = asyncio.Lock()
        self._consumer: Optional[asyncio.Task] = None
        self._watcher: Optional[asyncio.Task] = None
        self._sync_tasks: set = set()
        self._tracking = False
        self._on_permission_downgraded: Optional[Callable[[], None]] = None

        self.processed_fixes = 0
        self.rejected_fixes = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def set_on_permission_downgraded(self, callback: Optional[Callable[[], None]]):
        self._on_permission_downgraded = callback

    async def start(self, foreground: bool = True):
        """
        Start consuming fixes.

        Raises:
            TrackingPermissionError: Foreground location permission is not granted
        """
        if self._tracking:
            logger.info("Already tracking")
            return

        if self.provider is not None:
            permissions = self.provider.get_permissions()
            if not permissions.foreground:
                raise TrackingPermissionError("Foreground location permission not granted")
            if not permissions.background:
                logger.warning("Background permission not granted, tracking may stop when backgrounded")
            self.provider.start_updates()

        self.session = IngestionSession()
        self._resume_active_trip()

        self._consumer = asyncio.create_task(self._consume())
        if foreground and self.provider is not None:
            self._watcher = asyncio.create_task(self._watch())
        self._tracking = True
        logger.info("Tracking started")

    async def stop(self):
        """Stop consuming fixes and clear session state. An open trip stays open."""
        self._tracking = False
        for task in (self._watcher, self._consumer):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._watcher = None
        self._consumer = None

        if self.provider is not None:
            self.provider.stop_updates()

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self.session.reset()
        logger.info("Tracking stopped")

    def _resume_active_trip(self):
        """Continue an open trip left by a previous run: its last point becomes the outlier reference."""
        trip = self.store.get_active_trip()
        if trip is None:
            return
        last = self.store.get_last_location(trip.id)
        if last is not None:
            self.session.last_stored = _fix_from_point(last)
            self.session.stabilized = True
            logger.info(f"Resuming open trip {trip.id}")

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def submit(self, fixes: Sequence[Fix]) -> int:
        """Enqueue a batch of fixes as delivered by the provider."""
        if not fixes:
            return 0
        await self._queue.put(list(fixes))
        return len(fixes)

    async def drain(self):
        """Wait until every queued batch has been processed."""
        await self._queue.join()

    async def _consume(self):
        while True:
            fixes = await self._queue.get()
            try:
                await self.process_batch(fixes)
            finally:
                self._queue.task_done()

    async def _watch(self):
        """Foreground watcher: poll the provider on a fixed interval."""
        logger.info(f"Foreground watcher started ({self.config.foreground_interval_s:.0f}s interval)")
        while True:
            await asyncio.sleep(self.config.foreground_interval_s)
            try:
                fixes = self.provider.get_latest()
            except LocationProviderError as e:
                logger.warning(f"Transient location error: {e}")
                continue
            if fixes:
                await self.submit(fixes)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_batch(self, fixes: Sequence[Fix]) -> List[FixOutcome]:
        """Process a delivered batch in timestamp order under the writer lock."""
        outcomes = []
        async with self._lock:
            for fix in IngestionFilter.order_batch(fixes):
                outcomes.append(self._process_safely(fix))
        return outcomes

    def _process_safely(self, fix: Fix) -> FixOutcome:
        try:
            outcome = self.process_fix(fix)
        except (SQLAlchemyError, TripStoreError):
            logger.exception(f"Persistence failure, skipping fix at {fix.timestamp:.0f}")
            return FixOutcome.FAILED
        self.processed_fixes += 1
        if outcome is FixOutcome.REJECTED:
            self.rejected_fixes += 1
        return outcome

    def process_fix(self, fix: Fix) -> FixOutcome:
        """
        Run one fix through filtering and the trip state machine.

        Callers must hold the writer lock; process_batch does.
        """
        fix = self.filter.with_speed(fix, self.session)
        trip = self.store.get_active_trip()

        if trip is None:
            return self._process_idle(fix)
        if not is_recording(trip):
            logger.debug(f"Trip {trip.id} is paused, ignoring fix")
            return FixOutcome.IGNORED
        return self._process_active(trip, fix)

    def _process_idle(self, fix: Fix) -> FixOutcome:
        # Once stabilization is under way, inaccurate fixes still advance its timeout
        accurate = self.filter.passes_accuracy(fix, trip_active=False)
        if not accurate and self.session.stabilization_started_at is None:
            logger.debug(f"Dropping inaccurate idle fix: {fix.accuracy}m")
            return FixOutcome.REJECTED

        classification = classify_by_speed(fix.speed, self.classifier_config)
        if not should_start_trip(fix.speed, classification, self.detection_config):
            if self.session.stabilization_started_at is not None:
                logger.debug("Not moving, resetting GPS stabilization")
            self.session.reset_stabilization()
            return FixOutcome.IGNORED

        result = self.filter.stabilize(fix, self.session)
        if not result.ready:
            return FixOutcome.BUFFERING if accurate else FixOutcome.REJECTED

        trip = self.manager.start_trip(self.config.user_id, start_time=result.anchor.timestamp)
        for buffered in result.fixes:
            self.manager.record_point(trip.id, buffered, classify_by_speed(buffered.speed, self.classifier_config))
        self.session.last_stored = result.fixes[-1]
        self.session.stationary_since = None
        logger.info(
            f"Started trip {trip.id} from {len(result.fixes)} stabilization fixes "
            f"(best accuracy {result.anchor.accuracy}m)"
        )
        return FixOutcome.STARTED

    def _process_active(self, trip: Trip, fix: Fix) -> FixOutcome:
        decision = self.filter.accept_for_trip(fix, self.session)
        if decision is not FilterDecision.ACCEPTED:
            return FixOutcome.REJECTED

        stationary_since = update_stationary(self.session, fix.speed, fix.timestamp, self.detection_config)
        self.manager.record_point(trip.id, fix, classify_by_speed(fix.speed, self.classifier_config))

        trip = self.store.get_trip(trip.id)
        stop = evaluate_stop(trip.duration, trip.distance, stationary_since, fix.timestamp, self.detection_config)
        if stop is StopDecision.CONTINUE:
            return FixOutcome.RECORDED

        if stop is StopDecision.DISCARD:
            self.manager.cancel_trip(
                trip.id, f"Trip too short ({trip.duration:.0f}s, {trip.distance:.0f}m)", fix.timestamp
            )
        else:
            logger.info(f"Ending trip {trip.id} (stationary since {stationary_since:.0f})")
            self._after_finalize(self.manager.finalize_trip(trip.id, end_time=fix.timestamp))
        self.session.reset()
        return FixOutcome.ENDED

    # ------------------------------------------------------------------
    # Resume and sync
    # ------------------------------------------------------------------

    async def handle_foreground_resume(self, now: Optional[float] = None) -> ResumeOutcome:
        """
        Zombie check plus permission re-check, run when the app returns to the foreground.

        An open trip with nothing recorded for longer than the zombie threshold
        is finalized with its last sign of life as the end time.
        """
        now = now if now is not None else self._clock()
        outcome = ResumeOutcome()

        async with self._lock:
            trip = self.store.get_active_trip()
            if trip is not None:
                last = self.store.get_last_location(trip.id)
                last_ts = last.timestamp if last is not None else None
                if is_zombie(trip, last_ts, now, self.detection_config):
                    end_time = zombie_reference_time(trip, last_ts)
                    result = self.manager.finalize_trip(trip.id, end_time=end_time, note=ZOMBIE_NOTE)
                    self.session.reset()
                    self._after_finalize(result)
                    outcome.zombie_terminated = True
                    outcome.trip_id = trip.id
                    logger.warning(f"Zombie trip {trip.id} ended as {result.trip.status.value}")

        if self._tracking and self.provider is not None:
            permissions = self.provider.get_permissions()
            outcome.background_permission = permissions.background
            if not permissions.background:
                logger.warning("Background permission revoked or downgraded")
                if self._on_permission_downgraded is not None:
                    self._on_permission_downgraded()
        return outcome

    def _after_finalize(self, result: FinalizeResult):
        completed = result.completed_trip_ids
        if not completed:
            return
        if self.sync_service is None or not self.sync_config.auto_sync_on_completion:
            return
        logger.info(f"Scheduling sync for {len(completed)} completed trip(s)")
        task = asyncio.create_task(self._auto_sync())
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def _auto_sync(self):
        try:
            result = await self.sync_service.sync_all()
        except AuthenticationError:
            logger.error("Auto-sync rejected by backend, re-authentication required")
            return
        except Exception:
            logger.exception("Auto-sync failed")
            return
        logger.info(f"Auto-sync: {result.synced_count} synced, {result.failed_count} failed")
