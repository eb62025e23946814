"""
Per-driver location sharing session.

States:
    searching -> acquired -> watching
    searching -> timeout -> searching (backoff, at most gps_max_attempts tries)
    searching -> timeout -> ip_fallback
    searching -> denied | unavailable (IP fallback, no automatic GPS retry)

While the session relies on IP fallback, GPS is retried every
gps_retry_interval_seconds and the IP location refreshed every
ip_refresh_interval_seconds. Independently, the last admitted coordinate
is force-written every safety_refresh_seconds.
"""
from typing import Any, Awaitable, Callable, List, Optional, Set
from config import settings
from services.device_geolocation import (
    GeolocationProvider, Position, PositionError, PositionErrorCode, PositionOptions
)
from services.ip_geolocation import IPGeolocationService
from services.location_pipeline import LocationPipeline
from services.location_throttle import LocationReading, SOURCE_GPS, SOURCE_IP
from utils.errors import NotFound, TrackingError, require_actor
import asyncio
import enum
import time
import logging

logger = logging.getLogger(__name__)


class GpsStatus(str, enum.Enum):
    SEARCHING = "searching"
    ACQUIRED = "acquired"
    WATCHING = "watching"
    TIMEOUT = "timeout"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"
    IP_FALLBACK = "ip_fallback"


StatusListener = Callable[["GpsStatus"], Any]


def now_ms() -> int:
    return int(time.time() * 1000)


def resolve_assigned_vehicle(store, driver_uid: str) -> Optional[str]:
    """The driver's assignedVehicleId, else the first vehicle naming them as driver"""
    profile = store.get(f"users/{driver_uid}") or {}
    if profile.get("assignedVehicleId"):
        return profile["assignedVehicleId"]
    vehicles = store.get("vehicles") or {}
    for vehicle_id, vehicle in vehicles.items():
        if isinstance(vehicle, dict) and vehicle.get("driverId") == driver_uid:
            return vehicle_id
    return None


class DriverLocationSession:
    def __init__(
        self,
        driver_uid: str,
        provider: GeolocationProvider,
        pipeline: LocationPipeline,
        ip_service: Optional[IPGeolocationService] = None,
        vehicle_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms
    ):
        self.driver_uid = require_actor(driver_uid)
        self.provider = provider
        self.pipeline = pipeline
        self.ip_service = ip_service or IPGeolocationService()
        self.vehicle_id = vehicle_id
        self._sleep = sleep
        self._clock = clock

        self.status = GpsStatus.SEARCHING
        self.attempts = 0
        self.using_fallback = False
        self.tracking_id: Optional[str] = None
        self.watch_handle: Optional[int] = None
        self._safety_task: Optional[asyncio.Task] = None
        self._gps_retry_task: Optional[asyncio.Task] = None
        self._ip_refresh_task: Optional[asyncio.Task] = None
        self._status_listeners: List[StatusListener] = []
        self._reports: Set[asyncio.Task] = set()
        self._halt_task: Optional[asyncio.Task] = None
        self.vehicle_removed = False
        self._running = False

    # Status

    def on_status(self, listener: StatusListener):
        self._status_listeners.append(listener)

    def _set_status(self, status: GpsStatus):
        if status == self.status:
            return
        logger.info(f"Driver {self.driver_uid}: GPS {self.status.value} -> {status.value}")
        self.status = status
        for listener in self._status_listeners:
            try:
                result = listener(status)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._reports.add(task)
                    task.add_done_callback(self._report_done)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    def _report_done(self, task: asyncio.Task):
        self._reports.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Status listener failed: {task.exception()}")

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "vehicleId": self.vehicle_id,
            "trackingId": self.tracking_id,
            "usingFallback": self.using_fallback,
            "attempts": self.attempts,
        }

    # Lifecycle

    async def start(self) -> bool:
        """Begin sharing. Returns False when the driver has no vehicle."""
        if self.vehicle_id is None:
            try:
                self.vehicle_id = resolve_assigned_vehicle(self.pipeline.store, self.driver_uid)
            except TrackingError as e:
                logger.error(f"Error getting assigned vehicle for {self.driver_uid}: {e}")
        if not self.vehicle_id:
            logger.warning(f"No vehicle assigned to driver {self.driver_uid}, location sharing disabled")
            return False

        self.tracking_id = self.pipeline.identities.get(self.vehicle_id)
        logger.info(f"Starting location sharing for vehicle {self.vehicle_id}")
        self._running = True
        self._safety_task = asyncio.ensure_future(self._safety_loop())

        if await self.acquire_gps():
            await self._start_watch()
        elif not self.vehicle_removed:
            await self._enter_fallback()
        return True

    async def stop(self):
        self._running = False
        self.using_fallback = False
        tasks = [t for t in (self._safety_task, self._gps_retry_task, self._ip_refresh_task) if t]
        tasks.extend(self._reports)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._safety_task = self._gps_retry_task = self._ip_refresh_task = None

        halt = self._halt_task
        if halt is not None and halt is not asyncio.current_task():
            await asyncio.gather(halt, return_exceptions=True)

        if self.watch_handle is not None:
            await self.provider.clear_watch(self.watch_handle)
            logger.info(f"GPS watch stopped for vehicle {self.vehicle_id}")
            self.watch_handle = None

        if self.vehicle_id:
            self.pipeline.throttler.reset(self.vehicle_id)

    # GPS acquisition

    def _options_for(self, attempt: int) -> PositionOptions:
        # High accuracy on the first try only; later tries accept cached fixes
        return PositionOptions(
            enable_high_accuracy=attempt == 0,
            timeout_ms=int(settings.gps_timeout_seconds * 1000),
            maximum_age_ms=settings.gps_retry_maximum_age_ms if attempt > 0 else 0,
        )

    async def acquire_gps(self) -> bool:
        """
        One acquisition round: up to gps_max_attempts one-shot requests.
        Returns True once a fix within gps_accuracy_threshold_m is published.
        """
        self.attempts = 0
        self._set_status(GpsStatus.SEARCHING)

        while self.attempts < settings.gps_max_attempts:
            try:
                position = await asyncio.wait_for(
                    self.provider.get_current_position(self._options_for(self.attempts)),
                    timeout=settings.gps_timeout_seconds
                )
            except asyncio.TimeoutError:
                error = PositionError(PositionErrorCode.TIMEOUT, "GPS request timed out")
            except PositionError as e:
                error = e
            else:
                if self._handle_fix(position):
                    return True
                if self.vehicle_removed:
                    return False
                await self._next_attempt()
                continue

            if error.code == PositionErrorCode.PERMISSION_DENIED:
                logger.error(f"Location permission denied for driver {self.driver_uid}")
                self._set_status(GpsStatus.DENIED)
                return False
            if error.code == PositionErrorCode.POSITION_UNAVAILABLE:
                logger.error(f"GPS signal unavailable for driver {self.driver_uid}")
                self._set_status(GpsStatus.UNAVAILABLE)
                return False

            logger.info(f"GPS timeout (attempt {self.attempts + 1})")
            self._set_status(GpsStatus.TIMEOUT)
            await self._next_attempt()

        logger.info(f"GPS failed after {settings.gps_max_attempts} attempts, using IP fallback")
        return False

    async def _next_attempt(self):
        self.attempts += 1
        if self.attempts < settings.gps_max_attempts:
            await self._sleep(settings.gps_backoff_seconds * self.attempts)

    def _handle_fix(self, position: Position) -> bool:
        if position.accuracy > settings.gps_accuracy_threshold_m:
            logger.info(f"Low GPS accuracy: {position.accuracy:.1f}m")
            return False

        if self._publish(position.lat, position.lng, SOURCE_GPS, accuracy=position.accuracy) is None:
            return False
        self.using_fallback = False
        self._set_status(GpsStatus.ACQUIRED)
        return True

    async def _start_watch(self):
        if self.watch_handle is not None:
            await self.provider.clear_watch(self.watch_handle)

        self.watch_handle = await self.provider.watch_position(
            self._on_watch_position,
            self._on_watch_error,
            PositionOptions(
                enable_high_accuracy=True,
                timeout_ms=settings.watch_timeout_ms,
                maximum_age_ms=settings.watch_maximum_age_ms,
                distance_filter_m=settings.watch_distance_filter_m,
            )
        )
        self._set_status(GpsStatus.WATCHING)

    def _on_watch_position(self, position: Position):
        if position.accuracy < settings.watch_accuracy_threshold_m:
            self._publish(position.lat, position.lng, SOURCE_GPS, accuracy=position.accuracy)

    def _on_watch_error(self, error: PositionError):
        logger.warning(f"GPS watch error: {error.message}")

    # IP fallback

    async def _enter_fallback(self):
        self.using_fallback = True
        if self.status == GpsStatus.TIMEOUT:
            self._set_status(GpsStatus.IP_FALLBACK)
        await self._publish_ip()
        self._gps_retry_task = asyncio.ensure_future(self._gps_retry_loop())
        self._ip_refresh_task = asyncio.ensure_future(self._ip_refresh_loop())

    async def _publish_ip(self):
        lat, lng = await self.ip_service.get_approximate_location()
        self._publish(lat, lng, SOURCE_IP, force=True)

    async def _gps_retry_loop(self):
        while self._running and self.using_fallback:
            await self._sleep(settings.gps_retry_interval_seconds)
            if not (self._running and self.using_fallback):
                return

            logger.info(f"Retrying GPS for vehicle {self.vehicle_id}")
            try:
                acquired = await self.acquire_gps()
            except Exception as e:
                logger.error(f"GPS retry failed: {e}", exc_info=True)
                acquired = False

            if self.vehicle_removed:
                return
            if acquired:
                if self._ip_refresh_task is not None:
                    self._ip_refresh_task.cancel()
                    self._ip_refresh_task = None
                await self._start_watch()
                return

            self.using_fallback = True
            if self.status == GpsStatus.TIMEOUT:
                self._set_status(GpsStatus.IP_FALLBACK)

    async def _ip_refresh_loop(self):
        while self._running and self.using_fallback:
            await self._sleep(settings.ip_refresh_interval_seconds)
            if self._running and self.using_fallback:
                try:
                    await self._publish_ip()
                except Exception as e:
                    logger.error(f"IP refresh failed: {e}", exc_info=True)

    # Safety net

    async def _safety_loop(self):
        while self._running:
            await self._sleep(settings.safety_refresh_seconds)
            last = self.pipeline.throttler.last_admitted(self.vehicle_id)
            if last is None:
                continue
            try:
                self._publish(
                    last.lat, last.lng,
                    SOURCE_IP if self.using_fallback else SOURCE_GPS,
                    accuracy=last.accuracy,
                    force=True
                )
            except Exception as e:
                logger.error(f"Safety refresh failed: {e}", exc_info=True)

    def _publish(self, lat: float, lng: float, source: str, accuracy: Optional[float] = None, force: bool = False):
        reading = LocationReading(
            lat=lat,
            lng=lng,
            timestamp=self._clock(),
            source=source,
            accuracy=accuracy,
            force_update=force,
        )
        try:
            result = self.pipeline.publish(self.vehicle_id, reading, self.driver_uid)
        except NotFound:
            self._vehicle_gone()
            return None
        if result.updated:
            self.tracking_id = result.tracking_id
        return result

    def _vehicle_gone(self):
        if self.vehicle_removed:
            return
        logger.warning(f"Vehicle {self.vehicle_id} no longer exists, stopping location sharing for {self.driver_uid}")
        self.vehicle_removed = True
        self._running = False
        self.using_fallback = False
        self._halt_task = asyncio.ensure_future(self.stop())
