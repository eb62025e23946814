"""
Admitted readings flow: throttle -> tracking identity -> location record.
"""
from dataclasses import dataclass
from typing import Optional
from services.realtime_store import RealtimeStore
from services.location_store import LocationStore, build_location_record
from services.location_throttle import LocationThrottler, LocationReading
from services.tracking_identity import TrackingIdentityResolver
from utils.errors import NotFound, TrackingError, require_actor
from utils.logger import DatabaseLogger
from models.log import LogLevel
import logging

logger = logging.getLogger(__name__)


@dataclass
class LocationUpdateResult:
    updated: bool
    tracking_id: Optional[str] = None


class LocationPipeline:
    def __init__(self, store: RealtimeStore, throttler: Optional[LocationThrottler] = None):
        self.store = store
        self.throttler = throttler or LocationThrottler()
        self.locations = LocationStore(store)
        self.identities = TrackingIdentityResolver(store)

    def publish(self, vehicle_id: str, reading: LocationReading, actor_uid: str) -> LocationUpdateResult:
        """
        Write the reading as the vehicle's latest location if the throttler
        admits it. Store failures are logged and the update is dropped; the
        next admitted reading acts as the retry. Raises NotFound for a
        vehicle that does not exist.
        """
        require_actor(actor_uid)
        if not self.store.exists(f"vehicles/{vehicle_id}"):
            raise NotFound(f"Vehicle not found: {vehicle_id}")

        if not self.throttler.admit(vehicle_id, reading):
            return LocationUpdateResult(updated=False)

        try:
            tracking_id = self.identities.get_or_create(vehicle_id, actor_uid)
        except TrackingError:
            self.throttler.revert(vehicle_id, reading)
            raise

        record = build_location_record(
            vehicle_id=vehicle_id,
            tracking_id=tracking_id,
            lat=reading.lat,
            lng=reading.lng,
            timestamp=reading.timestamp,
            updated_by=actor_uid,
            source=reading.source,
            accuracy=reading.accuracy,
        )

        try:
            self.locations.write(record)
        except TrackingError as e:
            self.throttler.revert(vehicle_id, reading)
            logger.error(f"Location write failed for vehicle {vehicle_id}: {e}")
            DatabaseLogger.log_error(
                error_type="LocationUpdateError",
                error_message=str(e),
                context=f"vehicleLocations/{vehicle_id}",
                user_id=actor_uid,
                severity=LogLevel.WARNING
            )
            return LocationUpdateResult(updated=False, tracking_id=tracking_id)

        logger.info(
            f"{reading.source.upper()} update: {reading.lat:.4f}, {reading.lng:.4f} "
            f"for vehicle {vehicle_id} (Tracking: {tracking_id})"
        )
        DatabaseLogger.log_user_activity(
            user_id=actor_uid,
            action="location_update",
            description=f"{reading.source} location ({reading.lat}, {reading.lng})",
            entity_type="vehicleLocation",
            entity_id=vehicle_id
        )
        return LocationUpdateResult(updated=True, tracking_id=tracking_id)


# Shared by the HTTP update endpoint and every driver session
location_throttler = LocationThrottler()
