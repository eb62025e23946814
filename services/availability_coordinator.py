"""
Vehicle availability follows the booking lifecycle: a vehicle becomes
unavailable when a booking is created against it and available again when
that booking completes or is cancelled.
"""
from services.realtime_store import RealtimeStore, VersionedWrite
from utils.errors import ConcurrentModification
from config import settings
import time
import logging

logger = logging.getLogger(__name__)

RELEASING_STATUSES = {"completed", "cancelled"}


class AvailabilityCoordinator:
    def __init__(self, store: RealtimeStore):
        self.store = store

    def _set_available(self, vehicle_id: str, available: bool) -> bool:
        """Flip the flag on an existing vehicle. A deleted vehicle is left deleted."""
        path = f"vehicles/{vehicle_id}"
        for _ in range(settings.assignment_max_retries):
            vehicle, version = self.store.get_versioned(path)
            if not isinstance(vehicle, dict):
                logger.warning(f"Vehicle {vehicle_id} no longer exists, availability not changed")
                return False
            updated = dict(vehicle, available=available, updatedAt=int(time.time() * 1000))
            if self.store.compare_and_set_many([VersionedWrite(path, updated, version)]):
                logger.info(f"Vehicle {vehicle_id} marked {'available' if available else 'in use'}")
                return True
        raise ConcurrentModification(f"Vehicle {vehicle_id} kept changing while updating availability")

    def mark_in_use(self, vehicle_id: str):
        self._set_available(vehicle_id, False)

    def mark_available(self, vehicle_id: str):
        self._set_available(vehicle_id, True)

    def on_booking_created(self, booking: dict):
        if booking.get("vehicleId"):
            self.mark_in_use(booking["vehicleId"])

    def on_status_changed(self, booking: dict, new_status: str):
        """Only completed/cancelled release the vehicle"""
        if new_status in RELEASING_STATUSES and booking.get("vehicleId"):
            self.mark_available(booking["vehicleId"])

    def bookable_vehicles(self) -> dict:
        """Vehicles customers may book: available and with a driver"""
        vehicles = self.store.get("vehicles") or {}
        return {
            vehicle_id: vehicle
            for vehicle_id, vehicle in vehicles.items()
            if isinstance(vehicle, dict) and vehicle.get("available", True) and vehicle.get("driverId")
        }
