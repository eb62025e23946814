"""
Vehicle-driver assignment.

Keeps vehicles/{id}.driverId and users/{uid}.assignedVehicleId pointing at
each other, with at most one vehicle per driver. All records touched by one
assignment are read with their version stamps and written back as a single
compare-and-swap batch; if anything changed in between, the whole
assignment is recomputed from fresh reads.
"""
from services.realtime_store import RealtimeStore, VersionedWrite
from utils.errors import ConcurrentModification, InvalidRole, NotFound, require_actor
from utils.logger import DatabaseLogger
from config import settings
from models.account import UserRole
from typing import List, Optional, Tuple
import time
import logging

logger = logging.getLogger(__name__)

ROLE_DRIVER = UserRole.DRIVER.value


def _now_ms() -> int:
    return int(time.time() * 1000)


class AssignmentManager:
    def __init__(self, store: RealtimeStore, max_retries: Optional[int] = None):
        self.store = store
        self.max_retries = max_retries if max_retries is not None else settings.assignment_max_retries

    def assign(self, vehicle_id: str, driver_id: Optional[str], actor_uid: str) -> dict:
        """
        Link driver_id to vehicle_id (or unlink the vehicle's driver when
        driver_id is None). Returns the vehicle record as written.
        """
        require_actor(actor_uid)
        if not vehicle_id:
            raise NotFound("Vehicle ID is required")

        for attempt in range(1, self.max_retries + 1):
            writes, vehicle = self._plan(vehicle_id, driver_id)
            if self.store.compare_and_set_many(writes):
                logger.info(f"Vehicle {vehicle_id} assigned to driver {driver_id} by {actor_uid}")
                DatabaseLogger.log_user_activity(
                    user_id=actor_uid,
                    action="assign_driver" if driver_id else "unassign_driver",
                    description=f"Vehicle {vehicle_id} -> driver {driver_id}",
                    entity_type="vehicle",
                    entity_id=vehicle_id
                )
                return vehicle
            logger.warning(f"Assignment of vehicle {vehicle_id} conflicted (attempt {attempt}), retrying")

        raise ConcurrentModification(
            f"Vehicle {vehicle_id} or driver {driver_id} kept changing during assignment"
        )

    def _read(self, path: str) -> Tuple[Optional[dict], int]:
        value, version = self.store.get_versioned(path)
        return (value if isinstance(value, dict) else None), version

    def _plan(self, vehicle_id: str, driver_id: Optional[str]) -> Tuple[List[VersionedWrite], dict]:
        """Read every record the assignment touches and compute the writes in protocol order"""
        now = _now_ms()
        vehicle_path = f"vehicles/{vehicle_id}"
        vehicle, vehicle_version = self._read(vehicle_path)
        if vehicle is None:
            raise NotFound(f"Vehicle not found: {vehicle_id}")

        current_driver_id = vehicle.get("driverId") or None
        writes: List[VersionedWrite] = []

        def stage(path: str, record: dict, version: int, fields: dict) -> dict:
            updated = dict(record)
            for key, value in fields.items():
                if value is None:
                    updated.pop(key, None)
                else:
                    updated[key] = value
            updated["updatedAt"] = now
            writes.append(VersionedWrite(path, updated, version))
            return updated

        if driver_id:
            driver_path = f"users/{driver_id}"
            driver, driver_version = self._read(driver_path)
            if driver is None:
                raise NotFound(f"Driver not found: {driver_id}")
            if driver.get("role") != ROLE_DRIVER:
                raise InvalidRole("User is not a driver")

            other_vehicle_id = driver.get("assignedVehicleId")
            if other_vehicle_id and other_vehicle_id != vehicle_id:
                other_path = f"vehicles/{other_vehicle_id}"
                other_vehicle, other_version = self._read(other_path)
                if other_vehicle is not None:
                    stage(other_path, other_vehicle, other_version, {"driverId": None})

            stage(driver_path, driver, driver_version, {"assignedVehicleId": vehicle_id})

        if current_driver_id and current_driver_id != driver_id:
            previous_path = f"users/{current_driver_id}"
            previous, previous_version = self._read(previous_path)
            if previous is not None:
                stage(previous_path, previous, previous_version, {"assignedVehicleId": None})

        updated_vehicle = stage(vehicle_path, vehicle, vehicle_version, {"driverId": driver_id})
        return writes, updated_vehicle
