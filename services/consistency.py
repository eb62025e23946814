"""
Detects and repairs torn vehicle-driver links.

Repair policy:
- several vehicles naming one driver: the vehicle the driver points back to
  keeps them; the others are cleared
- vehicle names a missing or non-driver user: the vehicle is cleared
- vehicle names a driver whose assignedVehicleId is empty or points at a
  vehicle that does not name them: the driver is pointed at the vehicle
- driver points at a vehicle that does not name them back: the driver is cleared
"""
from dataclasses import dataclass, field
from typing import Dict, List
from services.realtime_store import RealtimeStore
from services.assignment_manager import ROLE_DRIVER
from utils.logger import DatabaseLogger
from models.log import LogLevel, LogCategory
import asyncio
import time
import logging

logger = logging.getLogger(__name__)


@dataclass
class Inconsistency:
    kind: str
    vehicle_id: str = None
    driver_id: str = None
    repair: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "vehicleId": self.vehicle_id,
            "driverId": self.driver_id,
            "repair": self.repair,
        }


@dataclass
class SweepReport:
    inconsistencies: List[Inconsistency] = field(default_factory=list)
    repaired: bool = False

    def to_dict(self) -> dict:
        return {
            "consistent": not self.inconsistencies,
            "repaired": self.repaired,
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
        }


class ConsistencySweep:
    def __init__(self, store: RealtimeStore):
        self.store = store

    def find(self) -> SweepReport:
        vehicles: Dict[str, dict] = self.store.get("vehicles") or {}
        users: Dict[str, dict] = self.store.get("users") or {}
        report = SweepReport()

        claims: Dict[str, List[str]] = {}
        for vehicle_id, vehicle in vehicles.items():
            driver_id = (vehicle or {}).get("driverId")
            if driver_id:
                claims.setdefault(driver_id, []).append(vehicle_id)

        for driver_id, vehicle_ids in claims.items():
            driver = users.get(driver_id)
            if not driver or driver.get("role") != ROLE_DRIVER:
                for vehicle_id in vehicle_ids:
                    report.inconsistencies.append(Inconsistency(
                        "vehicle_references_non_driver", vehicle_id, driver_id, "clear vehicle.driverId"
                    ))
                continue

            back_link = driver.get("assignedVehicleId")
            if len(vehicle_ids) > 1:
                keeper = back_link if back_link in vehicle_ids else sorted(vehicle_ids)[0]
                for vehicle_id in vehicle_ids:
                    if vehicle_id != keeper:
                        report.inconsistencies.append(Inconsistency(
                            "driver_claimed_by_several_vehicles", vehicle_id, driver_id, "clear vehicle.driverId"
                        ))
                vehicle_ids = [keeper]

            if back_link != vehicle_ids[0]:
                report.inconsistencies.append(Inconsistency(
                    "missing_back_link", vehicle_ids[0], driver_id, "set driver.assignedVehicleId"
                ))

        for driver_id, user in users.items():
            vehicle_id = (user or {}).get("assignedVehicleId")
            if not vehicle_id:
                continue
            vehicle = vehicles.get(vehicle_id)
            if not vehicle or vehicle.get("driverId") != driver_id:
                if driver_id in claims and any(
                    i.kind == "missing_back_link" and i.driver_id == driver_id
                    for i in report.inconsistencies
                ):
                    continue  # repointed above
                report.inconsistencies.append(Inconsistency(
                    "dangling_driver_link", vehicle_id, driver_id, "clear driver.assignedVehicleId"
                ))

        return report

    def run(self, repair: bool = False, actor_uid: str = None) -> SweepReport:
        report = self.find()
        if report.inconsistencies:
            logger.warning(f"Consistency sweep found {len(report.inconsistencies)} torn links")
            DatabaseLogger.log_system(
                LogLevel.WARNING,
                LogCategory.CONSISTENCY,
                f"Torn vehicle-driver links: {len(report.inconsistencies)}",
                details=report.to_dict(),
                user_id=actor_uid
            )
        if repair and report.inconsistencies:
            self._repair(report)
            report.repaired = True
        return report

    def _repair(self, report: SweepReport):
        now = int(time.time() * 1000)
        for item in report.inconsistencies:
            if item.repair == "clear vehicle.driverId":
                self.store.update(f"vehicles/{item.vehicle_id}", {"driverId": None, "updatedAt": now})
            elif item.repair == "set driver.assignedVehicleId":
                self.store.update(f"users/{item.driver_id}", {"assignedVehicleId": item.vehicle_id, "updatedAt": now})
            elif item.repair == "clear driver.assignedVehicleId":
                self.store.update(f"users/{item.driver_id}", {"assignedVehicleId": None, "updatedAt": now})
            logger.info(f"Repaired {item.kind}: vehicle={item.vehicle_id} driver={item.driver_id}")


async def run_periodic_sweep(store: RealtimeStore, interval_seconds: int):
    """Background task started by main.py when an interval is configured"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            ConsistencySweep(store).run(repair=True)
        except Exception as e:
            logger.error(f"Consistency sweep failed: {e}", exc_info=True)
