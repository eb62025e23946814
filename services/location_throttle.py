"""
Throttle admission for location writes.

A reading is written only when it is forced, or when at least
throttle_interval_ms has passed since the last admitted reading for the
vehicle and it moved far enough for its source (GPS readings are precise to
metres, IP readings to city blocks).
"""
from dataclasses import dataclass
from typing import Dict, Optional
from config import settings
from utils.distance import haversine_meters
import threading
import logging

logger = logging.getLogger(__name__)

SOURCE_GPS = "gps"
SOURCE_IP = "ip"


@dataclass
class LocationReading:
    lat: float
    lng: float
    timestamp: int  # epoch milliseconds
    source: str = SOURCE_GPS
    accuracy: Optional[float] = None
    force_update: bool = False


def min_displacement_for(source: str) -> float:
    if source == SOURCE_IP:
        return settings.ip_min_displacement_m
    return settings.gps_min_displacement_m


def should_admit(reading: LocationReading, last_admitted: Optional[LocationReading]) -> bool:
    if reading.force_update:
        return True
    if last_admitted is None:
        return True

    if reading.timestamp - last_admitted.timestamp < settings.throttle_interval_ms:
        return False

    moved = haversine_meters(last_admitted.lat, last_admitted.lng, reading.lat, reading.lng)
    if moved < min_displacement_for(reading.source):
        logger.debug(f"Skipping update (moved only {moved:.1f}m)")
        return False

    return True


class LocationThrottler:
    """Remembers the last admitted reading per vehicle"""

    def __init__(self):
        self._last: Dict[str, LocationReading] = {}
        self._prior: Dict[str, Optional[LocationReading]] = {}
        self._lock = threading.Lock()

    def admit(self, vehicle_id: str, reading: LocationReading) -> bool:
        with self._lock:
            if not should_admit(reading, self._last.get(vehicle_id)):
                return False
            self._prior[vehicle_id] = self._last.get(vehicle_id)
            self._last[vehicle_id] = reading
            return True

    def revert(self, vehicle_id: str, reading: LocationReading):
        """Forget an admitted reading that never got written"""
        with self._lock:
            if self._last.get(vehicle_id) is not reading:
                return
            prior = self._prior.pop(vehicle_id, None)
            if prior is None:
                self._last.pop(vehicle_id, None)
            else:
                self._last[vehicle_id] = prior

    def last_admitted(self, vehicle_id: str) -> Optional[LocationReading]:
        with self._lock:
            return self._last.get(vehicle_id)

    def reset(self, vehicle_id: Optional[str] = None):
        with self._lock:
            if vehicle_id is None:
                self._last.clear()
                self._prior.clear()
            else:
                self._last.pop(vehicle_id, None)
                self._prior.pop(vehicle_id, None)
