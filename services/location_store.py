"""
Latest-location records, one per vehicle, at vehicleLocations/{vehicleId}.
Records are overwritten on every admitted update; no history is kept.
"""
from services.realtime_store import RealtimeStore
from typing import Callable, Dict, Optional

LOCATIONS_PATH = "vehicleLocations"


def build_location_record(
    vehicle_id: str,
    tracking_id: str,
    lat: float,
    lng: float,
    timestamp: int,
    updated_by: str,
    source: str = "gps",
    accuracy: Optional[float] = None
) -> dict:
    record = {
        "vehicleId": vehicle_id,
        "trackingId": tracking_id,
        "lat": lat,
        "lng": lng,
        "timestamp": timestamp,
        "updatedBy": updated_by,
        "source": source,
    }
    if accuracy is not None:
        record["accuracy"] = accuracy
    return record


class LocationStore:
    def __init__(self, store: RealtimeStore):
        self.store = store

    def write(self, record: dict):
        self.store.set(f"{LOCATIONS_PATH}/{record['vehicleId']}", record)

    def get(self, vehicle_id: str) -> Optional[dict]:
        return self.store.get(f"{LOCATIONS_PATH}/{vehicle_id}")

    def all(self) -> Dict[str, dict]:
        return self.store.get(LOCATIONS_PATH) or {}

    def get_by_tracking_id(self, tracking_id: str, resolver) -> Optional[dict]:
        vehicle_id = resolver.find_vehicle(tracking_id)
        if vehicle_id is None:
            return None
        return self.get(vehicle_id)

    def remove(self, vehicle_id: str):
        self.store.remove(f"{LOCATIONS_PATH}/{vehicle_id}")

    def subscribe(self, vehicle_id: str, on_change: Callable[[Optional[dict]], None]) -> Callable[[], None]:
        return self.store.subscribe(f"{LOCATIONS_PATH}/{vehicle_id}", on_change)
