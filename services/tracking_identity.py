"""
Stable short tracking codes for vehicles.

The code is a pure function of the vehicle ID, so two clients racing to
create the identity record always write the same trackingId.
"""
from services.realtime_store import RealtimeStore
from utils.errors import TrackingError, require_actor
from typing import Dict, Optional
import re
import time
import logging

logger = logging.getLogger(__name__)

TRACKING_IDS_PATH = "vehicleTrackingIds"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def rolling_hash(text: str) -> int:
    """32-bit signed h = h * 31 + c over the UTF-16 code units of text"""
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + code_unit)
    return h


def generate_tracking_id(vehicle_id: str) -> str:
    short_id = re.sub(r"[^a-zA-Z0-9]", "", vehicle_id)[:4].upper()
    digits = str(abs(rolling_hash(vehicle_id)) % 10000).zfill(4)
    return f"{short_id}{digits}"


class TrackingIdentityResolver:
    def __init__(self, store: RealtimeStore):
        self.store = store

    def get_or_create(self, vehicle_id: str, actor_uid: str) -> str:
        """
        Existing trackingId for the vehicle, or a newly persisted one.
        On store failure the computed code is returned without persisting.
        """
        require_actor(actor_uid)
        path = f"{TRACKING_IDS_PATH}/{vehicle_id}"
        try:
            existing = self.store.get(path)
            if existing and existing.get("trackingId"):
                return existing["trackingId"]

            tracking_id = generate_tracking_id(vehicle_id)
            self.store.set(path, {
                "trackingId": tracking_id,
                "vehicleId": vehicle_id,
                "createdAt": int(time.time() * 1000),
                "createdBy": actor_uid,
            })
            logger.info(f"Created tracking ID for {vehicle_id}: {tracking_id}")
            return tracking_id
        except TrackingError as e:
            logger.error(f"Error resolving tracking ID for {vehicle_id}: {e}")
            return generate_tracking_id(vehicle_id)

    def get(self, vehicle_id: str) -> Optional[str]:
        """Persisted trackingId, without creating one"""
        try:
            record = self.store.get(f"{TRACKING_IDS_PATH}/{vehicle_id}")
        except TrackingError as e:
            logger.error(f"Error getting tracking ID for {vehicle_id}: {e}")
            return None
        return record.get("trackingId") if record else None

    def all(self) -> Dict[str, dict]:
        return self.store.get(TRACKING_IDS_PATH) or {}

    def find_vehicle(self, tracking_id: str) -> Optional[str]:
        for vehicle_id, record in self.all().items():
            if isinstance(record, dict) and record.get("trackingId") == tracking_id:
                return vehicle_id
        return None

    def remove(self, vehicle_id: str):
        self.store.remove(f"{TRACKING_IDS_PATH}/{vehicle_id}")
