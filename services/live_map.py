"""
Live map data feed and shared resource loading.

LiveMapSubscriber follows one vehicle's location record and reports either a
validated location or an error state. ResourceLoader loads a shared resource
(the map SDK) at most once and tells every waiting view how it went.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from services.location_store import LocationStore
from services.realtime_store import RealtimeStore
from utils.errors import StoreError
import asyncio
import enum
import time
import logging

logger = logging.getLogger(__name__)

NO_VEHICLE = "Vehicle ID is required"
NO_DATA = "No location data available"
INVALID_DATA = "Invalid location data structure"
LOAD_FAILED = "Failed to load location data"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class LiveMapState:
    location: Optional[dict] = None
    loading: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"location": self.location, "loading": self.loading, "error": self.error}


def parse_location(data: Any, vehicle_id: str) -> LiveMapState:
    if data is None:
        return LiveMapState(loading=False, error=NO_DATA)
    if not isinstance(data, dict) or not (_is_number(data.get("lat")) and _is_number(data.get("lng"))):
        return LiveMapState(loading=False, error=INVALID_DATA)
    return LiveMapState(
        location={
            "lat": data["lat"],
            "lng": data["lng"],
            "timestamp": data.get("timestamp") or int(time.time() * 1000),
            "vehicleId": data.get("vehicleId") or vehicle_id,
            "updatedBy": data.get("updatedBy") or "unknown",
            "trackingId": data.get("trackingId") or "",
        },
        loading=False,
    )


class LiveMapSubscriber:
    def __init__(self, store: RealtimeStore, vehicle_id: Optional[str], on_change: Callable[[LiveMapState], Any] = None):
        self.store = store
        self.vehicle_id = vehicle_id
        self.state = LiveMapState()
        self._on_change = on_change
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> LiveMapState:
        if not self.vehicle_id:
            self._emit(LiveMapState(loading=False, error=NO_VEHICLE))
            return self.state
        try:
            self._unsubscribe = LocationStore(self.store).subscribe(self.vehicle_id, self._on_value)
        except StoreError as e:
            logger.error(f"Error listening to location of {self.vehicle_id}: {e}")
            self._emit(LiveMapState(loading=False, error=LOAD_FAILED))
        return self.state

    def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_value(self, value: Any):
        self._emit(parse_location(value, self.vehicle_id))

    def _emit(self, state: LiveMapState):
        self.state = state
        if self._on_change is not None:
            self._on_change(state)


class LoadState(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ResourceLoader:
    """
    Loads a resource once. Callers arriving while a load is in flight wait
    for it instead of starting another; a failed load can be retried.
    """

    def __init__(self, name: str, load: Callable[[], Awaitable[Any]]):
        self.name = name
        self._load = load
        self.state = LoadState.UNLOADED
        self.value: Any = None
        self.error: Optional[str] = None
        self._subscribers: List[Callable[["ResourceLoader"], Any]] = []
        self._inflight: Optional[asyncio.Future] = None

    def subscribe(self, callback: Callable[["ResourceLoader"], Any]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _set_state(self, state: LoadState):
        self.state = state
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception as e:
                logger.error(f"{self.name} subscriber failed: {e}")

    async def ensure_loaded(self) -> Any:
        if self.state == LoadState.READY:
            return self.value
        if self._inflight is not None:
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.ensure_future(self._run())
        try:
            return await asyncio.shield(self._inflight)
        finally:
            self._inflight = None

    async def _run(self) -> Any:
        self.error = None
        self._set_state(LoadState.LOADING)
        try:
            value = await self._load()
        except Exception as e:
            logger.error(f"Failed to load {self.name}: {e}")
            self.error = str(e)
            self._set_state(LoadState.FAILED)
            raise
        self.value = value
        self._set_state(LoadState.READY)
        return value

    def reset(self):
        """Forget a failed or loaded resource so the next call loads again"""
        if self._inflight is None:
            self.value = None
            self.error = None
            self._set_state(LoadState.UNLOADED)

    def snapshot(self) -> dict:
        return {"name": self.name, "state": self.state.value, "error": self.error}
