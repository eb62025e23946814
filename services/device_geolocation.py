"""
Device geolocation interface and its implementation over the driver's
WebSocket.

The server asks the device for positions; the device answers with
"position" or "position_error" messages carrying W3C geolocation error codes.

Server -> device:
    {"type": "request_position", "requestId": 1, "options": {...}}
    {"type": "watch_position", "watchId": 1, "options": {...}}
    {"type": "clear_watch", "watchId": 1}
Device -> server:
    {"type": "position", "requestId" | "watchId": 1, "lat": .., "lng": .., "accuracy": .., "timestamp": ..}
    {"type": "position_error", "requestId" | "watchId": 1, "code": 1|2|3, "message": ".."}
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
import asyncio
import enum
import time
import logging

logger = logging.getLogger(__name__)


class PositionErrorCode(int, enum.Enum):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class PositionError(Exception):
    def __init__(self, code: PositionErrorCode, message: str = ""):
        super().__init__(message or code.name)
        self.code = code
        self.message = message or code.name


@dataclass
class Position:
    lat: float
    lng: float
    accuracy: float
    timestamp: int  # epoch milliseconds

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "Position":
        lat = message.get("lat", message.get("latitude"))
        lng = message.get("lng", message.get("longitude"))
        if lat is None or lng is None:
            raise ValueError("position message without coordinates")
        return cls(
            lat=float(lat),
            lng=float(lng),
            accuracy=float(message.get("accuracy", 0.0)),
            timestamp=int(message.get("timestamp") or time.time() * 1000),
        )


@dataclass
class PositionOptions:
    enable_high_accuracy: bool = True
    timeout_ms: int = 15000
    maximum_age_ms: int = 0
    distance_filter_m: Optional[float] = None

    def to_message(self) -> dict:
        options = {
            "enableHighAccuracy": self.enable_high_accuracy,
            "timeout": self.timeout_ms,
            "maximumAge": self.maximum_age_ms,
        }
        if self.distance_filter_m is not None:
            options["distanceFilter"] = self.distance_filter_m
        return options


PositionCallback = Callable[[Position], Any]
ErrorCallback = Callable[[PositionError], Any]


class GeolocationProvider(ABC):
    @abstractmethod
    async def get_current_position(self, options: PositionOptions) -> Position:
        """One-shot position. Raises PositionError."""

    @abstractmethod
    async def watch_position(self, on_update: PositionCallback, on_error: ErrorCallback, options: PositionOptions) -> int:
        """Start a continuous position stream and return its handle"""

    @abstractmethod
    async def clear_watch(self, handle: int) -> None:
        """Stop a stream started by watch_position"""


class SocketGeolocationProvider(GeolocationProvider):
    def __init__(self, send: Callable[[dict], Awaitable[None]]):
        self._send = send
        self._next_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._watches: Dict[int, Tuple[PositionCallback, ErrorCallback]] = {}

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def get_current_position(self, options: PositionOptions) -> Position:
        request_id = self._new_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({
                "type": "request_position",
                "requestId": request_id,
                "options": options.to_message(),
            })
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def watch_position(self, on_update: PositionCallback, on_error: ErrorCallback, options: PositionOptions) -> int:
        watch_id = self._new_id()
        self._watches[watch_id] = (on_update, on_error)
        await self._send({
            "type": "watch_position",
            "watchId": watch_id,
            "options": options.to_message(),
        })
        return watch_id

    async def clear_watch(self, handle: int) -> None:
        if self._watches.pop(handle, None) is None:
            return
        try:
            await self._send({"type": "clear_watch", "watchId": handle})
        except Exception as e:
            logger.debug(f"Could not send clear_watch for {handle}: {e}")

    async def feed(self, message: Dict[str, Any]) -> None:
        """Route a message from the device to the waiting request or watch"""
        kind = message.get("type")
        if kind not in ("position", "position_error"):
            return

        if kind == "position":
            try:
                outcome = Position.from_message(message)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed position message: {e}")
                return
        else:
            try:
                code = PositionErrorCode(int(message.get("code", PositionErrorCode.POSITION_UNAVAILABLE)))
            except ValueError:
                code = PositionErrorCode.POSITION_UNAVAILABLE
            outcome = PositionError(code, message.get("message", ""))

        request_id = message.get("requestId")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is not None and not future.done():
                if isinstance(outcome, PositionError):
                    future.set_exception(outcome)
                else:
                    future.set_result(outcome)
            return

        watch = self._watches.get(message.get("watchId"))
        if watch is None:
            return
        on_update, on_error = watch
        result = on_error(outcome) if isinstance(outcome, PositionError) else on_update(outcome)
        if asyncio.iscoroutine(result):
            await result

    def close(self):
        """Fail outstanding requests; the device is gone"""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(PositionError(PositionErrorCode.POSITION_UNAVAILABLE, "device disconnected"))
        self._pending.clear()
        self._watches.clear()
