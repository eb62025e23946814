"""
Real-time location tracking endpoints for live vehicle tracking
Drivers publish positions (HTTP or the driver socket); map views follow one
vehicle over the map socket.
"""
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, Query, status
from pydantic import BaseModel, Field
from typing import Dict, Optional
from database import get_db
from models.account import UserRole
from services.device_geolocation import SocketGeolocationProvider
from services.geolocation_session import DriverLocationSession, now_ms, resolve_assigned_vehicle
from services.live_map import LiveMapSubscriber, parse_location
from services.location_pipeline import LocationPipeline, location_throttler
from services.location_throttle import LocationReading, SOURCE_GPS
from services.realtime_store import RealtimeStore, get_store
from utils.auth_dependency import AuthUser, get_current_user, get_current_admin, get_current_admin_or_driver, resolve_token
from utils.errors import NotFound
import asyncio
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/location", tags=["Location Tracking"])

class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="Latitude (-90 to 90)")
    lng: float = Field(..., ge=-180, le=180, description="Longitude (-180 to 180)")
    vehicleId: Optional[str] = Field(None, description="Required for admins; drivers default to their vehicle")
    accuracy: Optional[float] = Field(None, ge=0, description="GPS accuracy in meters")
    source: str = Field(SOURCE_GPS, pattern="^(gps|ip)$")

class LocationUpdateResponse(BaseModel):
    updated: bool
    vehicleId: str
    trackingId: Optional[str] = None

def get_location_pipeline(store: RealtimeStore = Depends(get_store)) -> LocationPipeline:
    return LocationPipeline(store, location_throttler)

def _vehicle_for(user: AuthUser, store: RealtimeStore, requested: Optional[str]) -> str:
    if user.role == UserRole.ADMIN.value:
        if not requested:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="vehicleId is required")
        if not store.exists(f"vehicles/{requested}"):
            raise NotFound(f"Vehicle not found: {requested}")
        return requested

    assigned = resolve_assigned_vehicle(store, user.uid)
    if not assigned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No vehicle assigned to this driver")
    if requested and requested != assigned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vehicle is not assigned to this driver")
    return assigned

@router.post("/update", response_model=LocationUpdateResponse)
def update_location(
    location: LocationUpdate,
    pipeline: LocationPipeline = Depends(get_location_pipeline),
    current_user: AuthUser = Depends(get_current_admin_or_driver)
):
    """
    Publish a position for a vehicle. Readings are throttled per vehicle;
    updated=false means the reading was too soon or too close to the last one.
    Readings are stamped with the server clock on arrival.    """
    vehicle_id = _vehicle_for(current_user, pipeline.store, location.vehicleId)
    reading = LocationReading(
        lat=location.lat,
        lng=location.lng,
        timestamp=now_ms(),
        source=location.source,
        accuracy=location.accuracy,
    )
    result = pipeline.publish(vehicle_id, reading, current_user.uid)
    return LocationUpdateResponse(updated=result.updated, vehicleId=vehicle_id, trackingId=result.tracking_id)

@router.get("/all")
def get_all_locations(pipeline: LocationPipeline = Depends(get_location_pipeline), current_user: AuthUser = Depends(get_current_user)):
    return pipeline.locations.all()

@router.get("/tracking-ids")
def get_tracking_ids(pipeline: LocationPipeline = Depends(get_location_pipeline), current_user: AuthUser = Depends(get_current_admin)):
    return pipeline.identities.all()

@router.get("/track/{tracking_id}")
def track_by_tracking_id(tracking_id: str, pipeline: LocationPipeline = Depends(get_location_pipeline)):
    """Public lookup used by the shareable tracking page"""
    tracking_id = tracking_id.strip().upper()
    vehicle_id = pipeline.identities.find_vehicle(tracking_id)
    if vehicle_id is None:
        raise NotFound("Invalid tracking ID")

    vehicle = pipeline.store.get(f"vehicles/{vehicle_id}") or {}
    state = parse_location(pipeline.locations.get(vehicle_id), vehicle_id)
    return {
        "trackingId": tracking_id,
        "vehicleId": vehicle_id,
        "vehicleName": vehicle.get("name", ""),
        **state.to_dict(),
    }

@router.get("/{vehicle_id}/tracking-id")
def get_tracking_id(
    vehicle_id: str,
    pipeline: LocationPipeline = Depends(get_location_pipeline),
    current_user: AuthUser = Depends(get_current_user)
):
    if not pipeline.store.exists(f"vehicles/{vehicle_id}"):
        raise NotFound(f"Vehicle not found: {vehicle_id}")
    return {"vehicleId": vehicle_id, "trackingId": pipeline.identities.get_or_create(vehicle_id, current_user.uid)}

@router.get("/{vehicle_id}")
def get_latest_location(
    vehicle_id: str,
    pipeline: LocationPipeline = Depends(get_location_pipeline),
    current_user: AuthUser = Depends(get_current_user)
):
    return parse_location(pipeline.locations.get(vehicle_id), vehicle_id).to_dict()

def _authenticate_socket(token: str, store: RealtimeStore) -> Optional[AuthUser]:
    """Token check for sockets; the DB session is held only for the lookup"""
    sessions = get_db()
    db = next(sessions)
    try:
        return resolve_token(token, db, store)
    finally:
        sessions.close()

# Map view socket

@router.websocket("/ws/{vehicle_id}")
async def vehicle_location_socket(
    websocket: WebSocket,
    vehicle_id: str,
    token: str = Query(...),
    store: RealtimeStore = Depends(get_store)
):
    """
    Streams {"location", "loading", "error"} states for one vehicle: the
    current value on connect, then one message per change.
    """
    if _authenticate_socket(token, store) is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Store callbacks may fire on worker threads
    subscriber = LiveMapSubscriber(
        store, vehicle_id,
        on_change=lambda state: loop.call_soon_threadsafe(queue.put_nowait, state.to_dict())
    )
    subscriber.start()

    async def pump():
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.ensure_future(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Map view for {vehicle_id} disconnected")
    finally:
        subscriber.stop()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)

# Driver socket

active_sessions: Dict[str, DriverLocationSession] = {}

@router.websocket("/driver")
async def driver_location_socket(
    websocket: WebSocket,
    token: str = Query(...),
    store: RealtimeStore = Depends(get_store)
):
    """
    Runs the location sharing session for a signed-in driver. The server asks
    the device for positions over this socket and reports GPS status changes
    as {"type": "status", ...} messages.
    """
    user = _authenticate_socket(token, store)
    if user is None or user.role != UserRole.DRIVER.value:
        await websocket.close(code=1008, reason="Driver authentication required")
        return

    await websocket.accept()
    provider = SocketGeolocationProvider(send=websocket.send_json)
    session = DriverLocationSession(user.uid, provider, LocationPipeline(store, location_throttler))

    async def report(gps_status):
        try:
            await websocket.send_json({"type": "status", **session.snapshot()})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Status report to driver {user.uid} not sent: {e}")

    session.on_status(report)

    previous = active_sessions.pop(user.uid, None)
    if previous is not None:
        await previous.stop()
    active_sessions[user.uid] = session

    async def run_session():
        if not await session.start():
            await websocket.send_json({"type": "status", "error": "No vehicle assigned", **session.snapshot()})

    runner = asyncio.ensure_future(run_session())
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except ValueError:
                logger.warning(f"Ignoring non-JSON message from driver {user.uid}")
                continue
            if isinstance(payload, dict):
                await provider.feed(payload)
    except WebSocketDisconnect:
        logger.info(f"Driver {user.uid} disconnected")
    finally:
        provider.close()
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)
        await session.stop()
        if active_sessions.get(user.uid) is session:
            active_sessions.pop(user.uid, None)
