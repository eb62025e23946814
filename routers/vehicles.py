"""
Vehicle fleet management. Admins create, edit and delete vehicles and
assign drivers; every signed-in user can browse the fleet.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from typing import List, Optional
from services.assignment_manager import AssignmentManager
from services.availability_coordinator import AvailabilityCoordinator
from services.consistency import ConsistencySweep
from services.location_store import LocationStore
from services.realtime_store import RealtimeStore, get_store
from services.tracking_identity import TrackingIdentityResolver
from utils.auth_dependency import AuthUser, get_current_user, get_current_admin
from utils.errors import NotFound
from utils.logger import DatabaseLogger
import time
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vehicles", tags=["Vehicles"])

class VehicleSpecifications(BaseModel):
    fuelType: str = ""
    maxWeight: str = ""
    dimensions: str = ""

class VehicleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    model: str = Field("", max_length=100)
    type: str = "truck"
    capacity: str = ""
    pricePerKm: float = Field(0, ge=0)
    available: bool = True
    imageUrl: str = ""
    specifications: VehicleSpecifications = VehicleSpecifications()
    driverId: Optional[str] = None

class VehicleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    model: Optional[str] = None
    type: Optional[str] = None
    capacity: Optional[str] = None
    pricePerKm: Optional[float] = Field(None, ge=0)
    available: Optional[bool] = None
    imageUrl: Optional[str] = None
    specifications: Optional[VehicleSpecifications] = None

class AssignDriverRequest(BaseModel):
    driverId: Optional[str] = None

def _with_id(vehicle_id: str, vehicle: dict) -> dict:
    return {**vehicle, "id": vehicle_id}

def _get_vehicle(store: RealtimeStore, vehicle_id: str) -> dict:
    vehicle = store.get(f"vehicles/{vehicle_id}")
    if not isinstance(vehicle, dict):
        raise NotFound(f"Vehicle not found: {vehicle_id}")
    return _with_id(vehicle_id, vehicle)

@router.get("", response_model=List[dict])
def list_vehicles(store: RealtimeStore = Depends(get_store), current_user: AuthUser = Depends(get_current_user)):
    vehicles = store.get("vehicles") or {}
    return [_with_id(vid, v) for vid, v in vehicles.items() if isinstance(v, dict)]

@router.get("/bookable", response_model=List[dict])
def list_bookable_vehicles(store: RealtimeStore = Depends(get_store), current_user: AuthUser = Depends(get_current_user)):
    """Vehicles a customer can book right now: available and driver-assigned"""
    vehicles = AvailabilityCoordinator(store).bookable_vehicles()
    return [_with_id(vid, v) for vid, v in vehicles.items()]

@router.get("/consistency")
def check_consistency(
    repair: bool = False,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    """Report (and optionally repair) torn vehicle-driver links"""
    return ConsistencySweep(store).run(repair=repair, actor_uid=current_user.uid).to_dict()

@router.get("/{vehicle_id}")
def get_vehicle(vehicle_id: str, store: RealtimeStore = Depends(get_store), current_user: AuthUser = Depends(get_current_user)):
    return _get_vehicle(store, vehicle_id)

@router.post("", status_code=status.HTTP_201_CREATED)
def create_vehicle(
    request: VehicleRequest,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    vehicle_id = store.push("vehicles")
    now = int(time.time() * 1000)
    vehicle = request.dict(exclude={"driverId"})
    vehicle.update({"createdAt": now, "updatedAt": now})
    store.set(f"vehicles/{vehicle_id}", vehicle)
    logger.info(f"Vehicle created: {vehicle_id} by {current_user.uid}")

    if request.driverId:
        AssignmentManager(store).assign(vehicle_id, request.driverId, current_user.uid)

    DatabaseLogger.log_user_activity(
        user_id=current_user.uid,
        action="create_vehicle",
        description=f"Vehicle {request.name}",
        entity_type="vehicle",
        entity_id=vehicle_id
    )
    return _get_vehicle(store, vehicle_id)

@router.put("/{vehicle_id}")
def update_vehicle(
    vehicle_id: str,
    request: VehicleUpdateRequest,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    """Plain field edits, last write wins. Drivers change through /driver."""
    _get_vehicle(store, vehicle_id)
    updates = request.dict(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    updates["updatedAt"] = int(time.time() * 1000)
    store.update(f"vehicles/{vehicle_id}", updates)
    return _get_vehicle(store, vehicle_id)

@router.put("/{vehicle_id}/driver")
def assign_driver(
    vehicle_id: str,
    request: AssignDriverRequest,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    vehicle = AssignmentManager(store).assign(vehicle_id, request.driverId or None, current_user.uid)
    return _with_id(vehicle_id, vehicle)

@router.delete("/{vehicle_id}")
def delete_vehicle(
    vehicle_id: str,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    """Remove the vehicle with its live location and tracking code"""
    vehicle = _get_vehicle(store, vehicle_id)
    if vehicle.get("driverId"):
        AssignmentManager(store).assign(vehicle_id, None, current_user.uid)

    store.remove(f"vehicles/{vehicle_id}")
    LocationStore(store).remove(vehicle_id)
    TrackingIdentityResolver(store).remove(vehicle_id)

    logger.info(f"Vehicle deleted: {vehicle_id} by {current_user.uid}")
    DatabaseLogger.log_user_activity(
        user_id=current_user.uid,
        action="delete_vehicle",
        description=f"Vehicle {vehicle.get('name', vehicle_id)} deleted",
        entity_type="vehicle",
        entity_id=vehicle_id
    )
    return {"message": "Vehicle deleted successfully"}
