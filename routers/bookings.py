"""
Customer bookings. Creating a booking takes the vehicle out of the bookable
pool; completing or cancelling it puts the vehicle back.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from typing import List, Optional
from models.account import UserRole
from services.booking_service import BookingService
from services.realtime_store import RealtimeStore, get_store
from utils.auth_dependency import AuthUser, get_current_user, get_current_admin
from utils.distance import estimate_route, format_eta
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])

class RouteRequest(BaseModel):
    pickupLat: float = Field(..., ge=-90, le=90)
    pickupLng: float = Field(..., ge=-180, le=180)
    destinationLat: float = Field(..., ge=-90, le=90)
    destinationLng: float = Field(..., ge=-180, le=180)

class QuoteRequest(RouteRequest):
    vehicleId: Optional[str] = None
    useRoadDistance: bool = True

class BookingRequest(RouteRequest):
    vehicleId: str = Field(..., min_length=1)
    pickupAddress: str = Field(..., min_length=1, max_length=500)
    destinationAddress: str = Field(..., min_length=1, max_length=500)
    distance: Optional[float] = Field(None, ge=0)
    estimatedTime: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)

class StatusRequest(BaseModel):
    status: str

class PaymentRequest(BaseModel):
    status: str = Field(..., pattern="^(success|failed|pending)$")
    paymentId: Optional[str] = None
    orderId: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)

def get_booking_service(store: RealtimeStore = Depends(get_store)) -> BookingService:
    return BookingService(store)

def _price(store: RealtimeStore, vehicle_id: Optional[str], distance_km: float) -> Optional[float]:
    if not vehicle_id:
        return None
    vehicle = store.get(f"vehicles/{vehicle_id}") or {}
    return round(distance_km * float(vehicle.get("pricePerKm", 0)), 2)

def _check_access(booking: dict, user: AuthUser):
    if user.role == UserRole.ADMIN.value:
        return
    if user.uid in (booking.get("userId"), booking.get("driverId")):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

@router.post("/quote")
def quote(request: QuoteRequest, store: RealtimeStore = Depends(get_store), current_user: AuthUser = Depends(get_current_user)):
    """Distance, ETA and price for a trip before booking it"""
    distance_km, eta_minutes, is_road = estimate_route(
        request.pickupLat, request.pickupLng,
        request.destinationLat, request.destinationLng,
        use_road_distance=request.useRoadDistance
    )
    return {
        "distance": round(distance_km, 2),
        "etaMinutes": eta_minutes,
        "estimatedTime": format_eta(eta_minutes),
        "isRoadDistance": is_road,
        "amount": _price(store, request.vehicleId, distance_km),
    }

@router.post("", status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    store: RealtimeStore = Depends(get_store),
    service: BookingService = Depends(get_booking_service),
    current_user: AuthUser = Depends(get_current_user)
):
    if current_user.role == UserRole.DRIVER.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Drivers cannot create bookings")

    data = request.dict()
    if request.distance is None:
        distance_km, eta_minutes, _ = estimate_route(
            request.pickupLat, request.pickupLng,
            request.destinationLat, request.destinationLng,
            use_road_distance=False
        )
        data["distance"] = round(distance_km, 2)
        data["estimatedTime"] = request.estimatedTime or format_eta(eta_minutes)
    if request.amount is None:
        data["amount"] = _price(store, request.vehicleId, data["distance"])
    data["estimatedTime"] = data.get("estimatedTime") or ""

    return service.create_booking(data, current_user.uid)

@router.get("", response_model=List[dict])
def list_bookings(service: BookingService = Depends(get_booking_service), current_user: AuthUser = Depends(get_current_admin)):
    return service.list_all()

@router.get("/mine", response_model=List[dict])
def my_bookings(service: BookingService = Depends(get_booking_service), current_user: AuthUser = Depends(get_current_user)):
    """Customers see what they booked; drivers see the deliveries assigned to them"""
    if current_user.role == UserRole.DRIVER.value:
        return service.list_for_driver(current_user.uid)
    return service.list_for_user(current_user.uid)

@router.get("/{booking_id}")
def get_booking(booking_id: str, service: BookingService = Depends(get_booking_service), current_user: AuthUser = Depends(get_current_user)):
    booking = service.get(booking_id)
    _check_access(booking, current_user)
    return booking

@router.put("/{booking_id}/status")
def update_status(
    booking_id: str,
    request: StatusRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthUser = Depends(get_current_user)
):
    return service.update_status(booking_id, request.status, current_user.uid, current_user.role)

@router.post("/{booking_id}/payment")
def record_payment(
    booking_id: str,
    request: PaymentRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthUser = Depends(get_current_user)
):
    _check_access(service.get(booking_id), current_user)
    return service.record_payment(
        booking_id, request.status, request.paymentId, request.orderId, request.amount, current_user.uid
    )

@router.post("/{booking_id}/shipment")
def convert_to_shipment(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthUser = Depends(get_current_admin)
):
    shipment_id = service.convert_to_shipment(booking_id, current_user.uid)
    return {"shipmentId": shipment_id, "message": "Booking converted to shipment"}
