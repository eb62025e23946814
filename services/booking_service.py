"""
Booking lifecycle:
    pending_payment -> pending (payment succeeded)
    pending -> in_progress | cancelled          (driver)
    in_progress -> completed | cancelled        (driver)
    any -> converted                            (booking migrated to a shipment)
"""
from services.realtime_store import RealtimeStore
from services.availability_coordinator import AvailabilityCoordinator
from utils.errors import InvalidTransition, NotFound, PermissionDenied, require_actor
from utils.logger import DatabaseLogger
from typing import List, Optional
import time
import logging

logger = logging.getLogger(__name__)

BOOKING_STATUSES = ("pending_payment", "pending", "in_progress", "completed", "cancelled", "converted")
PAYMENT_STATUSES = ("pending", "paid", "failed")

DRIVER_TRANSITIONS = {
    "pending": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def next_driver_statuses(status: str) -> tuple:
    return DRIVER_TRANSITIONS.get(status, ())


class BookingService:
    def __init__(self, store: RealtimeStore):
        self.store = store
        self.availability = AvailabilityCoordinator(store)

    def create_booking(self, data: dict, actor_uid: str) -> dict:
        require_actor(actor_uid)
        vehicle_id = data["vehicleId"]
        vehicle = self.store.get(f"vehicles/{vehicle_id}")
        if not vehicle:
            raise NotFound(f"Vehicle not found: {vehicle_id}")

        booking_id = self.store.push("bookings")
        now = _now_ms()
        booking = {
            "id": booking_id,
            "shortId": booking_id[-6:],
            "userId": data.get("userId") or actor_uid,
            "vehicleId": vehicle_id,
            "driverId": data.get("driverId") or vehicle.get("driverId") or "",
            "pickupAddress": data.get("pickupAddress", ""),
            "destinationAddress": data.get("destinationAddress", ""),
            "pickupLat": data.get("pickupLat"),
            "pickupLng": data.get("pickupLng"),
            "destinationLat": data.get("destinationLat"),
            "destinationLng": data.get("destinationLng"),
            "distance": data.get("distance", 0),
            "estimatedTime": data.get("estimatedTime", ""),
            "amount": data.get("amount", 0),
            "status": "pending_payment",
            "paymentStatus": "pending",
            "createdAt": now,
            "updatedAt": now,
        }
        self.store.set(f"bookings/{booking_id}", booking)
        self.availability.on_booking_created(booking)

        logger.info(f"Booking created: {booking_id} (Short: {booking['shortId']})")
        DatabaseLogger.log_user_activity(
            user_id=actor_uid,
            action="create_booking",
            description=f"Booking {booking['shortId']} for vehicle {vehicle_id}",
            entity_type="booking",
            entity_id=booking_id
        )
        return booking

    def get(self, booking_id: str) -> dict:
        booking = self.store.get(f"bookings/{booking_id}")
        if not booking:
            raise NotFound("Booking not found")
        return {**booking, "id": booking_id}

    def update_booking(self, booking_id: str, updates: dict, actor_uid: str) -> dict:
        """Merge updates; completed/cancelled release the vehicle"""
        require_actor(actor_uid)
        current = self.get(booking_id)
        self.store.update(f"bookings/{booking_id}", {**updates, "updatedAt": _now_ms()})

        new_status = updates.get("status")
        if new_status and new_status != current.get("status"):
            self.availability.on_status_changed(current, new_status)
            DatabaseLogger.log_user_activity(
                user_id=actor_uid,
                action="booking_status",
                description=f"{current.get('status')} -> {new_status}",
                entity_type="booking",
                entity_id=booking_id
            )
        return self.get(booking_id)

    def update_status(self, booking_id: str, new_status: str, actor_uid: str, actor_role: str) -> dict:
        require_actor(actor_uid)
        if new_status not in BOOKING_STATUSES:
            raise InvalidTransition(f"Unknown booking status: {new_status}")

        booking = self.get(booking_id)
        if actor_role == "driver":
            if booking.get("driverId") != actor_uid:
                raise PermissionDenied("Booking is not assigned to this driver")
            if new_status not in next_driver_statuses(booking.get("status")):
                raise InvalidTransition(
                    f"Driver cannot move booking from {booking.get('status')} to {new_status}"
                )
        elif actor_role != "admin":
            raise PermissionDenied("Only drivers and admins can change booking status")

        return self.update_booking(booking_id, {"status": new_status}, actor_uid)

    def record_payment(self, booking_id: str, status: str, payment_id: Optional[str],
                       order_id: Optional[str], amount: Optional[float], actor_uid: str) -> dict:
        """Store the payment result and move a paid booking out of pending_payment"""
        require_actor(actor_uid)
        booking = self.get(booking_id)

        key = self.store.push(f"payments/{actor_uid}")
        self.store.set(f"payments/{actor_uid}/{key}", {
            "id": key,
            "orderId": order_id or "",
            "paymentId": payment_id or "",
            "amount": amount if amount is not None else booking.get("amount", 0),
            "currency": "INR",
            "status": status,
            "timestamp": _now_ms(),
            "userId": actor_uid,
            "bookingId": booking_id,
        })

        updates = {"paymentStatus": {"success": "paid", "failed": "failed"}.get(status, "pending")}
        if status == "success":
            if payment_id:
                updates["paymentId"] = payment_id
            if booking.get("status") == "pending_payment":
                updates["status"] = "pending"
        return self.update_booking(booking_id, updates, actor_uid)

    def convert_to_shipment(self, booking_id: str, actor_uid: str) -> str:
        require_actor(actor_uid)
        booking = self.get(booking_id)

        shipment_id = self.store.push("shipments")
        now = _now_ms()
        self.store.set(f"shipments/{shipment_id}", {
            "id": shipment_id,
            "customerId": booking.get("userId"),
            "vehicleId": booking.get("vehicleId"),
            "driverId": booking.get("driverId") or "",
            "pickupLocation": {
                "address": booking.get("pickupAddress"),
                "lat": booking.get("pickupLat"),
                "lng": booking.get("pickupLng"),
            },
            "destination": {
                "address": booking.get("destinationAddress"),
                "lat": booking.get("destinationLat"),
                "lng": booking.get("destinationLng"),
            },
            "distance": booking.get("distance", 0),
            "estimatedTime": booking.get("estimatedTime", ""),
            "totalCost": booking.get("amount", 0),
            "status": "pending",
            "createdAt": now,
            "updatedAt": now,
            "trackingNumber": f"TRK{str(now)[-8:]}",
            "items": [],
        })
        self.update_booking(booking_id, {"status": "converted", "shipmentId": shipment_id}, actor_uid)
        return shipment_id

    def _list(self, predicate) -> List[dict]:
        bookings = self.store.get("bookings") or {}
        result = [
            {**booking, "id": booking_id}
            for booking_id, booking in bookings.items()
            if isinstance(booking, dict) and predicate(booking)
        ]
        return sorted(result, key=lambda b: b.get("createdAt", 0), reverse=True)

    def list_for_user(self, user_id: str) -> List[dict]:
        return self._list(lambda b: b.get("userId") == user_id)

    def list_for_driver(self, driver_id: str) -> List[dict]:
        return self._list(lambda b: b.get("driverId") == driver_id)

    def list_all(self) -> List[dict]:
        return self._list(lambda b: True)
