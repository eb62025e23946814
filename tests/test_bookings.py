import pytest

from services.availability_coordinator import AvailabilityCoordinator
from services.booking_service import BookingService
from utils.errors import InvalidTransition, NotFound, PermissionDenied

BOOKING = {
    "vehicleId": "v1",
    "pickupAddress": "Anna Nagar, Chennai",
    "destinationAddress": "White Town, Pondicherry",
    "pickupLat": 13.085,
    "pickupLng": 80.21,
    "destinationLat": 11.934,
    "destinationLng": 79.836,
    "distance": 150.2,
    "estimatedTime": "3 hr 45 min",
    "amount": 3004.0,
}


@pytest.fixture
def service(store, seed):
    seed.vehicle("v1", driverId="d1")
    seed.vehicle("v2", driverId="d2", available=False)
    seed.vehicle("v3")
    seed.user("d1", role="driver", assignedVehicleId="v1")
    seed.user("d2", role="driver", assignedVehicleId="v2")
    seed.user("c1", role="customer")
    return BookingService(store)


def create(service, **overrides):
    return service.create_booking({**BOOKING, **overrides}, "c1")


class TestAvailability:
    def test_bookable_requires_available_and_driver(self, store, service):
        assert set(AvailabilityCoordinator(store).bookable_vehicles()) == {"v1"}

    def test_creating_booking_takes_vehicle_out_of_pool(self, store, service):
        booking = create(service)

        assert booking["status"] == "pending_payment"
        assert booking["paymentStatus"] == "pending"
        assert booking["shortId"] == booking["id"][-6:]
        assert booking["driverId"] == "d1"
        assert store.get("vehicles/v1")["available"] is False

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_status_releases_vehicle(self, store, service, status):
        booking = create(service)
        service.update_booking(booking["id"], {"status": status}, "admin")
        assert store.get("vehicles/v1")["available"] is True

    @pytest.mark.parametrize("status", ["pending", "in_progress", "converted"])
    def test_other_statuses_keep_vehicle(self, store, service, status):
        booking = create(service)
        service.update_booking(booking["id"], {"status": status}, "admin")
        assert store.get("vehicles/v1")["available"] is False

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_releasing_deleted_vehicle_leaves_it_deleted(self, store, service, status):
        booking = create(service)
        store.remove("vehicles/v1")

        service.update_booking(booking["id"], {"status": status}, "admin")

        assert store.get("vehicles/v1") is None
        assert "v1" not in (store.get("vehicles") or {})
        assert service.get(booking["id"])["status"] == status

    def test_unknown_vehicle(self, service):
        with pytest.raises(NotFound):
            create(service, vehicleId="ghost")


class TestDriverTransitions:
    def test_driver_walks_the_happy_path(self, store, service):
        booking = create(service)
        service.update_booking(booking["id"], {"status": "pending"}, "c1")

        service.update_status(booking["id"], "in_progress", "d1", "driver")
        updated = service.update_status(booking["id"], "completed", "d1", "driver")

        assert updated["status"] == "completed"
        assert store.get("vehicles/v1")["available"] is True

    def test_driver_cannot_skip_ahead(self, service):
        booking = create(service)
        service.update_booking(booking["id"], {"status": "pending"}, "c1")
        with pytest.raises(InvalidTransition):
            service.update_status(booking["id"], "completed", "d1", "driver")

    def test_driver_cannot_touch_unpaid_booking(self, service):
        booking = create(service)
        with pytest.raises(InvalidTransition):
            service.update_status(booking["id"], "in_progress", "d1", "driver")

    def test_other_driver_is_refused(self, service):
        booking = create(service)
        service.update_booking(booking["id"], {"status": "pending"}, "c1")
        with pytest.raises(PermissionDenied):
            service.update_status(booking["id"], "in_progress", "d2", "driver")

    def test_customer_cannot_change_status(self, service):
        booking = create(service)
        with pytest.raises(PermissionDenied):
            service.update_status(booking["id"], "cancelled", "c1", "customer")

    def test_admin_may_set_any_known_status(self, service):
        booking = create(service)
        assert service.update_status(booking["id"], "cancelled", "admin", "admin")["status"] == "cancelled"
        with pytest.raises(InvalidTransition):
            service.update_status(booking["id"], "teleported", "admin", "admin")


class TestPaymentsAndShipments:
    def test_successful_payment(self, store, service):
        booking = create(service)
        updated = service.record_payment(booking["id"], "success", "pay_123", "order_9", None, "c1")

        assert updated["paymentStatus"] == "paid"
        assert updated["status"] == "pending"
        assert updated["paymentId"] == "pay_123"
        payments = store.get("payments/c1")
        assert [p["bookingId"] for p in payments.values()] == [booking["id"]]

    def test_failed_payment_keeps_booking_unpaid(self, service):
        booking = create(service)
        updated = service.record_payment(booking["id"], "failed", None, None, None, "c1")
        assert updated["paymentStatus"] == "failed"
        assert updated["status"] == "pending_payment"

    def test_convert_to_shipment(self, store, service):
        booking = create(service)
        shipment_id = service.convert_to_shipment(booking["id"], "admin")

        shipment = store.get(f"shipments/{shipment_id}")
        assert shipment["customerId"] == "c1"
        assert shipment["pickupLocation"] == {"address": BOOKING["pickupAddress"], "lat": 13.085, "lng": 80.21}
        assert shipment["totalCost"] == 3004.0
        assert shipment["trackingNumber"].startswith("TRK") and len(shipment["trackingNumber"]) == 11

        converted = service.get(booking["id"])
        assert converted["status"] == "converted"
        assert converted["shipmentId"] == shipment_id

    def test_listings(self, service):
        first = create(service)
        second = create(service, vehicleId="v3")

        assert {b["id"] for b in service.list_for_user("c1")} == {first["id"], second["id"]}
        assert [b["id"] for b in service.list_for_driver("d1")] == [first["id"]]
        assert len(service.list_all()) == 2

    def test_missing_booking(self, service):
        with pytest.raises(NotFound):
            service.get("nope")
