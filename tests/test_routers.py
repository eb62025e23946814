import time

import pytest
from starlette.websockets import WebSocketDisconnect

from models.account import UserRole
from services.location_pipeline import location_throttler
from services.tracking_identity import generate_tracking_id


@pytest.fixture
def admin(make_account):
    return make_account("admin@example.com", UserRole.ADMIN)


@pytest.fixture
def driver(make_account):
    return make_account("driver@example.com", UserRole.DRIVER)


@pytest.fixture
def customer(make_account):
    return make_account("customer@example.com", UserRole.CUSTOMER)


@pytest.fixture
def vehicle_id(client, admin):
    _, headers, _ = admin
    response = client.post("/api/vehicles", headers=headers, json={
        "name": "Tata Ace", "model": "Gold", "capacity": "750 kg", "pricePerKm": 18.5,
        "specifications": {"fuelType": "Diesel", "maxWeight": "750 kg", "dimensions": "2.2 x 1.5 m"},
    })
    assert response.status_code == 201
    return response.json()["id"]


class TestRoot:
    def test_root_and_health(self, client, monkeypatch):
        monkeypatch.setattr("main.verify_db_connection", lambda: True)
        assert client.get("/").json()["message"] == "LogiTrack API"
        assert client.get("/health").json()["status"] == "healthy"


class TestAuth:
    def test_register_and_sign_in(self, client):
        response = client.post("/api/auth/register", json={
            "email": "New.Customer@Example.com", "password": "secret123", "name": "New Customer",
        })
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "customer"

        response = client.post("/api/auth/signin", json={"email": "new.customer@example.com", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["email"] == "new.customer@example.com"

    def test_wrong_password(self, client, customer):
        response = client.post("/api/auth/signin", json={"email": "customer@example.com", "password": "wrong123"})
        assert response.status_code == 401

    def test_duplicate_email(self, client, customer):
        response = client.post("/api/auth/register", json={
            "email": "customer@example.com", "password": "secret123", "name": "Again",
        })
        assert response.status_code == 400

    def test_only_admin_creates_drivers(self, client, admin, customer):
        body = {"email": "d2@example.com", "password": "secret123", "name": "Driver Two", "role": "driver"}
        assert client.post("/api/auth/users", headers=customer[1], json=body).status_code == 403

        response = client.post("/api/auth/users", headers=admin[1], json=body)
        assert response.status_code == 201
        drivers = client.get("/api/auth/users?role=driver", headers=admin[1]).json()
        assert [d["email"] for d in drivers] == ["d2@example.com"]

    def test_missing_token(self, client):
        assert client.get("/api/auth/me").status_code in (401, 403)


class TestVehicles:
    def test_assign_and_bookable(self, client, admin, driver, vehicle_id):
        driver_uid = driver[0]
        assert client.get("/api/vehicles/bookable", headers=admin[1]).json() == []

        response = client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver_uid})
        assert response.status_code == 200
        assert response.json()["driverId"] == driver_uid

        bookable = client.get("/api/vehicles/bookable", headers=driver[1]).json()
        assert [v["id"] for v in bookable] == [vehicle_id]
        assert client.get("/api/auth/me", headers=driver[1]).json()["assignedVehicleId"] == vehicle_id

    def test_assign_errors_map_to_status_codes(self, client, admin, customer, vehicle_id):
        response = client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": customer[0]})
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidRole"

        response = client.put("/api/vehicles/ghost/driver", headers=admin[1], json={"driverId": customer[0]})
        assert response.status_code == 404

    def test_non_admin_cannot_edit(self, client, customer, vehicle_id):
        assert client.put(f"/api/vehicles/{vehicle_id}", headers=customer[1], json={"name": "X"}).status_code == 403

    def test_update_vehicle(self, client, admin, vehicle_id):
        response = client.put(f"/api/vehicles/{vehicle_id}", headers=admin[1], json={"pricePerKm": 22})
        assert response.json()["pricePerKm"] == 22
        assert response.json()["name"] == "Tata Ace"

    def test_delete_removes_location_and_tracking_id(self, client, store, admin, driver, vehicle_id):
        client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver[0]})
        client.post("/api/location/update", headers=driver[1], json={"lat": 13.08, "lng": 80.27})
        assert store.get(f"vehicleTrackingIds/{vehicle_id}") is not None

        assert client.delete(f"/api/vehicles/{vehicle_id}", headers=admin[1]).status_code == 200
        assert store.get(f"vehicles/{vehicle_id}") is None
        assert store.get(f"vehicleLocations/{vehicle_id}") is None
        assert store.get(f"vehicleTrackingIds/{vehicle_id}") is None
        assert "assignedVehicleId" not in store.get(f"users/{driver[0]}")

    def test_consistency_endpoint(self, client, store, admin, vehicle_id):
        store.update(f"vehicles/{vehicle_id}", {"driverId": "ghost"})
        report = client.get("/api/vehicles/consistency?repair=true", headers=admin[1]).json()
        assert report["consistent"] is False
        assert report["repaired"] is True
        assert "driverId" not in store.get(f"vehicles/{vehicle_id}")


class TestLocation:
    def test_driver_update_is_throttled(self, client, admin, driver, vehicle_id):
        client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver[0]})

        first = client.post("/api/location/update", headers=driver[1], json={"lat": 13.08, "lng": 80.27, "accuracy": 8})
        assert first.json() == {"updated": True, "vehicleId": vehicle_id, "trackingId": generate_tracking_id(vehicle_id)}

        second = client.post("/api/location/update", headers=driver[1], json={"lat": 13.5, "lng": 80.27})
        assert second.json()["updated"] is False

        forced = client.post("/api/location/update", headers=driver[1], json={"lat": 13.5, "lng": 80.27, "forceUpdate": True})
        assert forced.json()["updated"] is False

        latest = client.get(f"/api/location/{vehicle_id}", headers=admin[1]).json()
        assert latest["location"]["lat"] == 13.08

    def test_device_clock_is_not_trusted(self, client, store, admin, driver, vehicle_id):
        client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver[0]})
        before = int(time.time() * 1000)

        ahead = client.post("/api/location/update", headers=driver[1], json={
            "lat": 13.08, "lng": 80.27, "timestamp": before + 3_600_000,
        })
        assert ahead.json()["updated"] is True
        stamped = store.get(f"vehicleLocations/{vehicle_id}")["timestamp"]
        assert before <= stamped <= int(time.time() * 1000)

        # Later readings are gated against the server stamp, not the device clock
        assert location_throttler.last_admitted(vehicle_id).timestamp == stamped

    def test_old_device_timestamp_cannot_rewind_record(self, client, store, admin, vehicle_id):
        client.post("/api/location/update", headers=admin[1], json={"vehicleId": vehicle_id, "lat": 13.08, "lng": 80.27})
        first = store.get(f"vehicleLocations/{vehicle_id}")["timestamp"]

        client.post("/api/location/update", headers=admin[1], json={
            "vehicleId": vehicle_id, "lat": 13.5, "lng": 80.27, "timestamp": 1, "forceUpdate": True,
        })
        assert store.get(f"vehicleLocations/{vehicle_id}")["timestamp"] >= first

    def test_admin_update_for_unknown_vehicle(self, client, store, admin):
        response = client.post("/api/location/update", headers=admin[1], json={"vehicleId": "no-such-vehicle", "lat": 13.08, "lng": 80.27})
        assert response.status_code == 404
        assert store.get("vehicleTrackingIds/no-such-vehicle") is None
        assert store.get("vehicleLocations/no-such-vehicle") is None

    def test_unassigned_driver_cannot_publish(self, client, driver):
        response = client.post("/api/location/update", headers=driver[1], json={"lat": 13.08, "lng": 80.27})
        assert response.status_code == 400

    def test_customer_cannot_publish(self, client, customer):
        response = client.post("/api/location/update", headers=customer[1], json={"lat": 13.08, "lng": 80.27})
        assert response.status_code == 403

    def test_public_tracking_lookup(self, client, admin, vehicle_id):
        tracking_id = client.get(f"/api/location/{vehicle_id}/tracking-id", headers=admin[1]).json()["trackingId"]

        response = client.get(f"/api/location/track/{tracking_id.lower()}")
        assert response.status_code == 200
        assert response.json()["vehicleId"] == vehicle_id
        assert response.json()["error"] == "No location data available"

        assert client.get("/api/location/track/NOPE0000").status_code == 404

    def test_map_socket_streams_updates(self, client, admin, vehicle_id):
        token = admin[2]
        with client.websocket_connect(f"/api/location/ws/{vehicle_id}?token={token}") as ws:
            assert ws.receive_json()["error"] == "No location data available"

            client.post("/api/location/update", headers=admin[1], json={"vehicleId": vehicle_id, "lat": 13.08, "lng": 80.27})
            state = ws.receive_json()
            assert state["location"]["lat"] == 13.08
            assert state["location"]["updatedBy"] == admin[0]

    def test_map_socket_rejects_bad_token(self, client, vehicle_id):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/location/ws/{vehicle_id}?token=garbage") as ws:
                ws.receive_json()

    def test_socket_token_check_releases_its_session(self, client, admin, vehicle_id, session_factory, monkeypatch):
        import routers.location as location_router
        events = []

        def recording_get_db():
            db = session_factory()
            events.append("open")
            try:
                yield db
            finally:
                db.close()
                events.append("closed")

        monkeypatch.setattr(location_router, "get_db", recording_get_db)
        with client.websocket_connect(f"/api/location/ws/{vehicle_id}?token={admin[2]}") as ws:
            ws.receive_json()
            assert events == ["open", "closed"]

    def test_driver_socket_runs_session(self, client, store, admin, driver, vehicle_id):
        client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver[0]})

        with client.websocket_connect(f"/api/location/driver?token={driver[2]}") as ws:
            request = ws.receive_json()
            assert request["type"] == "request_position"
            assert request["options"]["enableHighAccuracy"] is True

            ws.send_json({
                "type": "position", "requestId": request["requestId"],
                "lat": 13.08, "lng": 80.27, "accuracy": 12,
            })
            kinds = []
            while "watch_position" not in kinds:
                kinds.append(ws.receive_json()["type"])

        record = store.get(f"vehicleLocations/{vehicle_id}")
        assert record["updatedBy"] == driver[0]
        assert record["source"] == "gps"

    def test_driver_socket_requires_driver(self, client, customer):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/location/driver?token={customer[2]}") as ws:
                ws.receive_json()


class TestBookings:
    @pytest.fixture
    def booking(self, client, admin, driver, customer, vehicle_id):
        client.put(f"/api/vehicles/{vehicle_id}/driver", headers=admin[1], json={"driverId": driver[0]})
        response = client.post("/api/bookings", headers=customer[1], json={
            "vehicleId": vehicle_id,
            "pickupAddress": "T. Nagar, Chennai",
            "destinationAddress": "Auroville",
            "pickupLat": 13.04, "pickupLng": 80.23,
            "destinationLat": 12.0, "destinationLng": 79.81,
        })
        assert response.status_code == 201
        return response.json()

    def test_booking_priced_from_straight_line(self, booking):
        assert booking["distance"] > 100
        assert booking["amount"] == round(booking["distance"] * 18.5, 2)
        assert booking["estimatedTime"]

    def test_full_lifecycle(self, client, store, admin, driver, customer, vehicle_id, booking):
        booking_id = booking["id"]
        assert store.get(f"vehicles/{vehicle_id}")["available"] is False

        early = client.put(f"/api/bookings/{booking_id}/status", headers=driver[1], json={"status": "in_progress"})
        assert early.status_code == 409

        paid = client.post(f"/api/bookings/{booking_id}/payment", headers=customer[1], json={
            "status": "success", "paymentId": "pay_1", "orderId": "order_1",
        }).json()
        assert (paid["status"], paid["paymentStatus"]) == ("pending", "paid")

        for status in ("in_progress", "completed"):
            response = client.put(f"/api/bookings/{booking_id}/status", headers=driver[1], json={"status": status})
            assert response.status_code == 200

        assert store.get(f"vehicles/{vehicle_id}")["available"] is True
        assert [b["id"] for b in client.get("/api/bookings/mine", headers=driver[1]).json()] == [booking_id]
        assert [b["id"] for b in client.get("/api/bookings/mine", headers=customer[1]).json()] == [booking_id]

    def test_strangers_cannot_read_booking(self, client, make_account, booking):
        _, headers, _ = make_account("other@example.com")
        assert client.get(f"/api/bookings/{booking['id']}", headers=headers).status_code == 403

    def test_convert_to_shipment(self, client, store, admin, booking):
        response = client.post(f"/api/bookings/{booking['id']}/shipment", headers=admin[1])
        shipment_id = response.json()["shipmentId"]
        assert store.get(f"shipments/{shipment_id}")["status"] == "pending"
        assert client.get(f"/api/bookings/{booking['id']}", headers=admin[1]).json()["status"] == "converted"

    def test_quote_without_road_routing(self, client, customer, vehicle_id):
        response = client.post("/api/bookings/quote", headers=customer[1], json={
            "vehicleId": vehicle_id,
            "pickupLat": 13.04, "pickupLng": 80.23,
            "destinationLat": 12.0, "destinationLng": 79.81,
            "useRoadDistance": False,
        })
        quote = response.json()
        assert quote["isRoadDistance"] is False
        assert quote["amount"] > 0


class TestMaps:
    def test_token_required(self, client):
        assert client.get("/api/maps/validate-mappls").status_code == 400
