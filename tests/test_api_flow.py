from __future__ import annotations

import inspect
import logging
from dataclasses import replace

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from conftest import FrozenClock, at, build_test_settings
from portflow.main import create_app
from portflow.utils.config import DEFAULT_JWT_SECRET


ADMIN_TOKEN = "test-admin-token"


def _login(client: TestClient, user_id: str, role: str) -> dict[str, str]:
    response = client.post(
        "/auth/token",
        json={"adminToken": ADMIN_TOKEN, "userId": user_id, "role": role},
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['accessToken']}"}


@pytest.fixture
def api(tmp_path):
    settings = build_test_settings(tmp_path, "portflow_api.db")
    clock = FrozenClock(at(6))
    app = create_app(settings=settings, clock=clock)
    with TestClient(app) as client:
        yield client, clock


@pytest.fixture
def fleet(api):
    """Registers a one-truck terminal through the HTTP surface."""
    client, _ = api
    admin = _login(client, "admin-1", "ADMIN")

    port = client.post("/ports", json={"name": "Port of Tanger Med", "timezone": "UTC"}, headers=admin)
    assert port.status_code == 201, port.text
    terminal = client.post(
        "/terminals",
        json={"portId": port.json()["data"]["id"], "name": "TC1", "maxCapacity": 1},
        headers=admin,
    )
    assert terminal.status_code == 201, terminal.text
    carrier = client.post("/carriers", json={"userId": "carrier-user", "name": "Atlas Transport"}, headers=admin)
    assert carrier.status_code == 201, carrier.text

    carrier_headers = _login(client, "carrier-user", "CARRIER")
    truck = client.post("/trucks", json={"plateNumber": "123-a-4"}, headers=carrier_headers)
    assert truck.status_code == 201, truck.text
    driver = client.post(
        "/drivers",
        json={"userId": "driver-user", "fullName": "Driver One"},
        headers=carrier_headers,
    )
    assert driver.status_code == 201, driver.text

    return {
        "port": port.json()["data"],
        "terminal_id": terminal.json()["data"]["id"],
        "truck": truck.json()["data"],
        "driver_id": driver.json()["data"]["id"],
        "admin": admin,
        "carrier": carrier_headers,
        "operator": _login(client, "operator-1", "OPERATOR"),
    }


def _booking_payload(fleet, slot_start: str = "2030-06-10T08:00:00Z") -> dict[str, str]:
    return {
        "terminalId": fleet["terminal_id"],
        "truckId": fleet["truck"]["id"],
        "driverId": fleet["driver_id"],
        "slotStart": slot_start,
    }


def test_health_uses_envelope(api):
    client, _ = api
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "ok"
    assert body["timestamp"]


def test_requests_without_bearer_token_are_rejected(api):
    client, _ = api
    response = client.get("/bookings")

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.headers["www-authenticate"] == "Bearer"


def test_token_exchange_rejects_wrong_admin_token(api):
    client, _ = api
    response = client.post(
        "/auth/token",
        json={"adminToken": "guess", "userId": "someone", "role": "ADMIN"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid admin token"


def test_registry_is_exposed_in_camel_case(api, fleet):
    client, _ = api

    assert fleet["port"]["slotDuration"] == 60
    assert fleet["truck"]["plateNumber"] == "123-A-4"

    trucks = client.get("/trucks", headers=fleet["carrier"]).json()["data"]
    assert [truck["plateNumber"] for truck in trucks] == ["123-A-4"]

    denied = client.post("/ports", json={"name": "Rogue", "timezone": "UTC"}, headers=fleet["carrier"])
    assert denied.status_code == 403


def test_booking_gate_round_trip(api, fleet):
    client, clock = api

    created = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"])
    assert created.status_code == 201, created.text
    booking = created.json()["data"]
    assert booking["status"] == "PENDING"
    assert booking["bookingReference"]

    slots = client.get(
        "/bookings/availability",
        params={"terminalId": fleet["terminal_id"], "date": "2030-06-10"},
        headers=fleet["carrier"],
    ).json()["data"]["slots"]
    assert len(slots) == 24
    eight = slots[8]
    assert eight["slotStart"] == "2030-06-10T08:00:00+00:00"
    assert (eight["bookedCount"], eight["availableCount"], eight["loadLevel"]) == (1, 0, "NEAR_FULL")

    forbidden = client.post(f"/bookings/{booking['id']}/confirm", headers=fleet["carrier"])
    assert forbidden.status_code == 403

    confirmed = client.post(f"/bookings/{booking['id']}/confirm", headers=fleet["operator"])
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["data"]["status"] == "CONFIRMED"

    qr = client.get(f"/qrcodes/booking/{booking['id']}", headers=fleet["carrier"])
    assert qr.status_code == 200, qr.text
    token = qr.json()["data"]["jwtToken"]

    clock.set(at(7, 50))
    scan = client.post("/qrcodes/scan", json={"token": token}, headers=fleet["operator"]).json()["data"]
    assert scan["valid"] is True
    assert scan["booking"]["truckPlate"] == "123-A-4"
    assert scan["booking"]["driverName"] == "Driver One"

    again = client.post("/qrcodes/scan", json={"token": token}, headers=fleet["operator"])
    assert again.status_code == 200
    assert again.json()["data"] == {"valid": False, "message": "QR code already used", "booking": None}

    stored = client.get(f"/bookings/{booking['id']}", headers=fleet["carrier"]).json()["data"]
    assert stored["status"] == "CONSUMED"


def test_booking_errors_map_to_status_codes(api, fleet):
    client, _ = api

    misaligned = client.post(
        "/bookings",
        json=_booking_payload(fleet, "2030-06-10T08:15:00Z"),
        headers=fleet["carrier"],
    )
    assert misaligned.status_code == 400
    assert misaligned.json()["success"] is False

    assert client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).status_code == 201
    full = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"])
    assert full.status_code == 409
    assert full.json()["message"]

    missing = client.get("/bookings/does-not-exist", headers=fleet["operator"])
    assert missing.status_code == 404

    invalid = client.post("/bookings", json={"terminalId": fleet["terminal_id"]}, headers=fleet["carrier"])
    assert invalid.status_code == 422
    assert invalid.json()["success"] is False
    assert "truckId" in invalid.json()["message"]


def test_bulk_confirm_reports_failures(api, fleet):
    client, _ = api
    first = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).json()["data"]

    response = client.post(
        "/bookings/bulk/confirm",
        json={"bookingIds": [first["id"], "does-not-exist"]},
        headers=fleet["operator"],
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"confirmed": 1, "failed": ["does-not-exist"]}


def test_audit_log_is_admin_only(api, fleet):
    client, _ = api
    booking = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).json()["data"]

    logs = client.get(
        "/logs",
        params={"entityType": "booking", "entityId": booking["id"]},
        headers=fleet["admin"],
    )
    assert logs.status_code == 200
    entries = logs.json()["data"]
    assert [entry["action"] for entry in entries] == ["CREATED"]
    assert entries[0]["actorId"] == "carrier-user"

    assert client.get("/logs", headers=fleet["operator"]).status_code == 403


def test_operator_dashboard(api, fleet):
    client, clock = api
    booking = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).json()["data"]
    clock.set(at(7))

    exceptions = client.get(
        "/dashboard/operator/exceptions",
        params={"terminalId": fleet["terminal_id"]},
        headers=fleet["operator"],
    ).json()["data"]
    assert [(item["type"], item["bookingId"]) for item in exceptions] == [("STALE_PENDING", booking["id"])]

    summary = client.get(
        "/dashboard/operator/exception-summary",
        params={"terminalId": fleet["terminal_id"]},
        headers=fleet["operator"],
    ).json()["data"]
    assert summary["total"] == 1
    assert summary["byType"] == {"STALE_PENDING": 1}

    status = client.get(
        "/dashboard/operator/realtime-status",
        params={"terminalId": fleet["terminal_id"]},
        headers=fleet["operator"],
    ).json()["data"]
    assert status["terminalId"] == fleet["terminal_id"]
    assert status["todaySummary"]["pending"] == 1

    assert client.get(
        "/dashboard/operator/exceptions",
        params={"terminalId": fleet["terminal_id"]},
        headers=fleet["carrier"],
    ).status_code == 403


def test_operator_dashboard_overview_and_traffic(api, fleet):
    client, _ = api
    booking = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).json()["data"]
    params = {"terminalId": fleet["terminal_id"]}

    overview = client.get("/dashboard/operator/overview", params=params, headers=fleet["operator"])
    assert overview.status_code == 200, overview.text
    assert overview.json()["data"]["todayBookings"] == 1
    assert overview.json()["data"]["pendingApprovals"] == 1

    pending = client.get("/dashboard/operator/pending-approvals", params=params, headers=fleet["operator"])
    assert [(row["id"], row["truckPlate"]) for row in pending.json()["data"]] == [(booking["id"], "123-A-4")]

    traffic = client.get("/dashboard/operator/today-traffic", params=params, headers=fleet["operator"])
    assert traffic.json()["data"][8]["booked"] == 1

    denied = client.get("/dashboard/operator/overview", params=params, headers=fleet["carrier"])
    assert denied.status_code == 403


def test_carrier_dashboard_is_scoped_to_own_fleet(api, fleet):
    client, _ = api
    booking = client.post("/bookings", json=_booking_payload(fleet), headers=fleet["carrier"]).json()["data"]

    overview = client.get("/dashboard/carrier/overview", headers=fleet["carrier"])
    assert overview.status_code == 200, overview.text
    assert overview.json()["data"]["totalBookings"] == 1
    assert overview.json()["data"]["activeTrucks"] == 1

    upcoming = client.get("/dashboard/carrier/upcoming-bookings", headers=fleet["carrier"]).json()["data"]
    assert [row["bookingReference"] for row in upcoming] == [booking["bookingReference"]]

    fleet_status = client.get("/dashboard/carrier/fleet-status", headers=fleet["carrier"]).json()["data"]
    assert fleet_status["fleet"][0]["nextSlotStart"] == booking["slotStart"]

    missing_target = client.get("/dashboard/carrier/overview", headers=fleet["operator"])
    assert missing_target.status_code == 400
    staff_view = client.get(
        "/dashboard/carrier/overview",
        params={"carrierId": booking["carrierId"]},
        headers=fleet["operator"],
    )
    assert staff_view.json()["data"]["totalBookings"] == 1


def test_endpoints_are_synchronous_so_sqlite_calls_run_in_the_threadpool(api):
    client, _ = api
    routes = [route for route in client.app.routes if isinstance(route, APIRoute)]

    assert routes
    assert [route.path for route in routes if inspect.iscoroutinefunction(route.endpoint)] == []


def test_placeholder_jwt_secret_is_reported_at_startup(tmp_path, caplog):
    settings = replace(build_test_settings(tmp_path), jwt_secret_key=DEFAULT_JWT_SECRET)

    with caplog.at_level(logging.ERROR, logger="portflow.main"):
        create_app(settings=settings)

    assert "JWT_SECRET_KEY is unset" in caplog.text
