from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from onprez.core.clock import utcnow
from onprez.core.database import get_db
from onprez.models.appointment import Appointment
from onprez.models.customer import Customer
from onprez.routers.public_booking import router as public_router
from tests.db_helpers import build_db, make_appointment, seed_opening_hours
from tests.fixtures_data import HAPPY_PATH_CUSTOMER, PUBLIC_BOOKING_PAYLOAD


def _build_client():
    _, db = build_db()
    app = FastAPI()
    app.include_router(public_router)
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app), db


def _future(days: int, hour: int = 10):
    return (utcnow() + timedelta(days=days)).replace(hour=hour, minute=0, second=0, microsecond=0)


@pytest.fixture(autouse=True)
def _silence_events():
    with (
        patch("onprez.routers.public_booking.emit_appointment_created") as created,
        patch("onprez.routers.public_booking.emit_appointment_status_changed") as changed,
    ):
        yield created, changed


def test_public_business_lists_active_services():
    client, db = _build_client()

    response = client.get("/api/public/Studio-Luz")

    assert response.status_code == 200
    body = response.json()
    assert body["handle"] == "studio-luz"
    assert [service["id"] for service in body["services"]] == [1]


def test_unknown_handle_returns_404():
    client, db = _build_client()

    assert client.get("/api/public/nowhere").status_code == 404
    response = client.post(
        "/api/public/nowhere/bookings",
        json={**PUBLIC_BOOKING_PAYLOAD, "start_time": _future(3).isoformat()},
    )
    assert response.status_code == 404


def test_public_booking_creates_customer_once(_silence_events):
    client, db = _build_client()

    first = client.post(
        "/api/public/studio-luz/bookings",
        json={**PUBLIC_BOOKING_PAYLOAD, "start_time": _future(3).isoformat()},
    )
    second = client.post(
        "/api/public/studio-luz/bookings",
        json={**PUBLIC_BOOKING_PAYLOAD, "email": "CARLA@example.com", "start_time": _future(4).isoformat()},
    )

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["status"] == "CONFIRMED"
    customers = db.query(Customer).filter(Customer.email == "carla@example.com").all()
    assert len(customers) == 1
    assert db.query(Appointment).filter(Appointment.customer_id == customers[0].id).count() == 2
    created, _ = _silence_events
    assert created.call_count == 2


def test_public_booking_rejects_taken_slot():
    client, db = _build_client()
    start = _future(3)
    make_appointment(db, start)

    response = client.post(
        "/api/public/studio-luz/bookings",
        json={**PUBLIC_BOOKING_PAYLOAD, "start_time": (start + timedelta(minutes=30)).isoformat()},
    )

    assert response.status_code == 409
    assert db.query(Customer).filter(Customer.email == "carla@example.com").count() == 0


def test_public_booking_rejects_too_soon():
    client, db = _build_client()

    response = client.post(
        "/api/public/studio-luz/bookings",
        json={**PUBLIC_BOOKING_PAYLOAD, "start_time": (utcnow() + timedelta(minutes=30)).isoformat()},
    )

    assert response.status_code == 400


def test_public_cancel_requires_matching_email():
    client, db = _build_client()
    appointment = make_appointment(db, _future(5))

    response = client.post(
        f"/api/public/studio-luz/bookings/{appointment.id}/cancel",
        json={"email": "someone-else@example.com"},
    )

    assert response.status_code == 404
    db.refresh(appointment)
    assert appointment.status == "CONFIRMED"


def test_public_cancel_marks_customer_source(_silence_events):
    client, db = _build_client()
    appointment = make_appointment(db, _future(5))

    response = client.post(
        f"/api/public/studio-luz/bookings/{appointment.id}/cancel",
        json={"email": HAPPY_PATH_CUSTOMER["email"].upper(), "reason": "Travelling"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    db.refresh(appointment)
    assert appointment.cancellation_source == "CUSTOMER"
    assert appointment.cancellation_reason == "Travelling"
    _, changed = _silence_events
    changed.assert_called_once()


def test_public_cancel_inside_cutoff_is_rejected():
    client, db = _build_client()
    appointment = make_appointment(db, utcnow() + timedelta(hours=3))

    response = client.post(
        f"/api/public/studio-luz/bookings/{appointment.id}/cancel",
        json={"email": HAPPY_PATH_CUSTOMER["email"]},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["cutoff_hours"] == 24


def test_public_availability_marks_booked_slots():
    client, db = _build_client()
    start = _future(5)
    make_appointment(db, start)

    response = client.get(
        "/api/public/studio-luz/availability", params={"service_id": 1, "date": start.date().isoformat()}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["date"] == start.date().isoformat()
    assert body["hours"]["reason"] == "no_hours_configured"
    by_start = {slot["start_time"]: slot for slot in body["slots"]}
    assert by_start[start.isoformat()]["available"] is False
    assert by_start[start.isoformat()]["reason"] == "booked"
    assert by_start[(start + timedelta(hours=1)).isoformat()]["available"] is True


def test_public_availability_unknown_service_is_404():
    client, db = _build_client()

    response = client.get(
        "/api/public/studio-luz/availability", params={"service_id": 2, "date": _future(5).date().isoformat()}
    )

    assert response.status_code == 404


def test_next_availability_falls_back_from_closed_weekday():
    client, db = _build_client()
    seed_opening_hours(db)

    anyday = client.get("/api/public/studio-luz/availability/next", params={"service_id": 1})
    saturday = client.get(
        "/api/public/studio-luz/availability/next", params={"service_id": 1, "preferred_day": 6}
    )

    assert anyday.json()["found"] is True
    body = saturday.json()
    assert body["found"] is True
    assert body["preferred_day_available"] is False
    assert body["message"].startswith("No availability on preferred day")
    assert body["next_available"]["date"] == body["day"]["date"]
    assert body["day"]["day_of_week"] in {1, 2, 3, 4, 5}


def test_next_availability_validates_preferred_time():
    client, db = _build_client()

    response = client.get(
        "/api/public/studio-luz/availability/next", params={"service_id": 1, "preferred_time": "late"}
    )

    assert response.status_code == 400
