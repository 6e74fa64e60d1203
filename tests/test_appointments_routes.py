from datetime import datetime, time, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from onprez.core.clock import utcnow
from onprez.core.database import get_db
from onprez.deps import get_current_business
from onprez.models.appointment import Appointment
from onprez.models.business import Business
from onprez.routers.appointments import router as appointments_router
from tests.db_helpers import build_db, make_appointment
from tests.fixtures_data import CONSECUTIVE_PATTERN


def _build_client(business_id: int = 1):
    _, db = build_db()
    app = FastAPI()
    app.include_router(appointments_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_business] = lambda: db.query(Business).filter(Business.id == business_id).one()
    return TestClient(app), db


def _future(days: int, hour: int = 10):
    return (utcnow() + timedelta(days=days)).replace(hour=hour, minute=0, second=0, microsecond=0)


@pytest.fixture(autouse=True)
def _silence_events():
    with (
        patch("onprez.routers.appointments.emit_appointment_created") as created,
        patch("onprez.routers.appointments.emit_appointment_status_changed") as changed,
    ):
        yield created, changed


def test_create_appointment_returns_confirmed_booking(_silence_events):
    client, db = _build_client()
    start = _future(5)

    response = client.post(
        "/api/appointments",
        json={"service_id": 1, "customer_id": 1, "start_time": start.isoformat(), "customer_notes": "Window light"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "CONFIRMED"
    assert body["end_time"] == (start + timedelta(minutes=60)).isoformat()
    created, _ = _silence_events
    created.assert_called_once()


def test_create_appointment_accepts_offset_datetimes():
    client, db = _build_client()
    start = _future(5)

    response = client.post(
        "/api/appointments",
        json={"service_id": 1, "customer_id": 1, "start_time": start.isoformat() + "+00:00"},
    )

    assert response.status_code == 201
    assert response.json()["start_time"] == start.isoformat()


def test_create_appointment_maps_domain_errors():
    client, db = _build_client()

    too_soon = client.post(
        "/api/appointments",
        json={"service_id": 1, "customer_id": 1, "start_time": (utcnow() + timedelta(minutes=30)).isoformat()},
    )
    assert too_soon.status_code == 400
    assert "at least 2 hours" in too_soon.json()["detail"]

    start = _future(6)
    make_appointment(db, start)
    clash = client.post(
        "/api/appointments", json={"service_id": 1, "customer_id": 1, "start_time": start.isoformat()}
    )
    assert clash.status_code == 409

    foreign = client.post(
        "/api/appointments", json={"service_id": 2, "customer_id": 1, "start_time": _future(7).isoformat()}
    )
    assert foreign.status_code == 404


def test_status_update_applies_workflow(_silence_events):
    client, db = _build_client()
    appointment = make_appointment(db, _future(3))

    invalid = client.patch(f"/api/appointments/{appointment.id}/status", json={"status": "PENDING"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Cannot change status from CONFIRMED to PENDING"

    done = client.patch(
        f"/api/appointments/{appointment.id}/status", json={"status": "completed", "notes": "Great shoot"}
    )
    assert done.status_code == 200
    assert done.json()["status"] == "COMPLETED"
    assert done.json()["previous_status"] == "CONFIRMED"
    assert "Great shoot" in done.json()["business_notes"]
    _, changed = _silence_events
    changed.assert_called_once()
    assert changed.call_args.args[1] == "CONFIRMED"


def test_unknown_status_is_a_bad_request():
    client, db = _build_client()
    appointment = make_appointment(db, _future(3))

    response = client.patch(f"/api/appointments/{appointment.id}/status", json={"status": "ARCHIVED"})

    assert response.status_code == 400


def test_cancel_inside_cutoff_is_rejected():
    client, db = _build_client()
    appointment = make_appointment(db, utcnow() + timedelta(hours=5))

    response = client.post(f"/api/appointments/{appointment.id}/cancel", json={"reason": "Rain"})

    assert response.status_code == 400
    assert response.json()["detail"]["cutoff_hours"] == 24
    db.refresh(appointment)
    assert appointment.status == "CONFIRMED"


def test_cancel_outside_cutoff_records_business_source():
    client, db = _build_client()
    appointment = make_appointment(db, _future(4))

    response = client.post(f"/api/appointments/{appointment.id}/cancel", json={"reason": "Studio closed"})

    assert response.status_code == 200
    assert response.json()["cancellation_source"] == "BUSINESS"
    assert response.json()["cancellation_reason"] == "Studio closed"


def test_other_business_appointments_are_not_found():
    client, db = _build_client()
    foreign = make_appointment(db, _future(3), business_id=2, service_id=2, customer_id=2)

    assert client.get(f"/api/appointments/{foreign.id}").status_code == 404
    assert client.patch(f"/api/appointments/{foreign.id}/status", json={"status": "COMPLETED"}).status_code == 404
    assert client.post(f"/api/appointments/{foreign.id}/reschedule", json={"start_time": _future(9).isoformat()}).status_code == 404


def test_get_appointment_includes_customer_and_service():
    client, db = _build_client()
    appointment = make_appointment(db, _future(3))

    body = client.get(f"/api/appointments/{appointment.id}").json()

    assert body["customer"]["email"] == "ana@example.com"
    assert body["service"]["name"] == "Portrait session"


def test_list_appointments_by_status():
    client, db = _build_client()
    make_appointment(db, _future(3))
    make_appointment(db, _future(4), status="CANCELLED")

    response = client.get("/api/appointments", params={"status": "CANCELLED"})

    assert response.status_code == 200
    assert [a["status"] for a in response.json()] == ["CANCELLED"]


def test_reschedule_returns_original_and_replacement(_silence_events):
    client, db = _build_client()
    appointment = make_appointment(db, _future(3))
    new_start = _future(8, hour=14)

    response = client.post(
        f"/api/appointments/{appointment.id}/reschedule",
        json={"start_time": new_start.isoformat(), "reason": "Client request"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["original"]["status"] == "RESCHEDULED"
    assert body["appointment"]["status"] == "CONFIRMED"
    assert body["appointment"]["rescheduled_from_id"] == appointment.id
    assert body["appointment"]["start_time"] == new_start.isoformat()
    created, changed = _silence_events
    created.assert_called_once()
    changed.assert_called_once()


def test_multi_day_partial_and_atomic_booking():
    client, db = _build_client()
    start = _future(5)
    # Wide enough to cover the second day whichever side of a DST change it lands
    make_appointment(db, start + timedelta(days=1, hours=-1), duration=timedelta(hours=3))

    partial = client.post(
        "/api/appointments/multi-day",
        json={"pattern": CONSECUTIVE_PATTERN, "start_time": start.isoformat(), "service_id": 1, "customer_id": 1},
    )
    assert partial.status_code == 201
    assert len(partial.json()["created"]) == 2
    assert len(partial.json()["rejected"]) == 1

    atomic = client.post(
        "/api/appointments/multi-day",
        json={
            "pattern": CONSECUTIVE_PATTERN,
            "start_time": _future(20).isoformat(),
            "service_id": 1,
            "customer_id": 1,
            "atomic": True,
        },
    )
    assert atomic.status_code == 201

    rejected = client.post(
        "/api/appointments/multi-day",
        json={
            "pattern": {"type": "custom", "customDates": [_future(30).date().isoformat(), _future(120).date().isoformat()]},
            "start_time": _future(30).isoformat(),
            "service_id": 1,
            "customer_id": 1,
            "atomic": True,
        },
    )
    assert rejected.status_code == 400
    assert len(rejected.json()["detail"]["violations"]) == 1
    assert db.query(Appointment).count() == 1 + 2 + 3


def test_multi_day_keeps_requested_dates_for_offset_start():
    client, db = _build_client()
    first_day = (utcnow() + timedelta(days=10)).date()
    plus_two = timezone(timedelta(hours=2))
    start = datetime.combine(first_day - timedelta(days=1), time(0, 30), tzinfo=plus_two)

    response = client.post(
        "/api/appointments/multi-day",
        json={
            "pattern": {"type": "custom", "customDates": [first_day.isoformat(), (first_day + timedelta(days=1)).isoformat()]},
            "start_time": start.isoformat(),
            "service_id": 1,
            "customer_id": 1,
        },
    )

    assert response.status_code == 201
    expected = [
        datetime.combine(first_day + timedelta(days=offset), time(0, 30), tzinfo=plus_two)
        .astimezone(timezone.utc)
        .replace(tzinfo=None)
        .isoformat()
        for offset in (0, 1)
    ]
    assert [a["start_time"] for a in response.json()["created"]] == expected


def test_multi_day_rejects_invalid_pattern():
    client, db = _build_client()

    response = client.post(
        "/api/appointments/multi-day",
        json={"pattern": {"type": "weekly", "weeklyDays": [9]}, "start_time": _future(5).isoformat(), "service_id": 1, "customer_id": 1},
    )

    assert response.status_code == 422


def test_multi_day_preview_does_not_write():
    client, db = _build_client()
    start = _future(5)

    response = client.get(
        "/api/appointments/multi-day/preview",
        params={"start_time": start.isoformat(), "service_id": 1, "type": "weekly", "weekly_days": [1, 3], "week_count": 2},
    )

    assert response.status_code == 200
    assert len(response.json()["accepted"]) == 4
    assert response.json()["rejected"] == []
    assert db.query(Appointment).count() == 0

    invalid = client.get(
        "/api/appointments/multi-day/preview",
        params={"start_time": start.isoformat(), "service_id": 1, "type": "consecutive"},
    )
    assert invalid.status_code == 400


def test_series_endpoints():
    client, db = _build_client()
    created = client.post(
        "/api/appointments/multi-day",
        json={"pattern": CONSECUTIVE_PATTERN, "start_time": _future(5).isoformat(), "service_id": 1, "customer_id": 1},
    ).json()["created"]

    series = client.get(f"/api/appointments/{created[1]['id']}/series")
    assert [a["id"] for a in series.json()] == [a["id"] for a in created]

    cancelled = client.post(f"/api/appointments/{created[0]['id']}/series/cancel", json={"reason": "Project dropped"})
    assert cancelled.status_code == 200
    assert len(cancelled.json()["cancelled"]) == 3
    assert cancelled.json()["failed"] == []


def test_check_conflicts_reports_booked_and_free_slots():
    client, db = _build_client()
    start = _future(6)
    existing = make_appointment(db, start)

    free = client.post(
        "/api/appointments/check-conflicts",
        json={"service_id": 1, "start_time": (start + timedelta(hours=2)).isoformat()},
    )
    clash = client.post("/api/appointments/check-conflicts", json={"service_id": 1, "start_time": start.isoformat()})
    own_slot = client.post(
        "/api/appointments/check-conflicts",
        json={"service_id": 1, "start_time": start.isoformat(), "exclude_appointment_id": existing.id},
    )

    assert free.json() == {"available": True, "conflict": None, "reason": None, "conflicting_ids": []}
    assert clash.json()["available"] is False
    assert clash.json()["conflict"] == "booked"
    assert clash.json()["conflicting_ids"] == [existing.id]
    assert own_slot.json()["available"] is True


def test_check_conflicts_uses_business_buffer_and_notice():
    client, db = _build_client()
    business = db.query(Business).filter(Business.id == 1).one()
    business.buffer_minutes = 30
    db.commit()
    start = _future(6)
    make_appointment(db, start)

    near = client.post(
        "/api/appointments/check-conflicts",
        json={"duration_minutes": 30, "start_time": (start + timedelta(minutes=75)).isoformat()},
    )
    soon = client.post(
        "/api/appointments/check-conflicts",
        json={"duration_minutes": 30, "start_time": (utcnow() + timedelta(minutes=30)).isoformat()},
    )
    missing = client.post("/api/appointments/check-conflicts", json={"start_time": start.isoformat()})

    assert near.json()["conflict"] == "buffer"
    assert near.json()["reason"] == "Too close to another appointment"
    assert soon.json()["conflict"] == "outside_window"
    assert missing.status_code == 400
