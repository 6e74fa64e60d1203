from __future__ import annotations

from onprez.models.appointment import Appointment
from onprez.services.event_bus import (
    APPOINTMENT_CREATED,
    APPOINTMENT_REMINDER,
    APPOINTMENT_STATUS_CHANGED,
    event_bus,
)


def _normalize_status(status: str | None) -> str:
    return (status or "").strip().upper()


def build_appointment_payload(appointment: Appointment, previous_status: str | None = None) -> dict:
    return {
        "appointment_id": appointment.id,
        "business_id": appointment.business_id,
        "customer_id": appointment.customer_id,
        "service_id": appointment.service_id,
        "status": _normalize_status(appointment.status),
        "previous_status": _normalize_status(previous_status) if previous_status else None,
        "start_time": appointment.start_time.isoformat() if appointment.start_time else None,
        "end_time": appointment.end_time.isoformat() if appointment.end_time else None,
        "cancellation_source": appointment.cancellation_source,
    }


def emit_appointment_created(appointment: Appointment) -> None:
    event_bus.emit(APPOINTMENT_CREATED, build_appointment_payload(appointment))


def emit_appointment_status_changed(appointment: Appointment, previous_status: str | None) -> None:
    if previous_status and _normalize_status(previous_status) == _normalize_status(appointment.status):
        return
    event_bus.emit(
        APPOINTMENT_STATUS_CHANGED,
        build_appointment_payload(appointment, previous_status=previous_status),
    )


def emit_appointment_reminder(appointment: Appointment, reminder_type: str) -> None:
    payload = build_appointment_payload(appointment)
    payload["reminder_type"] = reminder_type
    payload["reminder_count"] = appointment.reminder_count
    event_bus.emit(APPOINTMENT_REMINDER, payload)
