from __future__ import annotations

from typing import Any, Dict

from onprez.models.appointment import Appointment
from onprez.models.customer import Customer


def _iso(value):
    return value.isoformat() if value else None


def appointment_to_dict(a: Appointment) -> Dict[str, Any]:
    return {
        "id": a.id,
        "business_id": a.business_id,
        "service_id": a.service_id,
        "customer_id": a.customer_id,
        "start_time": _iso(a.start_time),
        "end_time": _iso(a.end_time),
        "status": a.status,
        "previous_status": a.previous_status,
        "status_changed_at": _iso(a.status_changed_at),
        "confirmed_at": _iso(a.confirmed_at),
        "completed_at": _iso(a.completed_at),
        "cancelled_at": _iso(a.cancelled_at),
        "cancellation_source": a.cancellation_source,
        "cancellation_reason": a.cancellation_reason,
        "customer_notes": a.customer_notes,
        "business_notes": a.business_notes,
        "reminder_count": a.reminder_count or 0,
        "parent_id": a.parent_id,
        "recurrence_pattern": a.recurrence_pattern,
        "rescheduled_from_id": a.rescheduled_from_id,
        "created_at": _iso(a.created_at),
    }


def public_appointment_to_dict(a: Appointment) -> Dict[str, Any]:
    return {
        "id": a.id,
        "service_id": a.service_id,
        "start_time": _iso(a.start_time),
        "end_time": _iso(a.end_time),
        "status": a.status,
    }


def customer_to_dict(c: Customer) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "total_bookings": c.total_bookings or 0,
        "completed_bookings": c.completed_bookings or 0,
        "cancelled_bookings": c.cancelled_bookings or 0,
        "no_show_count": c.no_show_count or 0,
        "last_booking_at": _iso(c.last_booking_at),
    }
