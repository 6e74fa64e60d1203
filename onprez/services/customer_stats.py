from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from onprez.models.customer import Customer

_STATUS_COUNTERS = {
    "COMPLETED": "completed_bookings",
    "CANCELLED": "cancelled_bookings",
    "NO_SHOW": "no_show_count",
}


def _get_customer(db: Session, payload: dict) -> Optional[Customer]:
    return (
        db.query(Customer)
        .filter(
            Customer.id == payload.get("customer_id"),
            Customer.business_id == payload.get("business_id"),
        )
        .first()
    )


def record_new_booking(db: Session, payload: dict) -> Optional[Customer]:
    customer = _get_customer(db, payload)
    if customer is None:
        return None
    customer.total_bookings = int(customer.total_bookings or 0) + 1
    if payload.get("start_time"):
        start_time = datetime.fromisoformat(payload["start_time"])
        if customer.last_booking_at is None or start_time > customer.last_booking_at:
            customer.last_booking_at = start_time
    return customer


def update_customer_stats_for_status(db: Session, payload: dict) -> Optional[Customer]:
    counter = _STATUS_COUNTERS.get(payload.get("status") or "")
    if counter is None:
        return None
    customer = _get_customer(db, payload)
    if customer is None:
        return None
    setattr(customer, counter, int(getattr(customer, counter) or 0) + 1)
    if counter == "completed_bookings" and payload.get("start_time"):
        customer.last_booking_at = datetime.fromisoformat(payload["start_time"])
    return customer
