from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from onprez.core.database import SessionLocal
from onprez.services.customer_stats import record_new_booking, update_customer_stats_for_status
from onprez.services.event_bus import (
    APPOINTMENT_CREATED,
    APPOINTMENT_REMINDER,
    APPOINTMENT_STATUS_CHANGED,
    event_bus,
)

logger = logging.getLogger(__name__)


def _with_session(handler):
    def wrapper(payload: dict) -> None:
        db: Session = SessionLocal()
        try:
            handler(db, payload)
        finally:
            db.close()

    wrapper.__name__ = handler.__name__
    return wrapper


@_with_session
def handle_appointment_created(db: Session, payload: dict) -> None:
    if record_new_booking(db, payload) is not None:
        db.commit()


@_with_session
def handle_appointment_status_changed(db: Session, payload: dict) -> None:
    if update_customer_stats_for_status(db, payload) is not None:
        db.commit()


def handle_appointment_reminder(payload: dict) -> None:
    # Delivery (email/SMS) subscribes to the same event outside this service
    logger.info(
        "appointment reminder due appointment_id=%s type=%s start_time=%s",
        payload.get("appointment_id"),
        payload.get("reminder_type"),
        payload.get("start_time"),
        extra={"appointment_id": payload.get("appointment_id"), "event": "appointment.reminder"},
    )


event_bus.subscribe(APPOINTMENT_CREATED, handle_appointment_created)
event_bus.subscribe(APPOINTMENT_STATUS_CHANGED, handle_appointment_status_changed)
event_bus.subscribe(APPOINTMENT_REMINDER, handle_appointment_reminder)
