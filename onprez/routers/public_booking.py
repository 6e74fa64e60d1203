from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from onprez.core.clock import to_naive_utc
from onprez.core.config import AVAILABILITY_SEARCH_DAYS
from onprez.core.database import get_db
from onprez.models.business import Business
from onprez.models.customer import Customer
from onprez.models.service import Service
from onprez.routers.error_mapping import http_error_for
from onprez.routers.serializers import public_appointment_to_dict
from onprez.services.appointment_events import emit_appointment_created, emit_appointment_status_changed
from onprez.services.appointments import (
    AppointmentStatus,
    CancellationSource,
    attempt_transition,
    create_appointment,
    get_appointment,
)
from onprez.services.availability import day_availability, find_next_available
from onprez.services.errors import LifecycleError
from onprez.services.opening_hours import format_clock, parse_clock

router = APIRouter(prefix="/api/public", tags=["public-booking"])
logger = logging.getLogger(__name__)


class PublicBookingPayload(BaseModel):
    service_id: int
    start_time: datetime
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=30)
    notes: Optional[str] = Field(default=None, max_length=2000)


class PublicCancelPayload(BaseModel):
    email: EmailStr
    reason: Optional[str] = Field(default=None, max_length=500)


def _get_business_by_handle(db: Session, handle: str) -> Business:
    normalized = (handle or "").strip().lower()
    business = db.query(Business).filter(func.lower(Business.handle) == normalized).first()
    if not business:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    return business


def _find_or_create_customer(db: Session, business: Business, payload: PublicBookingPayload) -> Customer:
    email = payload.email.strip().lower()
    customer = (
        db.query(Customer)
        .filter(Customer.business_id == business.id, func.lower(Customer.email) == email)
        .first()
    )
    if customer is None:
        customer = Customer(
            business_id=business.id,
            name=payload.name.strip(),
            email=email,
            phone=payload.phone,
            total_bookings=0,
            completed_bookings=0,
            cancelled_bookings=0,
            no_show_count=0,
        )
        db.add(customer)
        db.flush()
    elif payload.phone and not customer.phone:
        customer.phone = payload.phone
    return customer


@router.get("/{handle}")
def get_public_business(handle: str, db: Session = Depends(get_db)):
    business = _get_business_by_handle(db, handle)
    services = (
        db.query(Service)
        .filter(Service.business_id == business.id, Service.active.is_(True))
        .order_by(Service.name.asc())
        .all()
    )
    return {
        "name": business.name,
        "handle": business.handle,
        "timezone": business.timezone,
        "requires_approval": bool(business.requires_approval),
        "services": [
            {"id": s.id, "name": s.name, "duration_minutes": s.duration_minutes, "price_cents": s.price_cents}
            for s in services
        ],
    }


def _get_public_service(db: Session, business: Business, service_id: int) -> Service:
    service = (
        db.query(Service)
        .filter(Service.id == service_id, Service.business_id == business.id, Service.active.is_(True))
        .first()
    )
    if not service:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service not found")
    return service


@router.get("/{handle}/availability")
def get_public_availability(
    handle: str,
    service_id: int,
    day: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
):
    business = _get_business_by_handle(db, handle)
    service = _get_public_service(db, business, service_id)
    return day_availability(db, business, service, day).as_dict()


@router.get("/{handle}/availability/next")
def get_next_public_availability(
    handle: str,
    service_id: int,
    preferred_time: Optional[str] = None,
    preferred_day: Optional[int] = Query(default=None, ge=0, le=6),
    max_days: int = Query(default=AVAILABILITY_SEARCH_DAYS, ge=1, le=90),
    db: Session = Depends(get_db),
):
    business = _get_business_by_handle(db, handle)
    service = _get_public_service(db, business, service_id)
    if preferred_time:
        try:
            preferred_time = format_clock(parse_clock(preferred_time))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="preferred_time must be HH:MM") from exc

    found = find_next_available(
        db, business, service, max_days=max_days, preferred_time=preferred_time, preferred_day=preferred_day
    )
    preferred_day_available = found is not None
    if found is None and preferred_day is not None:
        found = find_next_available(db, business, service, max_days=max_days, preferred_time=preferred_time)

    if found is None:
        return {"found": False, "next_available": None, "message": "No availability found in the search period"}

    slot = found.available_slots[0]
    body = {
        "found": True,
        "next_available": {"date": found.day.isoformat(), **slot.as_dict()},
        "day": found.as_dict(),
    }
    if preferred_day is not None:
        body["preferred_day_available"] = preferred_day_available
        if not preferred_day_available:
            body["message"] = f"No availability on preferred day. Next available on {found.day.isoformat()}"
    return body


@router.post("/{handle}/bookings", status_code=status.HTTP_201_CREATED)
def create_public_booking(
    handle: str,
    payload: PublicBookingPayload,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    business = _get_business_by_handle(db, handle)
    service = _get_public_service(db, business, payload.service_id)
    customer = _find_or_create_customer(db, business, payload)
    try:
        appointment = create_appointment(
            db,
            business=business,
            service=service,
            customer=customer,
            start_time=to_naive_utc(payload.start_time),
            customer_notes=payload.notes,
        )
    except LifecycleError as exc:
        db.rollback()
        raise http_error_for(exc) from exc

    db.commit()
    db.refresh(appointment)
    logger.info("public booking created business_id=%s appointment_id=%s", business.id, appointment.id)
    background_tasks.add_task(emit_appointment_created, appointment)
    return public_appointment_to_dict(appointment)


@router.post("/{handle}/bookings/{appointment_id}/cancel")
def cancel_public_booking(
    handle: str,
    appointment_id: int,
    payload: PublicCancelPayload,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    business = _get_business_by_handle(db, handle)
    appointment = get_appointment(db, appointment_id, business_id=business.id)
    customer = appointment.customer if appointment else None
    # Same answer for unknown ids and foreign emails
    if customer is None or customer.email.lower() != payload.email.strip().lower():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")

    try:
        appointment = attempt_transition(
            db,
            appointment_id,
            AppointmentStatus.CANCELLED,
            business_id=business.id,
            source=CancellationSource.CUSTOMER,
            reason=payload.reason,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    previous_status = appointment.previous_status
    db.commit()
    db.refresh(appointment)
    background_tasks.add_task(emit_appointment_status_changed, appointment, previous_status)
    return public_appointment_to_dict(appointment)
