from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from onprez.core.clock import to_naive_utc, utcnow
from onprez.core.database import get_db
from onprez.deps import get_current_business
from onprez.models.business import Business
from onprez.models.customer import Customer
from onprez.models.service import Service
from onprez.routers.error_mapping import http_error_for
from onprez.routers.serializers import appointment_to_dict, customer_to_dict
from onprez.services.appointment_events import emit_appointment_created, emit_appointment_status_changed
from onprez.services.appointments import (
    AppointmentStatus,
    BookingPolicy,
    CancellationSource,
    attempt_transition,
    booking_window_violation,
    create_appointment,
    find_slot_problem,
    get_appointment,
    list_appointments,
    reschedule_appointment,
)
from onprez.services.errors import LifecycleError, SlotUnavailable
from onprez.services.multi_day import (
    MultiDayPattern,
    cancel_appointment_series,
    expand_and_book,
    expand_from,
    get_appointment_series,
    screen_slots,
)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])


class AppointmentCreate(BaseModel):
    service_id: int
    customer_id: int
    start_time: datetime
    customer_notes: Optional[str] = Field(default=None, max_length=2000)


class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = Field(default=None, max_length=2000)
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ReschedulePayload(BaseModel):
    start_time: datetime
    reason: Optional[str] = Field(default=None, max_length=500)


class MultiDayCreate(BaseModel):
    pattern: MultiDayPattern
    start_time: datetime
    service_id: int
    customer_id: int
    customer_notes: Optional[str] = Field(default=None, max_length=2000)
    atomic: bool = False


class ConflictCheck(BaseModel):
    start_time: datetime
    service_id: Optional[int] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)
    exclude_appointment_id: Optional[int] = None


def _load_appointment(db: Session, appointment_id: int, business: Business):
    appointment = get_appointment(db, appointment_id, business_id=business.id)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@router.get("")
def list_business_appointments(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        appointments = list_appointments(
            db,
            business.id,
            start=to_naive_utc(start) if start else None,
            end=to_naive_utc(end) if end else None,
            status=status_filter,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc
    return [appointment_to_dict(a) for a in appointments]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_business_appointment(
    body: AppointmentCreate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    service = db.query(Service).filter(Service.id == body.service_id, Service.business_id == business.id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    customer = (
        db.query(Customer).filter(Customer.id == body.customer_id, Customer.business_id == business.id).first()
    )
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    try:
        appointment = create_appointment(
            db,
            business=business,
            service=service,
            customer=customer,
            start_time=to_naive_utc(body.start_time),
            customer_notes=body.customer_notes,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    db.commit()
    db.refresh(appointment)
    background_tasks.add_task(emit_appointment_created, appointment)
    return appointment_to_dict(appointment)


@router.post("/multi-day", status_code=status.HTTP_201_CREATED)
def create_multi_day_appointments(
    body: MultiDayCreate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        batch = expand_and_book(
            db,
            body.pattern,
            body.start_time,
            body.service_id,
            business_id=business.id,
            customer_id=body.customer_id,
            customer_notes=body.customer_notes,
            atomic=body.atomic,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    db.commit()
    for appointment in batch.created:
        db.refresh(appointment)
        background_tasks.add_task(emit_appointment_created, appointment)
    return {
        "created": [appointment_to_dict(a) for a in batch.created],
        "rejected": [violation.as_dict() for violation in batch.rejected],
    }


@router.post("/check-conflicts")
def check_appointment_conflicts(
    body: ConflictCheck,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    service = None
    if body.service_id is not None:
        service = (
            db.query(Service).filter(Service.id == body.service_id, Service.business_id == business.id).first()
        )
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")
    duration = body.duration_minutes or (service.duration_minutes if service else None)
    if not duration:
        raise HTTPException(status_code=400, detail="duration_minutes or service_id is required")

    start = to_naive_utc(body.start_time)
    end = start + timedelta(minutes=duration)
    reason = booking_window_violation(start, utcnow(), BookingPolicy.for_business(business))
    if reason:
        return {"available": False, "conflict": "outside_window", "reason": reason, "conflicting_ids": []}

    problem = find_slot_problem(db, business, service, start, end, exclude_id=body.exclude_appointment_id)
    if problem is None:
        return {"available": True, "conflict": None, "reason": None, "conflicting_ids": []}
    if isinstance(problem, SlotUnavailable):
        return {
            "available": False,
            "conflict": "buffer" if problem.buffer_only else "booked",
            "reason": str(problem),
            "conflicting_ids": problem.conflicting_ids,
        }
    return {"available": False, "conflict": "closed", "reason": str(problem), "conflicting_ids": []}


@router.get("/multi-day/preview")
def preview_multi_day_appointments(
    start_time: datetime,
    service_id: int,
    pattern_type: str = Query(..., alias="type"),
    consecutive_days: Optional[int] = None,
    weekly_days: Optional[List[int]] = Query(default=None),
    week_count: Optional[int] = None,
    custom_dates: Optional[List[date]] = Query(default=None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    service = db.query(Service).filter(Service.id == service_id, Service.business_id == business.id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    try:
        pattern = MultiDayPattern(
            type=pattern_type,
            consecutive_days=consecutive_days,
            weekly_days=weekly_days,
            week_count=week_count,
            custom_dates=custom_dates,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False, include_context=False)) from exc

    slots = expand_from(pattern, start_time, timedelta(minutes=service.duration_minutes), business)
    accepted, rejected = screen_slots(db, business, service, slots, utcnow())
    return {
        "accepted": [{"start_time": slot.start.isoformat(), "end_time": slot.end.isoformat()} for slot in accepted],
        "rejected": [violation.as_dict() for violation in rejected],
    }


@router.get("/{appointment_id}")
def get_business_appointment(
    appointment_id: int,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    appointment = _load_appointment(db, appointment_id, business)
    data = appointment_to_dict(appointment)
    data["customer"] = customer_to_dict(appointment.customer) if appointment.customer else None
    data["service"] = (
        {"id": appointment.service.id, "name": appointment.service.name} if appointment.service else None
    )
    return data


@router.patch("/{appointment_id}/status")
def update_appointment_status(
    appointment_id: int,
    body: StatusUpdate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        appointment = attempt_transition(
            db,
            appointment_id,
            body.status,
            business_id=business.id,
            source=CancellationSource.BUSINESS,
            reason=body.reason,
            notes=body.notes,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    previous_status = appointment.previous_status
    db.commit()
    db.refresh(appointment)
    background_tasks.add_task(emit_appointment_status_changed, appointment, previous_status)
    return appointment_to_dict(appointment)


@router.post("/{appointment_id}/cancel")
def cancel_business_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    body: CancelPayload | None = None,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        appointment = attempt_transition(
            db,
            appointment_id,
            AppointmentStatus.CANCELLED,
            business_id=business.id,
            source=CancellationSource.BUSINESS,
            reason=body.reason if body else None,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    previous_status = appointment.previous_status
    db.commit()
    db.refresh(appointment)
    background_tasks.add_task(emit_appointment_status_changed, appointment, previous_status)
    return appointment_to_dict(appointment)


@router.post("/{appointment_id}/reschedule")
def reschedule_business_appointment(
    appointment_id: int,
    body: ReschedulePayload,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    original = _load_appointment(db, appointment_id, business)
    previous_status = original.status
    try:
        replacement = reschedule_appointment(
            db,
            original,
            to_naive_utc(body.start_time),
            reason=body.reason,
            policy=BookingPolicy.for_business(business),
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    db.commit()
    db.refresh(original)
    db.refresh(replacement)
    background_tasks.add_task(emit_appointment_status_changed, original, previous_status)
    background_tasks.add_task(emit_appointment_created, replacement)
    return {"original": appointment_to_dict(original), "appointment": appointment_to_dict(replacement)}


@router.get("/{appointment_id}/series")
def get_series(
    appointment_id: int,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        series = get_appointment_series(db, appointment_id, business_id=business.id)
    except LifecycleError as exc:
        raise http_error_for(exc) from exc
    return [appointment_to_dict(a) for a in series]


@router.post("/{appointment_id}/series/cancel")
def cancel_series(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    body: CancelPayload | None = None,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    try:
        result = cancel_appointment_series(
            db,
            appointment_id,
            CancellationSource.BUSINESS,
            business_id=business.id,
            reason=body.reason if body else None,
        )
    except LifecycleError as exc:
        raise http_error_for(exc) from exc

    db.commit()
    for appointment in result.cancelled:
        db.refresh(appointment)
        background_tasks.add_task(emit_appointment_status_changed, appointment, appointment.previous_status)
    return {
        "cancelled": [appointment_to_dict(a) for a in result.cancelled],
        "failed": [{"id": member_id, "error": error} for member_id, error in result.failed],
    }
