from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from onprez.core.clock import utcnow
from onprez.core.config import (
    BOOKING_MAX_ADVANCE_DAYS,
    BOOKING_MIN_ADVANCE_HOURS,
    CANCELLATION_CUTOFF_HOURS,
)
from onprez.models.appointment import Appointment
from onprez.models.business import Business
from onprez.models.customer import Customer
from onprez.models.service import Service
from onprez.services.errors import (
    AppointmentNotFound,
    BookingValidationError,
    BusinessClosed,
    ConcurrentModification,
    InvalidTransition,
    LifecycleError,
    OutsideBookingWindow,
    SlotUnavailable,
    WindowClosed,
)
from onprez.services.opening_hours import buffer_for, opening_hours_violation

logger = logging.getLogger(__name__)


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class CancellationSource(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    BUSINESS = "BUSINESS"
    SYSTEM = "SYSTEM"


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.NO_SHOW,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.RESCHEDULED,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
    AppointmentStatus.RESCHEDULED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, allowed in ALLOWED_TRANSITIONS.items() if not allowed)
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
# Targets that are only reachable outside the cancellation cutoff
WINDOW_GUARDED_TARGETS = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED})
# Statuses that still occupy their time slot
BLOCKING_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED}
)


@dataclass(frozen=True)
class BookingPolicy:
    min_advance: timedelta = timedelta(hours=BOOKING_MIN_ADVANCE_HOURS)
    max_advance: timedelta = timedelta(days=BOOKING_MAX_ADVANCE_DAYS)
    cancellation_cutoff_hours: int = CANCELLATION_CUTOFF_HOURS

    @classmethod
    def for_business(cls, business: Optional[Business]) -> "BookingPolicy":
        if business is None:
            return cls()
        defaults = cls()
        return cls(
            min_advance=(
                timedelta(hours=business.min_advance_hours)
                if business.min_advance_hours is not None
                else defaults.min_advance
            ),
            max_advance=(
                timedelta(days=business.max_advance_days)
                if business.max_advance_days is not None
                else defaults.max_advance
            ),
            cancellation_cutoff_hours=(
                business.cancellation_cutoff_hours
                if business.cancellation_cutoff_hours is not None
                else defaults.cancellation_cutoff_hours
            ),
        )


def coerce_status(value) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(str(value or "").strip().upper())
    except ValueError as exc:
        raise BookingValidationError(f"Unknown appointment status: {value}") from exc


def can_transition(current, target) -> bool:
    return coerce_status(target) in ALLOWED_TRANSITIONS[coerce_status(current)]


def booking_window_violation(start_time: datetime, now: datetime, policy: BookingPolicy) -> Optional[str]:
    """Return why ``start_time`` cannot be booked at ``now``, or None when it can."""
    lead = start_time - now
    if lead < policy.min_advance:
        hours = int(policy.min_advance.total_seconds() // 3600)
        return f"Appointments must be booked at least {hours} hours in advance"
    if lead > policy.max_advance:
        return f"Cannot book more than {policy.max_advance.days} days in advance"
    return None


def check_booking_window(start_time: datetime, now: datetime, policy: Optional[BookingPolicy] = None) -> None:
    reason = booking_window_violation(start_time, now, policy or BookingPolicy())
    if reason:
        raise OutsideBookingWindow(start_time, reason)


def check_cancellation_window(
    start_time: datetime, now: datetime, cutoff_hours: int = CANCELLATION_CUTOFF_HOURS
) -> None:
    if start_time - now < timedelta(hours=cutoff_hours):
        raise WindowClosed(start_time, cutoff_hours)


def _append_note(existing: Optional[str], note: str, now: datetime) -> str:
    entry = f"[{now.isoformat()}] {note}"
    return f"{existing}\n\n{entry}" if existing else entry


def get_appointment(db: Session, appointment_id: int, business_id: Optional[int] = None) -> Optional[Appointment]:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if business_id is not None:
        query = query.filter(Appointment.business_id == business_id)
    return query.first()


def list_appointments(
    db: Session,
    business_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
) -> List[Appointment]:
    query = db.query(Appointment).filter(Appointment.business_id == business_id)
    if start is not None:
        query = query.filter(Appointment.start_time >= start)
    if end is not None:
        query = query.filter(Appointment.start_time < end)
    if status:
        query = query.filter(Appointment.status == coerce_status(status).value)
    return query.order_by(Appointment.start_time.asc(), Appointment.id.asc()).all()


def find_conflicts(
    db: Session,
    business_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_id: Optional[int] = None,
    buffer: timedelta = timedelta(0),
) -> List[Appointment]:
    """Blocking appointments within ``buffer`` of ``[start_time, end_time)``."""
    query = db.query(Appointment).filter(
        Appointment.business_id == business_id,
        Appointment.status.in_([status.value for status in BLOCKING_STATUSES]),
        Appointment.start_time < end_time + buffer,
        Appointment.end_time > start_time - buffer,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.order_by(Appointment.start_time.asc()).all()


def conflict_kind(
    appointments: List[Appointment], start_time: datetime, end_time: datetime, buffer: timedelta
) -> Optional[str]:
    """"booked" when one of ``appointments`` overlaps the slot, "buffer" when one only sits inside the buffer."""
    kind = None
    for appointment in appointments:
        if appointment.start_time < end_time and appointment.end_time > start_time:
            return "booked"
        if appointment.start_time < end_time + buffer and appointment.end_time > start_time - buffer:
            kind = "buffer"
    return kind


def find_slot_problem(
    db: Session,
    business: Business,
    service: Optional[Service],
    start_time: datetime,
    end_time: datetime,
    *,
    exclude_id: Optional[int] = None,
) -> Optional[LifecycleError]:
    """Return the error that stops ``[start_time, end_time)`` from being booked, or None."""
    reason = opening_hours_violation(db, business, start_time, end_time)
    if reason:
        return BusinessClosed(start_time, reason)
    buffer = buffer_for(business, service)
    conflicts = find_conflicts(db, business.id, start_time, end_time, exclude_id=exclude_id, buffer=buffer)
    kind = conflict_kind(conflicts, start_time, end_time, buffer)
    if kind is None:
        return None
    return SlotUnavailable(start_time, [c.id for c in conflicts], buffer_only=kind == "buffer")


def ensure_slot_available(
    db: Session,
    business: Business,
    service: Optional[Service],
    start_time: datetime,
    end_time: datetime,
    *,
    exclude_id: Optional[int] = None,
) -> None:
    problem = find_slot_problem(db, business, service, start_time, end_time, exclude_id=exclude_id)
    if problem is not None:
        raise problem


def transition(
    db: Session,
    appointment: Appointment,
    target,
    *,
    now: Optional[datetime] = None,
    source: Optional[CancellationSource] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Appointment:
    """Move ``appointment`` to ``target`` with a compare-and-set on its current status.

    Does not commit and emits nothing; callers commit, then notify.
    """
    now = now or utcnow()
    current = coerce_status(appointment.status)
    target = coerce_status(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current, target)

    values = {
        Appointment.status: target.value,
        Appointment.previous_status: current.value,
        Appointment.status_changed_at: now,
    }
    if target is AppointmentStatus.CONFIRMED:
        values[Appointment.confirmed_at] = now
    elif target is AppointmentStatus.COMPLETED:
        values[Appointment.completed_at] = now
    elif target is AppointmentStatus.CANCELLED:
        values[Appointment.cancelled_at] = now
        values[Appointment.cancellation_source] = (source or CancellationSource.BUSINESS).value
        values[Appointment.cancellation_reason] = reason
    if notes:
        values[Appointment.business_notes] = _append_note(appointment.business_notes, notes, now)

    updated = (
        db.query(Appointment)
        .filter(Appointment.id == appointment.id, Appointment.status == current.value)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        logger.warning(
            "Appointment status changed concurrently appointment_id=%s expected=%s",
            appointment.id,
            current.value,
        )
        raise ConcurrentModification("Appointment", appointment.id)

    db.refresh(appointment)
    logger.info(
        "Appointment status changed appointment_id=%s from=%s to=%s",
        appointment.id,
        current.value,
        target.value,
    )
    return appointment


def attempt_transition(
    db: Session,
    appointment_id: int,
    target,
    *,
    business_id: Optional[int] = None,
    now: Optional[datetime] = None,
    source: Optional[CancellationSource] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Appointment:
    now = now or utcnow()
    appointment = get_appointment(db, appointment_id, business_id=business_id)
    if appointment is None:
        raise AppointmentNotFound(appointment_id)

    target = coerce_status(target)
    if not can_transition(appointment.status, target):
        raise InvalidTransition(appointment.status, target)
    if target in WINDOW_GUARDED_TARGETS:
        business = db.query(Business).filter(Business.id == appointment.business_id).first()
        policy = BookingPolicy.for_business(business)
        check_cancellation_window(appointment.start_time, now, policy.cancellation_cutoff_hours)

    return transition(db, appointment, target, now=now, source=source, reason=reason, notes=notes)


def cancel_appointment(
    db: Session,
    appointment: Appointment,
    source: CancellationSource,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    policy: Optional[BookingPolicy] = None,
) -> Appointment:
    now = now or utcnow()
    policy = policy or BookingPolicy()
    if not can_transition(appointment.status, AppointmentStatus.CANCELLED):
        raise InvalidTransition(appointment.status, AppointmentStatus.CANCELLED)
    check_cancellation_window(appointment.start_time, now, policy.cancellation_cutoff_hours)
    return transition(db, appointment, AppointmentStatus.CANCELLED, now=now, source=source, reason=reason)


def create_appointment(
    db: Session,
    *,
    business: Business,
    service: Service,
    customer: Customer,
    start_time: datetime,
    customer_notes: Optional[str] = None,
    now: Optional[datetime] = None,
    policy: Optional[BookingPolicy] = None,
    check_conflicts: bool = True,
) -> Appointment:
    now = now or utcnow()
    policy = policy or BookingPolicy.for_business(business)
    if service.business_id != business.id or not service.active:
        raise BookingValidationError("Service not available for this business")
    if customer.business_id != business.id:
        raise BookingValidationError("Customer does not belong to this business")

    check_booking_window(start_time, now, policy)
    end_time = start_time + timedelta(minutes=service.duration_minutes)
    if check_conflicts:
        ensure_slot_available(db, business, service, start_time, end_time)

    status = AppointmentStatus.PENDING if business.requires_approval else AppointmentStatus.CONFIRMED
    appointment = Appointment(
        business_id=business.id,
        service_id=service.id,
        customer_id=customer.id,
        start_time=start_time,
        end_time=end_time,
        status=status.value,
        status_changed_at=now,
        confirmed_at=now if status is AppointmentStatus.CONFIRMED else None,
        customer_notes=customer_notes,
        reminder_count=0,
    )
    db.add(appointment)
    db.flush()
    logger.info(
        "Appointment created appointment_id=%s business_id=%s status=%s",
        appointment.id,
        business.id,
        status.value,
    )
    return appointment


def reschedule_appointment(
    db: Session,
    appointment: Appointment,
    new_start: datetime,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    policy: Optional[BookingPolicy] = None,
) -> Appointment:
    """Close ``appointment`` as RESCHEDULED and book its replacement at ``new_start``.

    Both rows are written in the caller's transaction; the replacement is
    CONFIRMED and points back through ``rescheduled_from_id``.
    """
    now = now or utcnow()
    policy = policy or BookingPolicy()
    if not can_transition(appointment.status, AppointmentStatus.RESCHEDULED):
        raise InvalidTransition(appointment.status, AppointmentStatus.RESCHEDULED)
    check_cancellation_window(appointment.start_time, now, policy.cancellation_cutoff_hours)
    check_booking_window(new_start, now, policy)

    duration = appointment.end_time - appointment.start_time
    new_end = new_start + duration
    business = db.query(Business).filter(Business.id == appointment.business_id).first()
    ensure_slot_available(db, business, appointment.service, new_start, new_end, exclude_id=appointment.id)

    note = f"Rescheduled to {new_start.isoformat()}" + (f": {reason}" if reason else "")
    transition(db, appointment, AppointmentStatus.RESCHEDULED, now=now, notes=note)

    replacement = Appointment(
        business_id=appointment.business_id,
        service_id=appointment.service_id,
        customer_id=appointment.customer_id,
        start_time=new_start,
        end_time=new_end,
        status=AppointmentStatus.CONFIRMED.value,
        status_changed_at=now,
        confirmed_at=now,
        customer_notes=appointment.customer_notes,
        parent_id=appointment.parent_id,
        rescheduled_from_id=appointment.id,
        reminder_count=0,
    )
    db.add(replacement)
    db.flush()
    logger.info(
        "Appointment rescheduled appointment_id=%s replacement_id=%s",
        appointment.id,
        replacement.id,
    )
    return replacement
