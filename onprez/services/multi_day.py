from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from onprez.core.clock import business_zone, combine_local, local_wall_clock, utcnow
from onprez.models.appointment import Appointment
from onprez.models.business import Business
from onprez.models.customer import Customer
from onprez.models.service import Service
from onprez.services.appointments import (
    TERMINAL_STATUSES,
    AppointmentStatus,
    BookingPolicy,
    CancellationSource,
    booking_window_violation,
    cancel_appointment,
    coerce_status,
    find_slot_problem,
)
from onprez.services.errors import (
    AppointmentNotFound,
    BookingValidationError,
    LifecycleError,
    OutsideBookingWindow,
)
from onprez.services.opening_hours import sunday_based_weekday

logger = logging.getLogger(__name__)


class PatternType(str, enum.Enum):
    CONSECUTIVE = "consecutive"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class MultiDayPattern(BaseModel):
    """Repetition rule for a multi-day booking. Weekdays use 0 = Sunday ... 6 = Saturday."""

    model_config = ConfigDict(populate_by_name=True)

    type: PatternType
    consecutive_days: Optional[int] = Field(default=None, ge=2, le=14, alias="consecutiveDays")
    weekly_days: Optional[List[int]] = Field(default=None, alias="weeklyDays")
    week_count: Optional[int] = Field(default=None, ge=1, le=12, alias="weekCount")
    custom_dates: Optional[List[date]] = Field(default=None, alias="customDates")

    @field_validator("weekly_days")
    @classmethod
    def _validate_weekdays(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("weekly_days must contain values between 0 (Sunday) and 6 (Saturday)")
        return value

    @model_validator(mode="after")
    def _validate_required_fields(self) -> "MultiDayPattern":
        if self.type is PatternType.CONSECUTIVE and self.consecutive_days is None:
            raise ValueError("consecutive_days is required for consecutive patterns")
        if self.type is PatternType.WEEKLY:
            if not self.weekly_days:
                raise ValueError("weekly_days is required for weekly patterns")
            if self.week_count is None:
                raise ValueError("week_count is required for weekly patterns")
        if self.type is PatternType.CUSTOM and not self.custom_dates:
            raise ValueError("custom_dates is required for custom patterns")
        return self


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    # Calendar date the slot was generated for, in the business's zone
    day: Optional[date] = None


@dataclass(frozen=True)
class WindowViolation:
    start: datetime
    reason: str
    day: Optional[date] = None

    def as_dict(self) -> dict:
        day = self.day or self.start.date()
        return {"date": day.isoformat(), "start_time": self.start.isoformat(), "reason": self.reason}


@dataclass
class BookingBatch:
    created: List[Appointment] = field(default_factory=list)
    rejected: List[WindowViolation] = field(default_factory=list)


@dataclass
class SeriesCancellation:
    cancelled: List[Appointment] = field(default_factory=list)
    failed: List[Tuple[int, str]] = field(default_factory=list)


def generate_dates(start_date: date, pattern: MultiDayPattern) -> List[date]:
    if pattern.type is PatternType.CONSECUTIVE:
        return [start_date + timedelta(days=offset) for offset in range(pattern.consecutive_days or 0)]

    if pattern.type is PatternType.WEEKLY:
        dates = set()
        for week in range(pattern.week_count or 1):
            week_start = start_date + timedelta(days=week * 7)
            current_day = sunday_based_weekday(week_start)
            for day in pattern.weekly_days or []:
                dates.add(week_start + timedelta(days=(day - current_day + 7) % 7))
        return sorted(dates)

    return sorted(set(pattern.custom_dates or []))


def expand_pattern(
    pattern: MultiDayPattern,
    start_date: date,
    start_time: time,
    duration: timedelta,
    zone: Optional[tzinfo] = None,
) -> List[Slot]:
    """Pair every pattern date with ``start_time`` read as wall-clock time in ``zone``.

    Slot bounds come back as naive UTC. Without a zone the dates and time are
    taken to be UTC already.
    """
    slots = []
    for day in generate_dates(start_date, pattern):
        if zone is None:
            start = datetime.combine(day, start_time)
        else:
            start = combine_local(day, start_time, zone)
        slots.append(Slot(start=start, end=start + duration, day=day))
    return slots


def expand_from(pattern: MultiDayPattern, start: datetime, duration: timedelta, business: Business) -> List[Slot]:
    """Expand ``pattern`` from a client-supplied ``start``.

    Naive starts are UTC instants and are moved to the business's zone first.
    Offset-aware starts keep their own wall-clock date and time.
    """
    local_start = local_wall_clock(start, business_zone(business.timezone))
    return expand_pattern(pattern, local_start.date(), local_start.time(), duration, zone=local_start.tzinfo)


def partition_by_window(
    slots: Sequence[Slot], now: datetime, policy: BookingPolicy
) -> Tuple[List[Slot], List[WindowViolation]]:
    accepted: List[Slot] = []
    rejected: List[WindowViolation] = []
    for slot in slots:
        reason = booking_window_violation(slot.start, now, policy)
        if reason:
            rejected.append(WindowViolation(start=slot.start, reason=reason, day=slot.day))
        else:
            accepted.append(slot)
    return accepted, rejected


def screen_slots(
    db: Session, business: Business, service: Service, slots: Sequence[Slot], now: datetime
) -> Tuple[List[Slot], List[WindowViolation]]:
    """Split ``slots`` into bookable ones and rejections ordered by start."""
    accepted, rejected = partition_by_window(slots, now, BookingPolicy.for_business(business))
    bookable: List[Slot] = []
    for slot in accepted:
        problem = find_slot_problem(db, business, service, slot.start, slot.end)
        if problem is not None:
            rejected.append(WindowViolation(start=slot.start, reason=str(problem), day=slot.day))
        else:
            bookable.append(slot)
    rejected.sort(key=lambda violation: violation.start)
    return bookable, rejected


def expand_and_book(
    db: Session,
    pattern: MultiDayPattern,
    start: datetime,
    service_id: int,
    *,
    business_id: int,
    customer_id: int,
    customer_notes: Optional[str] = None,
    atomic: bool = False,
    now: Optional[datetime] = None,
) -> BookingBatch:
    """Book every occurrence of ``pattern`` from ``start``.

    Every date keeps the start's wall-clock time in the business's timezone
    (see ``expand_from``). Occurrences outside the booking window or opening
    hours, or clashing with existing appointments, are reported in ``rejected``. With ``atomic`` any rejection
    raises ``OutsideBookingWindow`` before anything is written.
    """
    now = now or utcnow()
    business = db.query(Business).filter(Business.id == business_id).first()
    if business is None:
        raise BookingValidationError("Business not found")
    service = (
        db.query(Service)
        .filter(Service.id == service_id, Service.business_id == business_id, Service.active.is_(True))
        .first()
    )
    if service is None:
        raise BookingValidationError("Service not found")
    customer = (
        db.query(Customer).filter(Customer.id == customer_id, Customer.business_id == business_id).first()
    )
    if customer is None:
        raise BookingValidationError("Customer not found")

    slots = expand_from(pattern, start, timedelta(minutes=service.duration_minutes), business)
    if not slots:
        raise BookingValidationError("No valid dates generated from pattern")

    bookable, rejected = screen_slots(db, business, service, slots, now)
    if rejected and atomic:
        raise OutsideBookingWindow(None, "Some dates are not available", violations=rejected)

    batch = BookingBatch(rejected=rejected)
    status = AppointmentStatus.PENDING if business.requires_approval else AppointmentStatus.CONFIRMED
    parent: Optional[Appointment] = None
    for slot in bookable:
        appointment = Appointment(
            business_id=business_id,
            service_id=service.id,
            customer_id=customer.id,
            start_time=slot.start,
            end_time=slot.end,
            status=status.value,
            status_changed_at=now,
            confirmed_at=now if status is AppointmentStatus.CONFIRMED else None,
            customer_notes=customer_notes,
            reminder_count=0,
            parent_id=parent.id if parent is not None else None,
            recurrence_pattern=pattern.model_dump(mode="json") if parent is None else None,
        )
        db.add(appointment)
        db.flush()
        if parent is None:
            parent = appointment
        batch.created.append(appointment)

    logger.info(
        "Multi-day booking business_id=%s pattern=%s created=%s rejected=%s",
        business_id,
        pattern.type.value,
        len(batch.created),
        len(batch.rejected),
    )
    return batch


def get_appointment_series(db: Session, appointment_id: int, business_id: Optional[int] = None) -> List[Appointment]:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if business_id is not None:
        query = query.filter(Appointment.business_id == business_id)
    appointment = query.first()
    if appointment is None:
        raise AppointmentNotFound(appointment_id)

    parent_id = appointment.parent_id or appointment.id
    return (
        db.query(Appointment)
        .filter(or_(Appointment.id == parent_id, Appointment.parent_id == parent_id))
        .order_by(Appointment.start_time.asc())
        .all()
    )


def cancel_appointment_series(
    db: Session,
    appointment_id: int,
    source: CancellationSource,
    *,
    business_id: Optional[int] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SeriesCancellation:
    now = now or utcnow()
    series = get_appointment_series(db, appointment_id, business_id=business_id)
    business = db.query(Business).filter(Business.id == series[0].business_id).first()
    policy = BookingPolicy.for_business(business)

    result = SeriesCancellation()
    for member in series:
        if coerce_status(member.status) in TERMINAL_STATUSES:
            continue
        try:
            cancel_appointment(db, member, source, reason=reason, now=now, policy=policy)
        except LifecycleError as exc:
            result.failed.append((member.id, str(exc)))
            continue
        result.cancelled.append(member)
    return result
