from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from onprez.core.clock import business_zone, to_local, utcnow
from onprez.core.config import AVAILABILITY_SEARCH_DAYS, SLOT_INTERVAL_MINUTES
from onprez.models.business import Business
from onprez.models.service import Service
from onprez.services.appointments import (
    BookingPolicy,
    booking_window_violation,
    conflict_kind,
    find_conflicts,
)
from onprez.services.opening_hours import (
    MINUTES_PER_DAY,
    DayHours,
    buffer_for,
    format_clock,
    hours_for_date,
    local_minutes_to_utc,
    sunday_based_weekday,
)

OUTSIDE_WINDOW = "outside_window"


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    # Wall-clock "HH:MM" in the business's timezone
    local_time: str
    available: bool
    reason: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat(),
            "local_time": self.local_time,
            "available": self.available,
            "reason": self.reason,
        }


@dataclass
class DayAvailability:
    day: date
    hours: DayHours
    slots: List[TimeSlot] = field(default_factory=list)

    @property
    def available_slots(self) -> List[TimeSlot]:
        return [slot for slot in self.slots if slot.available]

    def as_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "day_of_week": sunday_based_weekday(self.day),
            "hours": self.hours.as_dict(),
            "available_count": len(self.available_slots),
            "slots": [slot.as_dict() for slot in self.slots],
        }


def day_availability(
    db: Session,
    business: Business,
    service: Service,
    day: date,
    *,
    now: Optional[datetime] = None,
    interval_minutes: int = SLOT_INTERVAL_MINUTES,
) -> DayAvailability:
    """Bookable start times for ``service`` on the local date ``day``.

    Starts run every ``interval_minutes`` from opening time while the whole
    service still fits before closing. A slot is unavailable when it is outside
    the booking window, overlaps a blocking appointment ("booked") or falls
    inside another appointment's buffer ("buffer").
    """
    now = now or utcnow()
    hours = hours_for_date(db, business.id, day)
    result = DayAvailability(day=day, hours=hours)
    if not hours.is_open:
        return result

    zone = business_zone(business.timezone)
    policy = BookingPolicy.for_business(business)
    buffer = buffer_for(business, service)
    duration = timedelta(minutes=service.duration_minutes)
    opens = hours.open_minutes if hours.restricted else 0
    closes = hours.close_minutes if hours.restricted else MINUTES_PER_DAY

    existing = find_conflicts(
        db,
        business.id,
        local_minutes_to_utc(day, opens, zone),
        local_minutes_to_utc(day, closes, zone),
        buffer=buffer,
    )
    minute = opens
    while minute + service.duration_minutes <= closes:
        start = local_minutes_to_utc(day, minute, zone)
        end = start + duration
        if booking_window_violation(start, now, policy):
            reason = OUTSIDE_WINDOW
        else:
            reason = conflict_kind(existing, start, end, buffer)
        result.slots.append(
            TimeSlot(start=start, end=end, local_time=format_clock(minute), available=reason is None, reason=reason)
        )
        minute += interval_minutes
    return result


def find_next_available(
    db: Session,
    business: Business,
    service: Service,
    *,
    now: Optional[datetime] = None,
    max_days: int = AVAILABILITY_SEARCH_DAYS,
    preferred_time: Optional[str] = None,
    preferred_day: Optional[int] = None,
) -> Optional[DayAvailability]:
    """First local day within ``max_days`` that has a free slot.

    ``preferred_day`` (0 = Sunday) limits the search to that weekday and
    ``preferred_time`` ("HH:MM") skips earlier slots. The returned day's
    ``available_slots`` starts with the matching slot.
    """
    now = now or utcnow()
    first_day = to_local(now, business_zone(business.timezone)).date()
    for offset in range(max_days + 1):
        day = first_day + timedelta(days=offset)
        if preferred_day is not None and sunday_based_weekday(day) != preferred_day:
            continue
        availability = day_availability(db, business, service, day, now=now)
        if preferred_time:
            availability.slots = [slot for slot in availability.slots if slot.local_time >= preferred_time]
        if availability.available_slots:
            return availability
    return None
