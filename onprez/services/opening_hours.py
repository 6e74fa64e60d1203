from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from sqlalchemy.orm import Session

from onprez.core.clock import business_zone, to_local, to_naive_utc
from onprez.models.business import Business
from onprez.models.opening_hours import BusinessHours, SpecialDate
from onprez.models.service import Service

MINUTES_PER_DAY = 24 * 60

# Why a day is open or closed
SPECIAL_DATE = "special_date"
REGULAR_HOURS = "regular_hours"
REGULAR_CLOSED = "regular_closed"
NO_HOURS_CONFIGURED = "no_hours_configured"


def sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def parse_clock(value: str) -> int:
    """Minutes after midnight for an "HH:MM" string; "24:00" closes at midnight."""
    hours, _, minutes = (value or "").strip().partition(":")
    total = int(hours) * 60 + int(minutes or 0)
    if total < 0 or total > MINUTES_PER_DAY or int(minutes or 0) > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return total


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def local_minutes_to_utc(day: date, minutes: int, zone: tzinfo) -> datetime:
    """Naive UTC instant for the wall-clock minute ``minutes`` of ``day`` in ``zone``."""
    wall = datetime.combine(day, datetime.min.time()) + timedelta(minutes=minutes)
    return to_naive_utc(wall.replace(tzinfo=zone))


@dataclass(frozen=True)
class DayHours:
    is_open: bool
    reason: str
    open_minutes: Optional[int] = None
    close_minutes: Optional[int] = None
    special_name: Optional[str] = None

    @property
    def restricted(self) -> bool:
        return self.open_minutes is not None and self.close_minutes is not None

    def closed_message(self) -> str:
        if self.reason == SPECIAL_DATE:
            return f"Closed for {self.special_name}"
        return "Business is closed on this day"

    def as_dict(self) -> dict:
        return {
            "is_open": self.is_open,
            "reason": self.reason,
            "open_time": format_clock(self.open_minutes) if self.open_minutes is not None else None,
            "close_time": format_clock(self.close_minutes) if self.close_minutes is not None else None,
            "special_name": self.special_name,
        }


def hours_for_date(db: Session, business_id: int, day: date) -> DayHours:
    """Opening hours for ``day``. A special date wins over the weekly schedule.

    A business that has not configured any weekly hours takes bookings at any
    time of day.
    """
    special = (
        db.query(SpecialDate).filter(SpecialDate.business_id == business_id, SpecialDate.date == day).first()
    )
    if special is not None:
        if special.is_closed:
            return DayHours(is_open=False, reason=SPECIAL_DATE, special_name=special.name)
        if special.open_time and special.close_time:
            return DayHours(
                is_open=True,
                reason=SPECIAL_DATE,
                open_minutes=parse_clock(special.open_time),
                close_minutes=parse_clock(special.close_time),
                special_name=special.name,
            )

    rows = db.query(BusinessHours).filter(BusinessHours.business_id == business_id).all()
    if not rows:
        return DayHours(is_open=True, reason=NO_HOURS_CONFIGURED)

    weekday = sunday_based_weekday(day)
    row = next((r for r in rows if r.day_of_week == weekday), None)
    if row is None or row.is_closed or not row.open_time or not row.close_time:
        return DayHours(is_open=False, reason=REGULAR_CLOSED)
    return DayHours(
        is_open=True,
        reason=REGULAR_HOURS,
        open_minutes=parse_clock(row.open_time),
        close_minutes=parse_clock(row.close_time),
    )


def opening_hours_violation(db: Session, business: Business, start: datetime, end: datetime) -> Optional[str]:
    """Why ``[start, end)`` (naive UTC) falls outside opening hours, or None."""
    zone = business_zone(business.timezone)
    day = to_local(start, zone).date()
    hours = hours_for_date(db, business.id, day)
    if not hours.is_open:
        return hours.closed_message()
    if not hours.restricted:
        return None
    opens = local_minutes_to_utc(day, hours.open_minutes, zone)
    closes = local_minutes_to_utc(day, hours.close_minutes, zone)
    if start < opens or end > closes:
        return (
            f"Outside business hours ({format_clock(hours.open_minutes)}-{format_clock(hours.close_minutes)})"
        )
    return None


def buffer_for(business: Optional[Business], service: Optional[Service]) -> timedelta:
    minutes = (service.buffer_minutes if service is not None else None) or (
        business.buffer_minutes if business is not None else None
    )
    return timedelta(minutes=minutes or 0)
