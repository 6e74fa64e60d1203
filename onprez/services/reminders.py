from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from onprez.core.clock import utcnow
from onprez.core.config import MAX_REMINDER_COUNT, REMINDER_HOURS
from onprez.models.appointment import Appointment, AppointmentReminder
from onprez.services.appointments import ACTIVE_STATUSES

logger = logging.getLogger(__name__)

REMINDER_TOLERANCE = timedelta(minutes=30)


def reminder_type_for(hours_before: int) -> str:
    return f"{hours_before}h"


@dataclass
class ReminderRunResult:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    # (appointment, reminder_type) pairs to announce once the run is committed
    notifications: List[tuple] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"processed": self.processed, "sent": self.sent, "skipped": self.skipped}


def find_due_reminders(
    db: Session,
    now: datetime,
    hours_before: int,
    max_reminders: int = MAX_REMINDER_COUNT,
) -> List[Appointment]:
    """Active appointments starting within the tolerance of ``now + hours_before``."""
    target = now + timedelta(hours=hours_before)
    already_sent = select(AppointmentReminder.appointment_id).where(
        AppointmentReminder.reminder_type == reminder_type_for(hours_before)
    )
    return (
        db.query(Appointment)
        .filter(
            Appointment.status.in_([status.value for status in ACTIVE_STATUSES]),
            Appointment.start_time >= target - REMINDER_TOLERANCE,
            Appointment.start_time <= target + REMINDER_TOLERANCE,
            Appointment.reminder_count < max_reminders,
            ~Appointment.id.in_(already_sent),
        )
        .order_by(Appointment.start_time.asc())
        .all()
    )


def process_reminders(
    db: Session,
    now: Optional[datetime] = None,
    *,
    hours: Iterable[int] = REMINDER_HOURS,
    max_reminders: int = MAX_REMINDER_COUNT,
) -> ReminderRunResult:
    """Record due reminders. Status and times are never touched; the caller commits then notifies."""
    now = now or utcnow()
    result = ReminderRunResult()
    for hours_before in sorted(set(hours), reverse=True):
        reminder_type = reminder_type_for(hours_before)
        for appointment in find_due_reminders(db, now, hours_before, max_reminders):
            result.processed += 1
            # An earlier offset in this run may have used the last slot
            if (appointment.reminder_count or 0) >= max_reminders:
                result.skipped += 1
                continue
            db.add(
                AppointmentReminder(
                    appointment_id=appointment.id,
                    reminder_type=reminder_type,
                    sent_at=now,
                )
            )
            appointment.reminder_count = (appointment.reminder_count or 0) + 1
            result.sent += 1
            result.notifications.append((appointment, reminder_type))
    db.flush()
    logger.info(
        "reminder run processed=%s sent=%s skipped=%s",
        result.processed,
        result.sent,
        result.skipped,
    )
    return result
