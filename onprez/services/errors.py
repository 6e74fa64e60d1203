from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence


class OnPrezError(Exception):
    """Base for per-request domain outcomes. Never fatal to the process."""


class LifecycleError(OnPrezError):
    pass


class InvalidTransition(LifecycleError):
    def __init__(self, current: Any, target: Any) -> None:
        self.current = getattr(current, "value", current)
        self.target = getattr(target, "value", target)
        super().__init__(f"Cannot change status from {self.current} to {self.target}")


class WindowClosed(LifecycleError):
    def __init__(self, start_time: datetime, cutoff_hours: int) -> None:
        self.start_time = start_time
        self.cutoff_hours = cutoff_hours
        super().__init__(
            f"Appointments can only be cancelled or rescheduled at least {cutoff_hours} hours in advance"
        )


class OutsideBookingWindow(LifecycleError):
    def __init__(self, start_time: Optional[datetime], reason: str, violations: Sequence[Any] = ()) -> None:
        self.start_time = start_time
        self.reason = reason
        self.violations = list(violations)
        super().__init__(reason)


class ConcurrentModification(LifecycleError):
    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} was modified concurrently")


class BookingValidationError(LifecycleError):
    pass


class AccountLocked(OnPrezError):
    def __init__(self, expires_at: datetime) -> None:
        self.expires_at = expires_at
        super().__init__(f"Account locked until {expires_at.isoformat()}")


class AppointmentNotFound(LifecycleError):
    def __init__(self, appointment_id: Any) -> None:
        self.appointment_id = appointment_id
        super().__init__("Appointment not found")


class SlotUnavailable(LifecycleError):
    def __init__(self, start_time: datetime, conflicting_ids: Sequence[int], buffer_only: bool = False) -> None:
        self.start_time = start_time
        self.conflicting_ids = list(conflicting_ids)
        # Nothing overlaps; the slot only eats into another appointment's buffer
        self.buffer_only = buffer_only
        if buffer_only:
            message = "Too close to another appointment"
        elif len(self.conflicting_ids) == 1:
            message = "Conflicts with an existing appointment"
        else:
            message = f"Conflicts with {len(self.conflicting_ids)} existing appointments"
        super().__init__(message)


class BusinessClosed(LifecycleError):
    """The requested time falls outside the business's opening hours."""

    def __init__(self, start_time: datetime, reason: str) -> None:
        self.start_time = start_time
        self.reason = reason
        super().__init__(reason)
