from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

APPOINTMENT_CREATED = "appointment.created"
APPOINTMENT_STATUS_CHANGED = "appointment.status.changed"
APPOINTMENT_REMINDER = "appointment.reminder"

Handler = Callable[[Dict[str, Any]], None]


class EventBus:
    """In-process pub/sub for appointment events.

    Delivery is synchronous and fire-and-forget: a failing subscriber is
    logged and the remaining subscribers still run.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_name: str, handler: Handler) -> None:
        handlers = self._subscribers.setdefault(event_name, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, payload: Dict[str, Any]) -> int:
        """Deliver ``payload`` and return how many subscribers handled it."""
        delivered = 0
        for handler in list(self._subscribers.get(event_name, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception(
                    "event handler failed event=%s handler=%s appointment_id=%s",
                    event_name,
                    getattr(handler, "__name__", repr(handler)),
                    payload.get("appointment_id"),
                    extra={"event": event_name, "appointment_id": payload.get("appointment_id")},
                )
                continue
            delivered += 1
        if not delivered:
            logger.debug("event %s had no successful subscribers", event_name)
        return delivered


event_bus = EventBus()
