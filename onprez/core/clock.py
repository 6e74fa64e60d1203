from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

Clock = Callable[[], datetime]

DEFAULT_TIMEZONE = "Europe/London"

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column in the schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Client datetimes may carry an offset; storage is naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def business_zone(name: Optional[str]) -> tzinfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown business timezone %r, using %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_local(value: datetime, zone: tzinfo) -> datetime:
    """Aware wall-clock time in ``zone``; naive input is read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone)


def local_wall_clock(value: datetime, zone: tzinfo) -> datetime:
    """Wall-clock start for a series anchored at ``value``.

    Aware input keeps the caller's own wall time. The business zone is used
    for later dates when it agrees with the caller's offset at ``value``, so a
    series follows its DST changes; any other offset stays fixed.
    """
    if value.tzinfo is None:
        return to_local(value, zone)
    if value.utcoffset() == value.astimezone(zone).utcoffset():
        return value.replace(tzinfo=zone)
    return value


def combine_local(day: date, wall_time: time, zone: tzinfo) -> datetime:
    """Naive UTC instant for ``wall_time`` on ``day`` in ``zone``."""
    return to_naive_utc(datetime.combine(day, wall_time, tzinfo=zone))
