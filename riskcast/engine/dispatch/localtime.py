"""Wall-clock conversion for per-user eligibility checks."""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LocalTime:
    timezone: str
    date: date
    hour: int
    minute: int


def load_zone(name: Optional[str], fallback: str = "UTC") -> tuple[str, ZoneInfo]:
    """Load an IANA zone, falling back when the name is missing or unknown."""
    if name:
        try:
            return name, ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("unknown_timezone", timezone=name, fallback=fallback)
    return fallback, ZoneInfo(fallback)


def local_time(now: datetime, tz_name: Optional[str], fallback: str = "UTC") -> LocalTime:
    """
    Express ``now`` as wall-clock parts in ``tz_name``.

    Naive datetimes are taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    name, zone = load_zone(tz_name, fallback)
    local = now.astimezone(zone)
    return LocalTime(timezone=name, date=local.date(), hour=local.hour, minute=local.minute)


def local_hour_for(target_date: date, now: datetime, tz_name: Optional[str], fallback: str = "UTC") -> int:
    """
    Local hour to judge ``target_date`` at.

    A target date already in the past is fully elapsed and counts as hour 23.
    """
    current = local_time(now, tz_name, fallback)
    if target_date < current.date:
        return 23
    return current.hour
