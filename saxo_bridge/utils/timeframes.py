from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum


class TimeUnit(Enum):
    """Chart resolution units supported by the broker."""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


UNIT_DELTAS: dict[TimeUnit, timedelta] = {
    TimeUnit.MINUTE: timedelta(minutes=1),
    TimeUnit.HOUR: timedelta(hours=1),
    TimeUnit.DAY: timedelta(days=1),
}

# Chart "Horizon" parameter is expressed in minutes
UNIT_HORIZONS: dict[TimeUnit, int] = {
    TimeUnit.MINUTE: 1,
    TimeUnit.HOUR: 60,
    TimeUnit.DAY: 1440,
}


def parse_unit(value: str | TimeUnit) -> TimeUnit:
    """Convert names like minute/hour/day (or 1m/1h/1d) into a TimeUnit."""
    if isinstance(value, TimeUnit):
        return value
    key = value.strip().lower()
    aliases = {
        "minute": TimeUnit.MINUTE, "1m": TimeUnit.MINUTE, "m": TimeUnit.MINUTE,
        "hour": TimeUnit.HOUR, "1h": TimeUnit.HOUR, "h": TimeUnit.HOUR,
        "day": TimeUnit.DAY, "daily": TimeUnit.DAY, "1d": TimeUnit.DAY, "d": TimeUnit.DAY,
    }
    if key not in aliases:
        raise ValueError(f"Unsupported unit '{value}'. Use minute, hour or day.")
    return aliases[key]


def unit_to_timedelta(unit: TimeUnit) -> timedelta:
    return UNIT_DELTAS[unit]


def unit_to_horizon(unit: TimeUnit) -> int:
    return UNIT_HORIZONS[unit]


def span_in_units(span: timedelta, unit: TimeUnit) -> float:
    """Length of a time span measured in the given unit (may be fractional)."""
    return span / UNIT_DELTAS[unit]


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
