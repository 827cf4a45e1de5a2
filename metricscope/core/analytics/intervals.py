"""
Interval parsing and the default seasonal period for an interval.

Accepts both long form ("1 day", "15 minutes") and compact form ("1d", "5m").
"""

import re
from datetime import timedelta

from metricscope.core.errors import ValidationError

DEFAULT_SEASONAL_PERIOD = 7

_UNIT_SECONDS = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "h": 3600,
    "hour": 3600,
    "d": 86400,
    "day": 86400,
    "w": 7 * 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
}

_INTERVAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)?\s*([a-zA-Z]+)\s*$")

# hourly -> daily cycle, daily -> weekly, weekly -> monthly, monthly -> yearly
_SEASONAL_PERIODS = {
    timedelta(hours=1): 24,
    timedelta(days=1): 7,
    timedelta(weeks=1): 4,
    timedelta(days=30): 12,
}


def parse_interval(interval: str | timedelta) -> timedelta:
    """Parse an interval such as "1 day" or "15m" into a timedelta."""
    if isinstance(interval, timedelta):
        if interval <= timedelta(0):
            raise ValidationError("Interval must be positive", "parse_interval", interval=interval)
        return interval

    match = _INTERVAL_RE.match(interval or "")
    if not match:
        raise ValidationError("Unrecognized interval", "parse_interval", interval=interval)

    amount = float(match.group(1)) if match.group(1) else 1.0
    unit = match.group(2).lower()
    if unit not in _UNIT_SECONDS and unit.endswith("s"):
        unit = unit[:-1]
    if unit not in _UNIT_SECONDS:
        raise ValidationError("Unrecognized interval unit", "parse_interval", interval=interval)
    if amount <= 0:
        raise ValidationError("Interval must be positive", "parse_interval", interval=interval)

    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


def default_seasonal_period(interval: str | timedelta | None) -> int:
    """Seasonal period implied by the sampling interval, 7 when nothing better is known."""
    if interval is None:
        return DEFAULT_SEASONAL_PERIOD
    try:
        step = parse_interval(interval)
    except ValidationError:
        return DEFAULT_SEASONAL_PERIOD
    return _SEASONAL_PERIODS.get(step, DEFAULT_SEASONAL_PERIOD)
