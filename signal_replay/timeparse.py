from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Optional, Union

from .models import LONG, SHORT

MS_PER_MINUTE = 60_000
DEFAULT_TIMEFRAME = "1h"
DEFAULT_LOOKAHEAD_HOURS = 4.0

_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_INTERVAL_RE = re.compile(r"^(\d+)(m|h|d|w)$")

_UNIT_MS = {
    "m": MS_PER_MINUTE,
    "h": 60 * MS_PER_MINUTE,
    "d": 24 * 60 * MS_PER_MINUTE,
    "w": 7 * 24 * 60 * MS_PER_MINUTE,
}

_TIMEFRAMES = {
    "1 minute": "1m",
    "5 minutes": "5m",
    "15 minutes": "15m",
    "1 hour": "1h",
    "4 hours": "4h",
    "1 day": "1d",
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "1h": "1h",
    "4h": "4h",
    "1d": "1d",
}

Number = Union[str, int, float, None]


def normalize_direction(direction: str) -> str:
    upper = (direction or "").strip().upper()
    if upper in (LONG, SHORT):
        return upper
    raise ValueError(f"Invalid direction: {direction}")


def parse_start_time_utc_ms(selected_date: str, start_time: str, tz_policy: str = "utc") -> int:
    """Combine a DD/MM/YYYY date and an HH:MM wall-clock time into UTC epoch ms.

    The time must be a bare clock value; anything carrying its own date is rejected.
    """
    dm = _DATE_RE.match((selected_date or "").strip())
    if not dm:
        raise ValueError(f"Invalid selected date: {selected_date}")
    tm = _TIME_RE.match((start_time or "").strip())
    if not tm:
        raise ValueError(f"Invalid start time: {start_time}")
    if tz_policy != "utc":
        raise ValueError(f"Unsupported timezone policy: {tz_policy}")

    day, month, year = (int(g) for g in dm.groups())
    hours, minutes = (int(g) for g in tm.groups())
    try:
        dt = datetime(year, month, day, hours, minutes, tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"Invalid datetime: {selected_date} {start_time}") from None
    return int(dt.timestamp() * 1000)


def _to_float(value: Number) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def parse_leverage(value: Number) -> float:
    """'5x' -> 5.0; missing, non-numeric or non-positive -> 1.0."""
    if isinstance(value, str):
        value = value.strip().lower()
        if value.endswith("x"):
            value = value[:-1]
        if not value:
            return 1.0
    lev = _to_float(value)
    if lev is None or lev <= 0:
        return 1.0
    return lev


def parse_percentage(value: Number) -> float:
    pct = _to_float(value)
    return 0.0 if pct is None else pct


def lookahead_hours(value: Number) -> float:
    hours = _to_float(value)
    if hours is None or hours <= 0:
        return DEFAULT_LOOKAHEAD_HOURS
    return hours


def lookahead_ms(value: Number) -> int:
    return int(lookahead_hours(value) * 60 * MS_PER_MINUTE)


def map_timeframe_to_interval(timeframe: Optional[str]) -> str:
    if not timeframe:
        return DEFAULT_TIMEFRAME
    interval = _TIMEFRAMES.get(timeframe.strip().lower())
    if interval is None:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return interval


def interval_to_ms(interval: str) -> int:
    m = _INTERVAL_RE.match(interval or "")
    if not m:
        raise ValueError(f"Unsupported interval: {interval}")
    return int(m.group(1)) * _UNIT_MS[m.group(2)]


def entry_open_time(start_time_utc_ms: int, interval_ms: int) -> int:
    return (int(start_time_utc_ms) // interval_ms) * interval_ms
