from __future__ import annotations

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo


LOCAL_TZ = ZoneInfo("Europe/Paris")
MISSING_TIME = "--:--"
MINUTES_PER_DAY = 24 * 60


def parse_iso_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the real-time feed.

    Naive values are taken as Paris local time.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=LOCAL_TZ)
    return parsed


def parse_compact_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse the SNCF API ``YYYYMMDDTHHMMSS`` form (Paris local time)."""
    if not value or not isinstance(value, str) or len(value) < 13 or value[8:9] != "T":
        return None
    try:
        year = int(value[0:4])
        month = int(value[4:6])
        day = int(value[6:8])
        hour = int(value[9:11])
        minute = int(value[11:13])
        second = int(value[13:15]) if len(value) >= 15 else 0
        return datetime(year, month, day, hour, minute, second, tzinfo=LOCAL_TZ)
    except ValueError:
        return None


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def format_hhmm(value: Optional[datetime]) -> str:
    if value is None:
        return MISSING_TIME
    return value.astimezone(LOCAL_TZ).strftime("%H:%M")


def hhmm_to_minutes(hhmm: str) -> Optional[int]:
    if not hhmm or hhmm == MISSING_TIME:
        return None
    parts = hhmm.split(":")
    if len(parts) != 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def add_minutes(hhmm: str, minutes: int) -> str:
    """Add minutes to a wall-clock ``HH:MM``, wrapping past midnight."""
    start = hhmm_to_minutes(hhmm)
    if start is None:
        return MISSING_TIME
    total = (start + minutes) % MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def delay_minutes_between(scheduled_ms: Optional[int], actual_ms: Optional[int]) -> Optional[int]:
    if scheduled_ms is None or actual_ms is None:
        return None
    return max(0, int(round((actual_ms - scheduled_ms) / 60000)))
