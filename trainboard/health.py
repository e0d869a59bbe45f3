from __future__ import annotations

import time
from typing import Dict, Iterable, Optional, TypedDict

from .cache import Cache


START_TIME = time.time()


class BoardHealth(TypedDict):
    last_update: str
    status: str
    source: Optional[str]
    fetch_count: int
    error_count: int


class HealthStatus(TypedDict):
    status: str
    uptime_seconds: int
    boards: Dict[str, BoardHealth]


def board_key(station_key: str) -> str:
    return f"board:{station_key}"


def _format_age(last_updated: Optional[int], now: int) -> str:
    if not last_updated:
        return "never"
    delta = max(0, now - last_updated)
    return f"{delta}s ago"


def _source_status(
    last_updated: Optional[int],
    last_error_at: Optional[int],
    now: int,
    staleness_warning_sec: int,
    staleness_critical_sec: int,
) -> str:
    if last_error_at and (last_updated is None or last_error_at >= last_updated):
        return "error"
    if last_updated is None:
        return "error"
    age = now - last_updated
    if age >= staleness_critical_sec:
        return "error"
    if age >= staleness_warning_sec:
        return "stale"
    return "healthy"


def get_health_status(
    cache: Cache,
    staleness_warning_sec: int,
    staleness_critical_sec: int,
    station_keys: Iterable[str],
) -> HealthStatus:
    now = int(time.time())
    metadata = cache.get_all_metadata()

    def build_board(station_key: str) -> BoardHealth:
        entry = metadata.get(board_key(station_key), {})
        last_updated = entry.get("last_updated")
        status = _source_status(
            last_updated=last_updated,
            last_error_at=entry.get("last_error_at"),
            now=now,
            staleness_warning_sec=staleness_warning_sec,
            staleness_critical_sec=staleness_critical_sec,
        )
        return {
            "last_update": _format_age(last_updated, now),
            "status": status,
            "source": entry.get("source"),
            "fetch_count": int(entry.get("fetch_count", 0)),
            "error_count": int(entry.get("error_count", 0)),
        }

    boards = {station_key: build_board(station_key) for station_key in station_keys}
    statuses = [board["status"] for board in boards.values()]

    # An official-API answer means the real-time feed is down for that board.
    degraded_source = any(board["source"] not in (None, "realtime") for board in boards.values())

    overall_status = "healthy"
    if statuses and all(status == "error" for status in statuses):
        overall_status = "down"
    elif "error" in statuses or "stale" in statuses or degraded_source:
        overall_status = "degraded"

    return {
        "status": overall_status,
        "uptime_seconds": int(now - START_TIME),
        "boards": boards,
    }
