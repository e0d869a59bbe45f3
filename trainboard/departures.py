from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, TypedDict

from .corridor import get_station
from .fetchers.base import REQUEST_TIMEOUT_SECONDS
from .fetchers.official import fetch_official_departures
from .fetchers.realtime import fetch_realtime_departures
from .normalize import DepartureRow, DepartureRowPayload, backfill_platforms


SOURCE_REALTIME = "realtime"
SOURCE_OFFICIAL = "official"

DEFAULT_LIMIT = 3
MIN_LIMIT = 1
MAX_LIMIT = 10

logger = logging.getLogger(__name__)


class DeparturesError(RuntimeError):
    status_code = 500


class UnknownStationError(DeparturesError):
    status_code = 400

    def __init__(self, station_key: str) -> None:
        super().__init__("station inconnue")
        self.station_key = station_key


class AllSourcesExhaustedError(DeparturesError):
    status_code = 502

    def __init__(self, station_key: str) -> None:
        super().__init__("Erreur données trains")
        self.station_key = station_key


class DeparturesPayload(TypedDict):
    station: str
    rows: List[DepartureRowPayload]
    source: str


@dataclass
class DeparturesResult:
    station: str
    source: str
    rows: List[DepartureRow] = field(default_factory=list)

    def as_dict(self) -> DeparturesPayload:
        return {
            "station": self.station,
            "rows": [row.as_dict() for row in self.rows],
            "source": self.source,
        }


def clamp_limit(value: Any, default: int = DEFAULT_LIMIT) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        limit = default
    return max(MIN_LIMIT, min(MAX_LIMIT, limit))


def aggregate_window(rows: Sequence[DepartureRow], limit: Any = DEFAULT_LIMIT) -> List[DepartureRow]:
    """Sort by departure time (unknown times last) and keep the first ``limit`` rows.

    ``sorted`` is stable, so rows sharing a timestamp keep their source order.
    """
    ordered = sorted(
        rows,
        key=lambda row: (row.departure_timestamp is None, row.departure_timestamp or 0),
    )
    return ordered[: clamp_limit(limit)]


def get_departures(
    station_key: str,
    dest: Optional[str] = None,
    limit: Any = DEFAULT_LIMIT,
    api_key: Optional[str] = None,
    timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    now_ms: Optional[int] = None,
    known_platforms: Optional[Mapping[str, str]] = None,
) -> DeparturesResult:
    """Next corridor departures from the real-time feed, else the official API.

    ``dest`` is accepted for the Le Havre board but does not change the
    output: Paris-bound and Rouen-terminating trains share one corridor.
    """
    station = get_station(station_key)
    if station is None:
        raise UnknownStationError(station_key)

    if dest:
        logger.debug("Destination hint '%s' for %s has no effect on the corridor.", dest, station.key)

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

    rows = fetch_realtime_departures(station, timeout_seconds=timeout_seconds, now_ms=now_ms)
    source = SOURCE_REALTIME

    if not rows:
        if not api_key:
            logger.warning("Real-time feed unavailable for %s and no SNCF_API_KEY for fallback.", station.key)
            raise AllSourcesExhaustedError(station.key)
        logger.info("Real-time feed unavailable for %s; falling back to SNCF API.", station.key)
        rows = fetch_official_departures(station, api_key, timeout_seconds=timeout_seconds, now_ms=now_ms)
        source = SOURCE_OFFICIAL
        if not rows:
            logger.error("Both departure sources failed for %s.", station.key)
            raise AllSourcesExhaustedError(station.key)
        if known_platforms:
            rows = backfill_platforms(rows, known_platforms)

    return DeparturesResult(
        station=station.key,
        source=source,
        rows=aggregate_window(rows, limit),
    )
