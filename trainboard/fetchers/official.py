from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import quote

from ..corridor import Station, matches_direction
from ..normalize import DepartureRow, RowDraft, is_departed, normalize_draft
from ..timeutils import format_hhmm, parse_compact_timestamp, to_epoch_ms
from .base import REQUEST_TIMEOUT_SECONDS, MalformedPayloadError, as_mapping, fetch_json, first_text


SOURCE_NAME = "official"
SNCF_BASE_URL = "https://api.sncf.com/v1/coverage/sncf"
DEPARTURES_COUNT = 30

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OfficialEntry:
    direction: str
    base_departure: str
    real_departure: str
    train_number: str = ""
    commercial_mode: Optional[str] = None
    platform: Optional[str] = None
    cancelled: bool = False


def parse_entry(raw: Any) -> Optional[OfficialEntry]:
    """Map one ``departures[]`` item, or None when required fields are missing."""
    if not isinstance(raw, dict):
        return None
    info = as_mapping(raw.get("display_informations"))
    stop_date_time = as_mapping(raw.get("stop_date_time"))

    direction = first_text(info.get("direction"))
    base = first_text(
        stop_date_time.get("base_departure_date_time"),
        stop_date_time.get("departure_date_time"),
    )
    if not direction or not base:
        return None
    real = first_text(stop_date_time.get("departure_date_time")) or base

    platform = first_text(
        as_mapping(raw.get("stop_point")).get("platform_code"),
        raw.get("platform_code"),
        info.get("platform"),
    )
    return OfficialEntry(
        direction=direction,
        base_departure=base,
        real_departure=real,
        train_number=re.sub(r"\s", "", first_text(info.get("headsign"), info.get("code"))),
        commercial_mode=first_text(info.get("commercial_mode")) or None,
        platform=platform or None,
        cancelled=raw.get("status") == "cancelled" or info.get("status") == "cancelled",
    )


def to_draft(entry: OfficialEntry) -> Optional[RowDraft]:
    scheduled = parse_compact_timestamp(entry.base_departure)
    if scheduled is None:
        return None
    actual = parse_compact_timestamp(entry.real_departure) or scheduled
    return RowDraft(
        train_number=entry.train_number,
        destination=entry.direction,
        scheduled_time=format_hhmm(scheduled),
        actual_time=format_hhmm(actual),
        scheduled_timestamp=to_epoch_ms(scheduled),
        departure_timestamp=to_epoch_ms(actual),
        cancelled=entry.cancelled,
        train_type=entry.commercial_mode or "TER",
        platform=entry.platform or "",
    )


def parse_departures(payload: Any, station: Station, now_ms: int) -> List[DepartureRow]:
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Departures payload is not an object.")
    departures = payload.get("departures", [])
    if not isinstance(departures, list):
        raise MalformedPayloadError("Departures payload missing departures list.")

    rows: List[DepartureRow] = []
    for raw in departures:
        entry = parse_entry(raw)
        if entry is None or not matches_direction(station.key, entry.direction):
            continue
        draft = to_draft(entry)
        if draft is None:
            logger.debug("Unparseable departure time '%s'; skipping.", entry.base_departure)
            continue
        if is_departed(draft.departure_timestamp, now_ms, draft.cancelled):
            continue
        rows.append(normalize_draft(station.key, draft))
    return rows


def fetch_official_departures(
    station: Station,
    api_key: str,
    timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    now_ms: Optional[int] = None,
) -> Optional[List[DepartureRow]]:
    """Departures from the SNCF open data API, or None when unavailable."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    url = f"{SNCF_BASE_URL}/stop_areas/{quote(station.stop_area, safe='')}/departures"
    payload = fetch_json(
        SOURCE_NAME,
        url,
        timeout_seconds,
        params={"count": DEPARTURES_COUNT},
        auth=(api_key, ""),
    )
    if not payload:
        return None

    try:
        rows = parse_departures(payload, station, now_ms)
    except MalformedPayloadError as exc:
        logger.warning("SNCF API payload for %s unusable: %s", station.key, exc)
        return None
    except Exception as exc:  # Explicit catch to keep fetcher resilient
        logger.error("Unexpected error parsing SNCF API payload for %s: %s", station.key, exc)
        return None

    if not rows:
        logger.info("SNCF API returned no corridor departures for %s.", station.key)
        return None
    return rows
