from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..corridor import Station, matches_direction
from ..normalize import DepartureRow, RowDraft, is_departed, normalize_draft
from ..timeutils import format_hhmm, parse_iso_timestamp, to_epoch_ms
from .base import REQUEST_TIMEOUT_SECONDS, MalformedPayloadError, as_mapping, fetch_json, first_text


SOURCE_NAME = "realtime"
DEPARTURES_URL = "https://www.garesetconnexions.sncf/schedule-table/Departures/{uic_code}"

# The schedule-table endpoint sits behind bot protection and rejects
# requests that do not look like a browser.
BROWSER_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "fr-FR,fr;q=0.9,en;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
    ),
    "Referer": "https://www.garesetconnexions.sncf/",
}

CANCELLED_STATUS = "SUPPRIME"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeEntry:
    train_number: str
    destination: str
    scheduled_time: str
    origin: str = ""
    actual_time: Optional[str] = None
    train_type: Optional[str] = None
    train_status: Optional[str] = None
    delay: Optional[int] = None
    platform: Optional[str] = None
    advisories: Tuple[str, ...] = ()
    detail_url: Optional[str] = None


def _advisories(raw: dict) -> Tuple[str, ...]:
    fragments: List[str] = []
    infos = raw.get("shortTermInformations")
    if isinstance(infos, list):
        for info in infos:
            text = first_text(*(as_mapping(info).get(k) for k in ("text", "message", "label")))
            if text:
                fragments.append(text)
    modification = first_text(as_mapping(raw.get("statusModification")).get("text"))
    if modification:
        fragments.append(modification)
    return tuple(fragments)


def parse_entry(raw: Any) -> Optional[RealtimeEntry]:
    """Map one raw schedule-table object, or None when required fields are missing."""
    if not isinstance(raw, dict):
        return None
    traffic = as_mapping(raw.get("traffic"))
    destination = first_text(traffic.get("destination"))
    scheduled_time = first_text(raw.get("scheduledTime"))
    if not destination or not scheduled_time:
        return None

    status = as_mapping(raw.get("informationStatus"))
    try:
        delay = int(status["delay"]) if status.get("delay") is not None else None
    except (TypeError, ValueError):
        delay = None

    platform = as_mapping(raw.get("platform"))
    return RealtimeEntry(
        train_number=first_text(raw.get("trainNumber")),
        destination=destination,
        scheduled_time=scheduled_time,
        origin=first_text(traffic.get("origin")),
        actual_time=first_text(raw.get("actualTime")) or None,
        train_type=first_text(raw.get("trainType")) or None,
        train_status=first_text(status.get("trainStatus")) or None,
        delay=delay,
        platform=first_text(platform.get("track")) or None,
        advisories=_advisories(raw),
        detail_url=first_text(raw.get("TrafficDetailsUrl")) or None,
    )


def to_draft(entry: RealtimeEntry) -> Optional[RowDraft]:
    scheduled = parse_iso_timestamp(entry.scheduled_time)
    if scheduled is None:
        return None
    actual = parse_iso_timestamp(entry.actual_time) or scheduled
    return RowDraft(
        train_number=entry.train_number,
        destination=entry.destination,
        origin=entry.origin,
        scheduled_time=format_hhmm(scheduled),
        actual_time=format_hhmm(actual),
        scheduled_timestamp=to_epoch_ms(scheduled),
        departure_timestamp=to_epoch_ms(actual),
        cancelled=(entry.train_status or "").upper() == CANCELLED_STATUS,
        provider_delay=entry.delay or 0,
        train_type=entry.train_type or "TER",
        platform=entry.platform or "",
        disruptions=list(entry.advisories),
        detail_url=entry.detail_url or "",
    )


def parse_departures(payload: Any, station: Station, now_ms: int) -> List[DepartureRow]:
    if not isinstance(payload, list):
        raise MalformedPayloadError("Schedule table payload is not a list.")

    rows: List[DepartureRow] = []
    skipped = 0
    for raw in payload:
        entry = parse_entry(raw)
        if entry is None:
            skipped += 1
            continue
        if not matches_direction(station.key, entry.destination):
            continue
        draft = to_draft(entry)
        if draft is None:
            skipped += 1
            continue
        if is_departed(draft.departure_timestamp, now_ms, draft.cancelled):
            continue
        rows.append(normalize_draft(station.key, draft))

    if skipped:
        logger.debug("Skipped %s incomplete real-time entries for %s.", skipped, station.key)
    return rows


def fetch_realtime_departures(
    station: Station,
    timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    now_ms: Optional[int] = None,
) -> Optional[List[DepartureRow]]:
    """Departures from the real-time schedule table, or None when unavailable."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    url = DEPARTURES_URL.format(uic_code=station.uic_code)
    payload = fetch_json(SOURCE_NAME, url, timeout_seconds, headers=BROWSER_HEADERS)
    if not payload:
        return None

    try:
        rows = parse_departures(payload, station, now_ms)
    except MalformedPayloadError as exc:
        logger.warning("Real-time feed for %s unusable: %s", station.key, exc)
        return None
    except Exception as exc:  # Explicit catch to keep the fallback path reachable
        logger.error("Unexpected error parsing real-time feed for %s: %s", station.key, exc)
        return None

    if not rows:
        logger.info("Real-time feed for %s had no corridor departures.", station.key)
        return None
    return rows
