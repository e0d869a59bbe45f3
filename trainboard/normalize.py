from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, TypedDict

from .corridor import DEFAULT_DURATION_MINUTES, Corridor, resolve_corridor
from .timeutils import MISSING_TIME, add_minutes, delay_minutes_between


logger = logging.getLogger(__name__)

DEFAULT_TRAIN_TYPE = "TER"
DISRUPTION_SEPARATOR = " — "
DEPARTED_GRACE_SECONDS = 60
CANCELLED_RETENTION_SECONDS = 300


class DepartureStatus(str, enum.Enum):
    ON_TIME = "on_time"
    DELAYED = "delayed"
    CANCELLED = "cancelled"

    @property
    def color(self) -> str:
        return _STATUS_COLORS[self]

    def label(self, delay_minutes: int = 0) -> str:
        if self is DepartureStatus.DELAYED:
            return f"Retard +{delay_minutes} min"
        if self is DepartureStatus.CANCELLED:
            return "Annulé"
        return "À l'heure"


_STATUS_COLORS = {
    DepartureStatus.ON_TIME: "green",
    DepartureStatus.DELAYED: "orange",
    DepartureStatus.CANCELLED: "red",
}


class CorridorPayload(TypedDict):
    duration_minutes: int
    stops: List[str]


class DepartureRowPayload(TypedDict):
    train_number: str
    train_type: str
    destination: str
    origin: str
    scheduled_time: str
    actual_time: str
    delay_minutes: int
    status: str
    status_label: str
    color: str
    platform: str
    departure_timestamp: Optional[int]
    disruption: str
    detail_url: str
    corridor: Optional[CorridorPayload]
    arrival_scheduled: str
    arrival_expected: str
    stops_count: int


@dataclass
class RowDraft:
    """Fields an adapter pulled out of one upstream entry, before enrichment."""

    train_number: str
    destination: str
    scheduled_time: str
    actual_time: str
    scheduled_timestamp: Optional[int]
    departure_timestamp: Optional[int]
    cancelled: bool = False
    provider_delay: int = 0
    origin: str = ""
    train_type: str = DEFAULT_TRAIN_TYPE
    platform: str = ""
    disruptions: List[str] = field(default_factory=list)
    detail_url: str = ""


@dataclass(frozen=True)
class DepartureRow:
    train_number: str
    train_type: str
    destination: str
    origin: str
    scheduled_time: str
    actual_time: str
    delay_minutes: int
    status: DepartureStatus
    platform: str
    departure_timestamp: Optional[int]
    disruption: str
    detail_url: str
    corridor: Optional[Corridor]
    arrival_scheduled: str
    arrival_expected: str

    @property
    def status_label(self) -> str:
        return self.status.label(self.delay_minutes)

    @property
    def color(self) -> str:
        return self.status.color

    @property
    def stops_count(self) -> int:
        return self.corridor.stops_count if self.corridor else 0

    def as_dict(self) -> DepartureRowPayload:
        corridor: Optional[CorridorPayload] = None
        if self.corridor is not None:
            corridor = {
                "duration_minutes": self.corridor.duration_minutes,
                "stops": list(self.corridor.stops),
            }
        return {
            "train_number": self.train_number,
            "train_type": self.train_type,
            "destination": self.destination,
            "origin": self.origin,
            "scheduled_time": self.scheduled_time,
            "actual_time": self.actual_time,
            "delay_minutes": self.delay_minutes,
            "status": self.status.value,
            "status_label": self.status_label,
            "color": self.color,
            "platform": self.platform,
            "departure_timestamp": self.departure_timestamp,
            "disruption": self.disruption,
            "detail_url": self.detail_url,
            "corridor": corridor,
            "arrival_scheduled": self.arrival_scheduled,
            "arrival_expected": self.arrival_expected,
            "stops_count": self.stops_count,
        }


def classify_status(delay_minutes: int, cancelled: bool) -> DepartureStatus:
    if cancelled:
        return DepartureStatus.CANCELLED
    if delay_minutes > 0:
        return DepartureStatus.DELAYED
    return DepartureStatus.ON_TIME


def is_departed(departure_timestamp: Optional[int], now_ms: int, cancelled: bool = False) -> bool:
    """Trains gone for longer than the grace window leave the board.

    Cancelled trains linger for the retention window so riders see them.
    """
    if departure_timestamp is None:
        return False
    window = CANCELLED_RETENTION_SECONDS if cancelled else DEPARTED_GRACE_SECONDS
    return departure_timestamp < now_ms - window * 1000


def finalize_row(draft: RowDraft, corridor: Optional[Corridor]) -> DepartureRow:
    derived = delay_minutes_between(draft.scheduled_timestamp, draft.departure_timestamp)
    delay = derived if derived is not None else max(0, int(draft.provider_delay or 0))

    duration = corridor.duration_minutes if corridor else DEFAULT_DURATION_MINUTES
    arrival_scheduled = add_minutes(draft.scheduled_time, duration)
    if draft.actual_time == draft.scheduled_time:
        arrival_expected = arrival_scheduled
    else:
        arrival_expected = add_minutes(draft.actual_time, duration)

    fragments = [text.strip() for text in draft.disruptions if text and text.strip()]

    return DepartureRow(
        train_number=draft.train_number,
        train_type=draft.train_type or DEFAULT_TRAIN_TYPE,
        destination=draft.destination,
        origin=draft.origin,
        scheduled_time=draft.scheduled_time or MISSING_TIME,
        actual_time=draft.actual_time or MISSING_TIME,
        delay_minutes=delay,
        status=classify_status(delay, draft.cancelled),
        platform=draft.platform,
        departure_timestamp=draft.departure_timestamp,
        disruption=DISRUPTION_SEPARATOR.join(fragments),
        detail_url=draft.detail_url,
        corridor=corridor,
        arrival_scheduled=arrival_scheduled,
        arrival_expected=arrival_expected,
    )


def normalize_draft(station_key: str, draft: RowDraft) -> DepartureRow:
    corridor = resolve_corridor(station_key, draft.destination)
    if corridor is None:
        logger.debug(
            "No corridor for %s towards '%s'; using default duration.",
            station_key,
            draft.destination,
        )
    return finalize_row(draft, corridor)


def backfill_platforms(rows: Sequence[DepartureRow], platforms: Mapping[str, str]) -> List[DepartureRow]:
    """Fill empty platforms from a train_number -> platform map."""
    filled: List[DepartureRow] = []
    enriched = 0
    for row in rows:
        platform = platforms.get(row.train_number) if row.train_number else None
        if not row.platform and platform:
            filled.append(replace(row, platform=platform))
            enriched += 1
        else:
            filled.append(row)
    if enriched:
        logger.info("Backfilled %s platform(s) from earlier real-time data.", enriched)
    return filled


def platform_map(rows: Sequence[DepartureRow]) -> Dict[str, str]:
    return {row.train_number: row.platform for row in rows if row.train_number and row.platform}
