from __future__ import annotations

import enum
import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypedDict, Union

from apscheduler.schedulers.background import BackgroundScheduler

from .config import TrackedRoute, get_api_key
from .corridor import get_station
from .departures import DeparturesError, DeparturesResult, get_departures
from .normalize import DepartureRow, DepartureStatus
from .timeutils import add_minutes


DELAY_STEP_MINUTES = 5
DEFAULT_POLL_INTERVAL_SECONDS = 30
DEFAULT_BOARD_DELAY_THRESHOLD = 3
RECENT_ALERTS_LIMIT = 50
BOARD_ROUTE_ID = "board"

logger = logging.getLogger(__name__)


class ChangeType(str, enum.Enum):
    DELAY = "delay"
    CANCELLATION = "cancellation"
    PLATFORM_CHANGE = "platform_change"


DedupKey = Tuple[str, Union[int, str]]


@dataclass(frozen=True)
class TrackedRouteStatus:
    route_id: str
    train_number: str
    status: DepartureStatus
    delay_minutes: int
    platform: str
    observed_at: int

    @classmethod
    def from_row(cls, route_id: str, row: DepartureRow, observed_at: Optional[int] = None) -> "TrackedRouteStatus":
        return cls(
            route_id=route_id,
            train_number=row.train_number,
            status=row.status,
            delay_minutes=row.delay_minutes,
            platform=row.platform,
            observed_at=observed_at if observed_at is not None else int(time.time()),
        )

    @classmethod
    def neutral(cls, route_id: str, train_number: str) -> "TrackedRouteStatus":
        return cls(
            route_id=route_id,
            train_number=train_number,
            status=DepartureStatus.ON_TIME,
            delay_minutes=0,
            platform="",
            observed_at=int(time.time()),
        )


class AlertPayload(TypedDict):
    change_type: str
    route_id: str
    train_number: str
    title: str
    body: str
    delay_minutes: int
    platform: str
    scheduled_time: str
    destination: str
    created_at: int


@dataclass(frozen=True)
class Alert:
    change_type: ChangeType
    route_id: str
    train_number: str
    title: str
    body: str
    delay_minutes: int
    platform: str
    scheduled_time: str
    destination: str
    created_at: int

    def as_dict(self) -> AlertPayload:
        return {
            "change_type": self.change_type.value,
            "route_id": self.route_id,
            "train_number": self.train_number,
            "title": self.title,
            "body": self.body,
            "delay_minutes": self.delay_minutes,
            "platform": self.platform,
            "scheduled_time": self.scheduled_time,
            "destination": self.destination,
            "created_at": self.created_at,
        }


def has_status_changed(previous: TrackedRouteStatus, current: TrackedRouteStatus) -> bool:
    return (
        previous.status != current.status
        or previous.delay_minutes != current.delay_minutes
        or previous.platform != current.platform
        or abs(previous.delay_minutes - current.delay_minutes) >= DELAY_STEP_MINUTES
    )


def detect_change_type(previous: TrackedRouteStatus, current: TrackedRouteStatus) -> Optional[ChangeType]:
    """Classify a transition: platform first, then cancellation, then delay.

    A platform change needs a platform on both sides. Official-API rows often
    carry no platform, so a source switch or a first announcement would
    otherwise read as a change.
    """
    if previous.platform and current.platform and previous.platform != current.platform:
        return ChangeType.PLATFORM_CHANGE
    if current.status is DepartureStatus.CANCELLED:
        if previous.status is not DepartureStatus.CANCELLED:
            return ChangeType.CANCELLATION
        return None
    if previous.delay_minutes <= 0 and current.delay_minutes > 0:
        return ChangeType.DELAY
    if current.delay_minutes - previous.delay_minutes >= DELAY_STEP_MINUTES:
        return ChangeType.DELAY
    return None


def dedup_key(change_type: ChangeType, train_number: str, delay_minutes: int) -> DedupKey:
    if change_type is ChangeType.DELAY:
        return (train_number, delay_minutes)
    return (train_number, change_type.value)


def build_alert(change_type: ChangeType, route_id: str, row: DepartureRow, origin_name: str) -> Alert:
    origin = row.origin or origin_name
    trip = f"{origin} -> {row.destination}"
    number = row.train_number or "?"

    if change_type is ChangeType.DELAY:
        new_departure = add_minutes(row.scheduled_time, row.delay_minutes)
        title = f"RETARD TRAIN {number} +{row.delay_minutes} min"
        body = f"{trip} initialement prévue à {row.scheduled_time}\nPartira à {new_departure}"
        if row.disruption:
            body += f"\n{row.disruption}"
    elif change_type is ChangeType.CANCELLATION:
        title = f"ANNULATION TRAIN {number}"
        body = f"{trip} initialement prévue à {row.scheduled_time}\nTrain annulé"
    else:
        title = f"CHANGEMENT VOIE {number}"
        body = f"{trip}\nNouvelle voie: {row.platform}"

    return Alert(
        change_type=change_type,
        route_id=route_id,
        train_number=row.train_number,
        title=title,
        body=body,
        delay_minutes=row.delay_minutes,
        platform=row.platform,
        scheduled_time=row.scheduled_time,
        destination=row.destination,
        created_at=int(time.time()),
    )


def log_notifier(alert: Alert) -> None:
    logger.info("Alert for route %s: %s", alert.route_id, alert.title)


Fetcher = Callable[[TrackedRoute], DeparturesResult]
Notifier = Callable[[Alert], None]


def _default_fetcher(route: TrackedRoute) -> DeparturesResult:
    return get_departures(route.station, dest=route.dest, limit=1, api_key=get_api_key())


class MonitoringSession:
    """Watches the next train of each tracked route and decides when to alert.

    The session owns its status store, the set of alerts already fired, and
    its scheduler job. Nothing is persisted; a new session starts from
    scratch.
    """

    def __init__(
        self,
        routes: Iterable[TrackedRoute],
        fetcher: Optional[Fetcher] = None,
        notifier: Optional[Notifier] = None,
        interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        board_delay_threshold: int = DEFAULT_BOARD_DELAY_THRESHOLD,
    ) -> None:
        self.routes: List[TrackedRoute] = list(routes)
        self.interval_seconds = interval_seconds
        self.board_delay_threshold = board_delay_threshold
        self._fetcher = fetcher or _default_fetcher
        self._notifier = notifier or log_notifier
        self._lock = threading.Lock()
        self._statuses: Dict[str, TrackedRouteStatus] = {}
        self._applied_sequence: Dict[str, int] = {}
        self._fired: Set[DedupKey] = set()
        self._recent: Deque[Alert] = deque(maxlen=RECENT_ALERTS_LIMIT)
        self._sequence = itertools.count(1)
        self._scheduler: Optional[BackgroundScheduler] = None
        self._owns_scheduler = False
        self._job = None

    @property
    def running(self) -> bool:
        return self._job is not None

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    def get_status(self, route_id: str) -> Optional[TrackedRouteStatus]:
        with self._lock:
            return self._statuses.get(route_id)

    def recent_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self._recent)

    def observe(
        self,
        route_id: str,
        row: DepartureRow,
        origin_name: str = "",
        sequence: Optional[int] = None,
    ) -> Optional[Alert]:
        """Compare the route's next train with the last observation."""
        current = TrackedRouteStatus.from_row(route_id, row)
        with self._lock:
            if sequence is not None:
                last_applied = self._applied_sequence.get(route_id)
                if last_applied is not None and sequence < last_applied:
                    logger.debug("Discarding stale poll %s for route %s.", sequence, route_id)
                    return None
                self._applied_sequence[route_id] = sequence

            previous = self._statuses.get(route_id)
            self._statuses[route_id] = current

            if previous is None:
                logger.info("Route %s: baseline train %s (%s).", route_id, current.train_number, current.status.value)
                return None
            if previous.train_number != current.train_number:
                logger.info(
                    "Route %s: next train is now %s (was %s).",
                    route_id,
                    current.train_number,
                    previous.train_number,
                )
                # The new train is judged against an on-time, unassigned start.
                previous = TrackedRouteStatus.neutral(route_id, current.train_number)
            if not has_status_changed(previous, current):
                return None

            change_type = detect_change_type(previous, current)
            if change_type is None:
                return None
            key = dedup_key(change_type, current.train_number, current.delay_minutes)
            if key in self._fired:
                logger.debug("Route %s: %s already notified for %s.", route_id, change_type.value, key)
                return None
            self._fired.add(key)
            alert = build_alert(change_type, route_id, row, origin_name)
            self._recent.append(alert)

        self._deliver(alert)
        return alert

    def scan_board(self, rows: Sequence[DepartureRow], origin_name: str = "") -> List[Alert]:
        """Raise a delay alert for any board row at or above the delay threshold."""
        alerts: List[Alert] = []
        with self._lock:
            for row in rows:
                if row.status is DepartureStatus.CANCELLED or row.delay_minutes < self.board_delay_threshold:
                    continue
                key = dedup_key(ChangeType.DELAY, row.train_number, row.delay_minutes)
                if key in self._fired:
                    continue
                self._fired.add(key)
                alert = build_alert(ChangeType.DELAY, BOARD_ROUTE_ID, row, origin_name)
                self._recent.append(alert)
                alerts.append(alert)
        for alert in alerts:
            self._deliver(alert)
        return alerts

    def poll_route(self, route: TrackedRoute, sequence: Optional[int] = None) -> Optional[Alert]:
        try:
            result = self._fetcher(route)
        except DeparturesError as exc:
            logger.warning("Monitor poll for route %s failed: %s", route.id, exc)
            return None
        if not result.rows:
            logger.info("Route %s: no upcoming train.", route.id)
            return None
        station = get_station(route.station)
        origin_name = station.name if station else route.station
        return self.observe(route.id, result.rows[0], origin_name=origin_name, sequence=sequence)

    def poll_once(self) -> List[Alert]:
        sequence = self.next_sequence()
        alerts: List[Alert] = []
        for route in self.routes:
            try:
                alert = self.poll_route(route, sequence=sequence)
            except Exception as exc:  # One bad route must not stop the cycle
                logger.error("Unexpected error polling route %s: %s", route.id, exc)
                continue
            if alert is not None:
                alerts.append(alert)
        return alerts

    def _deliver(self, alert: Alert) -> None:
        try:
            self._notifier(alert)
        except Exception as exc:
            logger.error("Notifier failed for %s: %s", alert.title, exc)

    def start(self, scheduler: Optional[BackgroundScheduler] = None, run_now: bool = True) -> None:
        if self.running:
            return
        if scheduler is None:
            scheduler = BackgroundScheduler()
            scheduler.start()
            self._owns_scheduler = True
        self._scheduler = scheduler
        self._job = scheduler.add_job(
            self.poll_once,
            "interval",
            seconds=self.interval_seconds,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Monitoring %s route(s) every %ss.",
            len(self.routes),
            self.interval_seconds,
        )
        if run_now:
            self.poll_once()

    def stop(self) -> None:
        if self._job is not None:
            self._job.remove()
            self._job = None
        if self._owns_scheduler and self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._owns_scheduler = False
        logger.info("Monitoring stopped.")
