from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from trainboard.corridor import resolve_corridor
from trainboard.normalize import RowDraft, finalize_row
from trainboard.timeutils import LOCAL_TZ, format_hhmm, to_epoch_ms


NOW = datetime(2026, 3, 10, 14, 0, tzinfo=LOCAL_TZ)
NOW_MS = to_epoch_ms(NOW)


def at(minutes: float) -> datetime:
    return NOW + timedelta(minutes=minutes)


def make_realtime_train(
    number="3107",
    destination="Le Havre",
    origin="Paris Saint-Lazare",
    scheduled_in=10,
    delay=0,
    train_status="",
    platform="",
    infos=None,
    modification=None,
):
    """Build a schedule-table object matching the real-time feed shape."""
    scheduled = at(scheduled_in)
    actual = at(scheduled_in + delay)
    train = {
        "trainNumber": number,
        "trainType": "TER",
        "scheduledTime": scheduled.isoformat(),
        "actualTime": actual.isoformat(),
        "traffic": {"origin": origin, "destination": destination},
        "informationStatus": {"trainStatus": train_status, "delay": delay},
        "platform": {"track": platform},
        "shortTermInformations": infos or [],
        "TrafficDetailsUrl": f"https://www.garesetconnexions.sncf/train/{number}",
    }
    if modification:
        train["statusModification"] = {"text": modification}
    return train


def compact(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%S")


def make_official_departure(
    headsign="3107",
    direction="Le Havre (Le Havre)",
    scheduled_in=10,
    delay=0,
    status=None,
    platform="",
):
    """Build a ``departures[]`` item matching the SNCF API shape."""
    departure = {
        "display_informations": {
            "direction": direction,
            "headsign": headsign,
            "code": "K12",
            "commercial_mode": "TER",
        },
        "stop_date_time": {
            "base_departure_date_time": compact(at(scheduled_in)),
            "departure_date_time": compact(at(scheduled_in + delay)),
        },
        "stop_point": {"platform_code": platform},
    }
    if status:
        departure["status"] = status
    return departure


def make_row(
    number="3107",
    station="rouen",
    destination="Le Havre",
    scheduled_in=10,
    delay=0,
    cancelled=False,
    platform="",
    timestamp=True,
    disruptions=None,
):
    scheduled = at(scheduled_in)
    actual = at(scheduled_in + delay)
    draft = RowDraft(
        train_number=number,
        destination=destination,
        scheduled_time=format_hhmm(scheduled),
        actual_time=format_hhmm(actual),
        scheduled_timestamp=to_epoch_ms(scheduled) if timestamp else None,
        departure_timestamp=to_epoch_ms(actual) if timestamp else None,
        cancelled=cancelled,
        provider_delay=delay,
        platform=platform,
        disruptions=list(disruptions or []),
    )
    return finalize_row(draft, resolve_corridor(station, destination))


def mock_response(payload=None, status_code=200, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if json_error:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def now_ms():
    return NOW_MS
