"""Tests for the real-time and official source adapters."""

from unittest.mock import patch

import requests

from conftest import NOW_MS, make_official_departure, make_realtime_train, mock_response
from trainboard.corridor import STATIONS
from trainboard.fetchers import official, realtime
from trainboard.normalize import DepartureStatus


ROUEN = STATIONS["rouen"]
LE_HAVRE = STATIONS["lehavre"]


class TestRealtimeAdapter:
    @patch("trainboard.fetchers.base.requests.get")
    def test_sends_browser_headers_and_timeout(self, mock_get):
        mock_get.return_value = mock_response([make_realtime_train()])

        realtime.fetch_realtime_departures(ROUEN, timeout_seconds=4, now_ms=NOW_MS)

        args, kwargs = mock_get.call_args
        assert args[0].endswith("/Departures/0087411017")
        assert kwargs["timeout"] == 4
        assert "Mozilla" in kwargs["headers"]["User-Agent"]
        assert kwargs["headers"]["Referer"].startswith("https://www.garesetconnexions.sncf")

    @patch("trainboard.fetchers.base.requests.get")
    def test_parses_rich_fields(self, mock_get):
        mock_get.return_value = mock_response(
            [
                make_realtime_train(
                    number="3107",
                    delay=6,
                    platform="3",
                    infos=[{"text": "Affluence"}, {"label": "Travaux"}, {}],
                    modification="Retard dû à un incident",
                )
            ]
        )

        rows = realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS)

        assert len(rows) == 1
        row = rows[0]
        assert row.train_number == "3107"
        assert row.origin == "Paris Saint-Lazare"
        assert row.platform == "3"
        assert row.scheduled_time == "14:10"
        assert row.actual_time == "14:16"
        assert row.delay_minutes == 6
        assert row.status is DepartureStatus.DELAYED
        assert row.disruption == "Affluence — Travaux — Retard dû à un incident"
        assert row.detail_url.endswith("/3107")
        assert row.arrival_expected == "15:21"

    @patch("trainboard.fetchers.base.requests.get")
    def test_filters_other_directions(self, mock_get):
        mock_get.return_value = mock_response(
            [
                make_realtime_train(number="1", destination="Paris Saint-Lazare"),
                make_realtime_train(number="2", destination="Caen"),
                make_realtime_train(number="3", destination="Le Havre"),
                make_realtime_train(number="4", destination="Yvetot"),
            ]
        )

        rows = realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS)

        assert [row.train_number for row in rows] == ["3", "4"]
        assert rows[1].corridor.id == "rouen_yvetot"

    @patch("trainboard.fetchers.base.requests.get")
    def test_drops_departed_but_keeps_recent_cancellations(self, mock_get):
        mock_get.return_value = mock_response(
            [
                make_realtime_train(number="gone", scheduled_in=-5),
                make_realtime_train(number="grace", scheduled_in=-0.5),
                make_realtime_train(number="cancelled", scheduled_in=-2, train_status="SUPPRIME"),
            ]
        )

        rows = realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS)

        assert [row.train_number for row in rows] == ["grace", "cancelled"]
        assert rows[1].status is DepartureStatus.CANCELLED

    @patch("trainboard.fetchers.base.requests.get")
    def test_skips_entries_missing_required_fields(self, mock_get):
        broken = make_realtime_train(number="x")
        del broken["scheduledTime"]
        mock_get.return_value = mock_response([broken, "junk", {"traffic": None}, make_realtime_train(number="ok")])

        rows = realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS)

        assert [row.train_number for row in rows] == ["ok"]

    @patch("trainboard.fetchers.base.requests.get")
    def test_unavailable_conditions_return_none(self, mock_get):
        cases = [
            mock_response([], status_code=200),
            mock_response(None, status_code=503),
            mock_response(None, status_code=403),
            mock_response(json_error=True),
            mock_response({"unexpected": "object"}),
            mock_response([make_realtime_train(destination="Caen")]),
        ]
        for response in cases:
            mock_get.return_value = response
            assert realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS) is None

    @patch("trainboard.fetchers.base.requests.get")
    def test_network_errors_return_none(self, mock_get):
        mock_get.side_effect = requests.Timeout("slow")
        assert realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS) is None

        mock_get.side_effect = requests.ConnectionError("down")
        assert realtime.fetch_realtime_departures(ROUEN, now_ms=NOW_MS) is None


class TestOfficialAdapter:
    @patch("trainboard.fetchers.base.requests.get")
    def test_uses_basic_auth_and_stop_area(self, mock_get):
        mock_get.return_value = mock_response({"departures": [make_official_departure()]})

        official.fetch_official_departures(LE_HAVRE, "secret", timeout_seconds=3, now_ms=NOW_MS)

        args, kwargs = mock_get.call_args
        assert "stop_area%3ASNCF%3A87413013" in args[0]
        assert kwargs["auth"] == ("secret", "")
        assert kwargs["params"] == {"count": 30}
        assert kwargs["timeout"] == 3

    @patch("trainboard.fetchers.base.requests.get")
    def test_parses_compact_timestamps(self, mock_get):
        mock_get.return_value = mock_response(
            {
                "departures": [
                    make_official_departure(headsign="3 1 2 0", direction="Paris Saint-Lazare", delay=4, platform="2"),
                    make_official_departure(headsign="3122", direction="Fécamp"),
                ]
            }
        )

        rows = official.fetch_official_departures(LE_HAVRE, "secret", now_ms=NOW_MS)

        assert len(rows) == 1
        row = rows[0]
        assert row.train_number == "3120"
        assert row.scheduled_time == "14:10"
        assert row.actual_time == "14:14"
        assert row.delay_minutes == 4
        assert row.platform == "2"
        assert row.origin == ""
        assert row.disruption == ""
        assert row.corridor.id == "lehavre_rouen"

    @patch("trainboard.fetchers.base.requests.get")
    def test_cancelled_status(self, mock_get):
        mock_get.return_value = mock_response(
            {"departures": [make_official_departure(status="cancelled", delay=15, scheduled_in=-3)]}
        )

        rows = official.fetch_official_departures(ROUEN, "secret", now_ms=NOW_MS)

        assert rows[0].status is DepartureStatus.CANCELLED

    @patch("trainboard.fetchers.base.requests.get")
    def test_unavailable_conditions_return_none(self, mock_get):
        bad_time = make_official_departure()
        bad_time["stop_date_time"] = {"base_departure_date_time": "garbage"}
        cases = [
            mock_response({"departures": []}),
            mock_response({}),
            mock_response({"departures": "nope"}),
            mock_response([]),
            mock_response(None, status_code=401),
            mock_response({"departures": [bad_time]}),
        ]
        for response in cases:
            mock_get.return_value = response
            assert official.fetch_official_departures(ROUEN, "secret", now_ms=NOW_MS) is None


def test_entry_mappers_fail_closed():
    assert realtime.parse_entry(None) is None
    assert realtime.parse_entry({"traffic": {"destination": "Le Havre"}}) is None
    assert official.parse_entry({"display_informations": {"direction": "Le Havre"}}) is None
    assert official.parse_entry(42) is None
