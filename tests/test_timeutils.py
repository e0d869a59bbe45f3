"""Tests for wall-clock arithmetic and upstream timestamp parsing."""

from datetime import datetime, timezone

import pytest

from trainboard.timeutils import (
    LOCAL_TZ,
    MISSING_TIME,
    add_minutes,
    delay_minutes_between,
    format_hhmm,
    hhmm_to_minutes,
    parse_compact_timestamp,
    parse_iso_timestamp,
    to_epoch_ms,
)


@pytest.mark.parametrize(
    "hhmm, minutes, expected",
    [
        ("14:05", 65, "15:10"),
        ("23:30", 65, "00:35"),
        ("00:00", 0, "00:00"),
        ("23:59", 1, "00:00"),
    ],
)
def test_add_minutes_wraps_past_midnight(hhmm, minutes, expected):
    assert add_minutes(hhmm, minutes) == expected


def test_add_minutes_keeps_missing_sentinel():
    assert add_minutes(MISSING_TIME, 30) == MISSING_TIME
    assert add_minutes("", 30) == MISSING_TIME
    assert add_minutes("25:00", 30) == MISSING_TIME


def test_hhmm_to_minutes():
    assert hhmm_to_minutes("01:30") == 90
    assert hhmm_to_minutes("nope") is None


def test_parse_iso_timestamp_with_offset_and_zulu():
    parsed = parse_iso_timestamp("2026-03-10T14:05:00+01:00")
    assert format_hhmm(parsed) == "14:05"

    zulu = parse_iso_timestamp("2026-03-10T13:05:00Z")
    assert to_epoch_ms(zulu) == to_epoch_ms(parsed)


def test_parse_iso_timestamp_naive_is_paris_time():
    parsed = parse_iso_timestamp("2026-07-01T08:00:00")
    assert parsed.tzinfo is LOCAL_TZ
    assert parsed.astimezone(timezone.utc).hour == 6


def test_parse_iso_timestamp_rejects_garbage():
    assert parse_iso_timestamp(None) is None
    assert parse_iso_timestamp("") is None
    assert parse_iso_timestamp("tomorrow") is None


def test_parse_compact_timestamp():
    parsed = parse_compact_timestamp("20260310T140500")
    assert parsed == datetime(2026, 3, 10, 14, 5, tzinfo=LOCAL_TZ)
    assert format_hhmm(parsed) == "14:05"


@pytest.mark.parametrize("value", [None, "", "2026031", "2026-03-10T14:05", "20261310T140500"])
def test_parse_compact_timestamp_rejects_bad_values(value):
    assert parse_compact_timestamp(value) is None


def test_format_hhmm_missing():
    assert format_hhmm(None) == MISSING_TIME


def test_delay_minutes_between_never_negative():
    assert delay_minutes_between(0, 5 * 60000) == 5
    assert delay_minutes_between(0, 90000) == 2
    assert delay_minutes_between(5 * 60000, 0) == 0
    assert delay_minutes_between(None, 0) is None
