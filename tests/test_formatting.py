"""Tests for time and number formatting helpers."""

import pytest

from quotadeck.utils.formatting import (
    format_day_hour,
    format_duration,
    format_time_until,
    parse_timestamp,
    round_half_up,
)

NOW = 1_700_000_000.0  # 2023-11-14T22:13:20Z


@pytest.mark.parametrize("value,expected", [(0.5, 1), (1.5, 2), (2.5, 3), (42.4, 42), (0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


class TestParseTimestamp:

    def test_zulu(self):
        assert parse_timestamp("2023-11-14T22:13:20Z") == NOW

    def test_nanosecond_fraction(self):
        assert parse_timestamp("2023-11-14T22:13:20.123456789Z") == pytest.approx(NOW + 0.123456)

    def test_naive_is_utc(self):
        assert parse_timestamp("2023-11-14T22:13:20") == NOW

    def test_offset(self):
        assert parse_timestamp("2023-11-15T00:13:20+02:00") == NOW

    @pytest.mark.parametrize("value", ["", "  ", "tomorrow", "2023-13-45"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


class TestFormatTimeUntil:

    def test_iso_string(self):
        assert format_time_until("2023-11-15T00:33:20Z", now=NOW) == "2h 20m"

    def test_epoch_seconds(self):
        assert format_time_until(NOW + 3 * 86400 + 4 * 3600, now=NOW) == "3d 4h"

    def test_epoch_milliseconds(self):
        assert format_time_until((NOW + 15 * 60) * 1000, now=NOW) == "15m"

    def test_past_is_ready(self):
        assert format_time_until(NOW - 10, now=NOW) == "Ready"

    @pytest.mark.parametrize("value", [None, True, "garbage", float("nan"), [], {}])
    def test_unparseable(self, value):
        assert format_time_until(value, now=NOW) == "-"


@pytest.mark.parametrize("seconds,expected", [
    (0, "Ready"),
    (-5, "Ready"),
    (59, "0m"),
    (3600, "1h 0m"),
    (90061, "1d 1h"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_day_hour():
    assert format_day_hour(NOW + 2 * 86400 + 5 * 3600, now=NOW) == "2d 5h"
    assert format_day_hour(NOW + 5 * 3600 + 120, now=NOW) == "5h 0m"
    assert format_day_hour(NOW - 1, now=NOW) is None
