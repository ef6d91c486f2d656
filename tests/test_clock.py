"""Tests for blockday/clock.py: block arithmetic."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from blockday.clock import (
    block_end_at,
    block_end_label,
    block_index_at,
    block_start_label,
    boundary_for,
    day_ordered_indices,
    display_number,
    logical_today,
    remaining_seconds_in_block,
)


def _at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2026, 3, 10, hour, minute, second, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "hour,minute,expected",
    [(0, 0, 0), (0, 19, 0), (0, 20, 1), (10, 0, 30), (10, 59, 32), (23, 40, 71), (23, 59, 71)],
)
def test_block_index_at(hour, minute, expected):
    assert block_index_at(_at(hour, minute)) == expected


def test_boundary_for():
    assert boundary_for(0) == (0, 1200)
    assert boundary_for(71) == (85200, 86400)


def test_labels():
    assert block_start_label(30) == "10:00"
    assert block_end_label(30) == "10:20"
    assert block_end_label(71) == "24:00"


def test_block_end_at_is_aware():
    end = block_end_at("2026-03-10", 30, timezone.utc)
    assert end == _at(10, 20)
    assert block_end_at(date(2026, 3, 10), 71, timezone.utc) == datetime(2026, 3, 11, tzinfo=timezone.utc)


def test_block_end_at_in_user_timezone():
    tz = ZoneInfo("America/New_York")
    end = block_end_at("2026-07-01", 30, tz)
    assert end.hour == 10 and end.minute == 20
    assert end.utcoffset().total_seconds() == -4 * 3600


def test_remaining_seconds_in_block():
    assert remaining_seconds_in_block(30, _at(10, 0)) == 1200
    assert remaining_seconds_in_block(30, _at(10, 15, 30)) == 270
    assert remaining_seconds_in_block(30, _at(10, 20)) == 0
    assert remaining_seconds_in_block(31, _at(10, 0)) == 1200


def test_display_number_starts_at_day_start():
    assert display_number(18, 6) == 1
    assert display_number(17, 6) == 72
    assert display_number(0, 6) == 55
    assert display_number(0, 0) == 1


def test_day_ordered_indices():
    order = day_ordered_indices(6)
    assert order[0] == 18
    assert order[-1] == 17
    assert sorted(order) == list(range(72))


def test_logical_today():
    assert logical_today(_at(5, 59), 6) == date(2026, 3, 9)
    assert logical_today(_at(6, 0), 6) == date(2026, 3, 10)
