# tests/test_overlap.py
from datetime import datetime, timedelta, timezone

import pytest

from app.services.overlap import intervals_overlap, is_time_of_day

T0 = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)


def at(minutes):
    return T0 + timedelta(minutes=minutes)


@pytest.mark.parametrize("a, b, expected", [
    ((0, 60), (60, 120), False),   # touching
    ((0, 60), (30, 90), True),     # partial
    ((0, 120), (30, 60), True),    # containment
    ((30, 60), (0, 120), True),
    ((0, 30), (45, 60), False),    # disjoint
    ((0, 60), (0, 60), True),      # identical
])
def test_datetime_overlap_is_symmetric(a, b, expected):
    assert intervals_overlap(at(a[0]), at(a[1]), at(b[0]), at(b[1])) is expected
    assert intervals_overlap(at(b[0]), at(b[1]), at(a[0]), at(a[1])) is expected


def test_time_of_day_strings_compare_chronologically():
    assert intervals_overlap("09:00", "12:00", "11:30", "13:00")
    assert not intervals_overlap("09:00", "12:00", "12:00", "13:00")
    assert not intervals_overlap("08:00", "09:00", "10:00", "11:00")


@pytest.mark.parametrize("value", ["00:00", "09:30", "23:59"])
def test_valid_time_of_day(value):
    assert is_time_of_day(value)


@pytest.mark.parametrize("value", ["24:00", "9:30", "09:60", "0930", "", "ab:cd"])
def test_invalid_time_of_day(value):
    assert not is_time_of_day(value)
