# app/services/overlap.py
"""Half-open interval overlap, shared by appointments and weekly slots."""
import re
from typing import TypeVar

T = TypeVar("T")

TIME_OF_DAY = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")


def intervals_overlap(a_start: T, a_end: T, b_start: T, b_end: T) -> bool:
    """True when [a_start, a_end) and [b_start, b_end) share an instant.

    Works for datetimes and for zero padded "HH:MM" strings alike, whose
    lexicographic order is chronological within a day. Touching intervals
    do not overlap.
    """
    return a_start < b_end and b_start < a_end


def is_time_of_day(value: str) -> bool:
    return bool(value) and TIME_OF_DAY.match(value) is not None
