"""Block arithmetic: wall-clock time to block index, boundaries, display order.

A day is 72 blocks of 20 minutes. Index 0 starts at local midnight.
Everything here is pure except ``SystemClock``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo


BLOCKS_PER_DAY = 72
BLOCK_MINUTES = 20
BLOCK_SECONDS = BLOCK_MINUTES * 60
BLOCKS_PER_HOUR = 60 // BLOCK_MINUTES
NIGHT_BLOCKS = range(0, 24)  # 00:00-08:00


class Clock(Protocol):
    """Epoch source. ``now()`` must return a timezone-aware datetime."""

    def now(self) -> datetime: ...


class SystemClock:
    def __init__(self, tz: tzinfo | None = None) -> None:
        self.tz = tz or ZoneInfo("UTC")

    def now(self) -> datetime:
        return datetime.now(self.tz)


# ── Index / boundaries ────────────────────────────────────────


def seconds_since_midnight(moment: datetime) -> int:
    return moment.hour * 3600 + moment.minute * 60 + moment.second


def block_index_at(moment: datetime) -> int:
    """Index of the block containing *moment* (local wall-clock)."""
    minutes = moment.hour * 60 + moment.minute
    return minutes // BLOCK_MINUTES


def boundary_for(index: int) -> tuple[int, int]:
    """Return ``(start, end)`` of block *index* as seconds from midnight."""
    start = index * BLOCK_SECONDS
    return start, start + BLOCK_SECONDS


def block_start_label(index: int) -> str:
    total = index * BLOCK_MINUTES
    return f"{total // 60:02d}:{total % 60:02d}"


def block_end_label(index: int) -> str:
    total = (index + 1) * BLOCK_MINUTES
    return f"{total // 60:02d}:{total % 60:02d}"


def block_end_at(day: date | str, index: int, tz: tzinfo) -> datetime:
    """Aware datetime at which block *index* of *day* ends."""
    if isinstance(day, str):
        day = date.fromisoformat(day)
    midnight = datetime.combine(day, time(0, 0), tzinfo=tz)
    return midnight + timedelta(seconds=boundary_for(index)[1])


def remaining_seconds_in_block(index: int, moment: datetime) -> int:
    """Seconds left in block *index* at *moment*.

    0 once the block has passed, a full block if it has not started yet.
    """
    now_s = seconds_since_midnight(moment)
    start, end = boundary_for(index)
    if now_s >= end:
        return 0
    if now_s < start:
        return BLOCK_SECONDS
    return end - now_s


# ── Display ordering ──────────────────────────────────────────


def display_number(index: int, day_start_hour: int = 6) -> int:
    """Map 0-71 to a 1-72 sequence that starts at *day_start_hour*."""
    day_start_block = day_start_hour * BLOCKS_PER_HOUR
    return ((index - day_start_block + BLOCKS_PER_DAY) % BLOCKS_PER_DAY) + 1


def day_ordered_indices(day_start_hour: int = 6) -> list[int]:
    """Block indices in display order."""
    return sorted(range(BLOCKS_PER_DAY), key=lambda i: display_number(i, day_start_hour))


def logical_today(moment: datetime, day_start_hour: int = 6) -> date:
    """The date the user is "living in": before the day start it is still yesterday."""
    if moment.hour < day_start_hour:
        return moment.date() - timedelta(days=1)
    return moment.date()
