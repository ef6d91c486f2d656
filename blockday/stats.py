"""Block and day statistics computed from normalized segments."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from blockday.clock import BLOCK_SECONDS
from blockday.models import Block, BlockSegment, BlockStatus, SegmentType
from blockday.segments import break_seconds, total_seconds, work_seconds


FULL_BLOCK_CREDIT_SECONDS = 19 * 60  # 95% of a block displays as the full 20 minutes
SPILLOVER_SECONDS = 60  # a short first segment is carry-over from the previous block


# ── Per block ─────────────────────────────────────────────────


def display_minutes(block: Block) -> int | None:
    """Minutes to show on a block, or None when nothing should be shown.

    Prefers segment data, falls back to ``used_seconds``. 19+ minutes count
    as a full block; otherwise rounds to the nearest minute.
    """
    if block.status == BlockStatus.SKIPPED:
        return None
    seconds = total_seconds(block.segments) or block.used_seconds
    if seconds <= 0:
        return None
    if seconds >= FULL_BLOCK_CREDIT_SECONDS:
        return BLOCK_SECONDS // 60
    minutes = (seconds + 30) // 60
    return minutes or None


def _work_time_by(segments: Iterable[BlockSegment], key) -> dict[Any, int]:
    totals: dict[Any, int] = defaultdict(int)
    for seg in segments:
        if seg.type == SegmentType.WORK and seg.seconds > 0:
            totals[key(seg)] += seg.seconds
    return totals


def _top(totals: dict[Any, int]) -> Any:
    if not totals:
        return None
    # max() keeps the first of equal entries, i.e. the earliest segment
    return max(totals, key=lambda k: totals[k])


def dominant_category(segments: Iterable[BlockSegment]) -> str | None:
    """Category with the most work time; None if that is uncategorized work."""
    return _top(_work_time_by(segments, lambda s: s.category))


def dominant_label(segments: Iterable[BlockSegment]) -> str | None:
    top = _top(_work_time_by(segments, lambda s: s.label or ""))
    return top or None


def distinct_activity_count(segments: Iterable[BlockSegment]) -> int:
    """Distinct (category, label) work pairs; a first segment under a minute is ignored."""
    work = [s for s in segments if s.type == SegmentType.WORK and s.seconds > 0]
    seen: set[tuple[str | None, str | None]] = set()
    for i, seg in enumerate(work):
        if i == 0 and seg.seconds < SPILLOVER_SECONDS:
            continue
        seen.add((seg.category, seg.label))
    return len(seen)


def display_label(block: Block) -> str | None:
    """Short label for a finished block, e.g. ``"Writing +1"`` or ``"Break +2"``."""
    segments = block.segments
    work = work_seconds(segments)
    rest = break_seconds(segments)
    if work == 0:
        return "Break" if rest > 0 else None

    activities = distinct_activity_count(segments)
    if rest > work:
        return f"Break +{activities}" if activities else "Break"

    label = block.label if block.label and block.label.lower() != "break" else None
    primary = label or dominant_label(segments) or block.category
    if not primary:
        return None
    extra = activities - 1 + (1 if rest > 0 else 0)
    return f"{primary} +{extra}" if extra > 0 else primary


# ── Per day ───────────────────────────────────────────────────


def day_totals(blocks: Iterable[Block]) -> dict[str, Any]:
    """Work/break seconds for a set of blocks, with work split per category."""
    by_category: dict[str, int] = defaultdict(int)
    work = 0
    rest = 0
    done = 0
    skipped = 0
    for block in blocks:
        if block.status == BlockStatus.DONE:
            done += 1
        elif block.status == BlockStatus.SKIPPED:
            skipped += 1
        for seg in block.segments:
            if seg.type == SegmentType.WORK:
                work += seg.seconds
                by_category[seg.category or "uncategorized"] += seg.seconds
            else:
                rest += seg.seconds
    return {
        "workSeconds": work,
        "breakSeconds": rest,
        "doneBlocks": done,
        "skippedBlocks": skipped,
        "byCategory": dict(sorted(by_category.items(), key=lambda kv: -kv[1])),
    }
