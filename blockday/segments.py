"""Segment ledger: work/break sub-intervals inside one run.

Offsets are integer seconds of run-elapsed time. The ledger always holds an
open segment starting at ``open_start``; closed segments plus the open one
cover ``[start_offset, at_elapsed)`` with no gaps and no overlaps.
"""

from __future__ import annotations

from typing import Callable, Iterable

from blockday.models import BlockSegment, SegmentType


MIN_SEGMENT_SECONDS = 10  # label-only changes shorter than this do not split


def normalize(segments: Iterable[BlockSegment]) -> list[BlockSegment]:
    """Drop empty entries and merge adjacent entries with the same key.

    Order is preserved and the input is not mutated. Idempotent.
    """
    result: list[BlockSegment] = []
    for seg in segments:
        if seg.seconds <= 0:
            continue
        if result and result[-1].key() == seg.key():
            last = result[-1]
            result[-1] = BlockSegment(
                type=last.type,
                seconds=last.seconds + seg.seconds,
                category=last.category,
                label=last.label,
                start_elapsed=last.start_elapsed,
            )
        else:
            result.append(BlockSegment(
                type=seg.type,
                seconds=seg.seconds,
                category=seg.category,
                label=seg.label,
                start_elapsed=seg.start_elapsed,
            ))
    return result


def total_seconds(
    segments: Iterable[BlockSegment],
    predicate: Callable[[BlockSegment], bool] | None = None,
) -> int:
    return sum(s.seconds for s in segments if predicate is None or predicate(s))


def work_seconds(segments: Iterable[BlockSegment]) -> int:
    return total_seconds(segments, lambda s: s.type == SegmentType.WORK)


def break_seconds(segments: Iterable[BlockSegment]) -> int:
    return total_seconds(segments, lambda s: s.type == SegmentType.BREAK)


class SegmentLedger:
    """Append-only segment list for a single run."""

    def __init__(
        self,
        segment_type: SegmentType = SegmentType.WORK,
        category: str | None = None,
        label: str | None = None,
        start_offset: int = 0,
        closed: Iterable[BlockSegment] = (),
        open_start: int | None = None,
    ) -> None:
        self.start_offset = start_offset
        self.closed: list[BlockSegment] = list(closed)
        if open_start is None:
            open_start = start_offset + total_seconds(self.closed)
        self.open_start = open_start
        self.open_type = segment_type
        self.open_category, self.open_label = self._work_context(segment_type, category, label)

    @staticmethod
    def _work_context(
        segment_type: SegmentType, category: str | None, label: str | None
    ) -> tuple[str | None, str | None]:
        if segment_type == SegmentType.BREAK:
            return None, None
        return category, label

    def open_key(self) -> tuple[SegmentType, str | None, str | None]:
        return (self.open_type, self.open_category, self.open_label)

    def tail(self, at_elapsed: int) -> BlockSegment | None:
        """The open segment as it would be closed at *at_elapsed*, or None if empty."""
        seconds = at_elapsed - self.open_start
        if seconds <= 0:
            return None
        return BlockSegment(
            type=self.open_type,
            seconds=seconds,
            category=self.open_category,
            label=self.open_label,
            start_elapsed=self.open_start,
        )

    def close(self, at_elapsed: int) -> BlockSegment | None:
        """Close the open segment at *at_elapsed*; a new one of the same key opens there."""
        seg = self.tail(at_elapsed)
        if seg is not None:
            self.closed.append(seg)
        self.open_start = max(self.open_start, at_elapsed)
        return seg

    def append_or_extend(
        self,
        segment_type: SegmentType,
        category: str | None,
        label: str | None,
        at_elapsed: int,
    ) -> BlockSegment | None:
        """Continue the open segment if the key matches, else split at *at_elapsed*.

        Returns the segment that was closed by the split, if any.
        """
        category, label = self._work_context(segment_type, category, label)
        if (segment_type, category, label) == self.open_key():
            return None
        closed = self.close(at_elapsed)
        self.open_type = segment_type
        self.open_category = category
        self.open_label = label
        return closed

    def relabel(self, category: str | None, label: str | None) -> None:
        """Change the open segment's work context without splitting it."""
        self.open_category, self.open_label = self._work_context(self.open_type, category, label)

    def segments(self, at_elapsed: int | None = None) -> list[BlockSegment]:
        """Closed segments plus the open tail at *at_elapsed* (if given)."""
        result = list(self.closed)
        if at_elapsed is not None:
            tail = self.tail(at_elapsed)
            if tail is not None:
                result.append(tail)
        return result

    def covered_seconds(self, at_elapsed: int) -> int:
        return total_seconds(self.segments(at_elapsed))
