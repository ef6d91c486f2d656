"""Scale factors: real seconds to visual fill of a block.

Every run maps its real seconds onto the fill space left by earlier runs so
that the block reaches exactly 100% at its wall-clock boundary, however many
times the timer was started and stopped on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from blockday.clock import BLOCK_SECONDS
from blockday.errors import InvalidTransition
from blockday.models import Block, BlockSegment, Run, SegmentType
from blockday.segments import total_seconds


MIN_SLIVER_PROPORTION = 0.015
SLIVER_WINDOW_SECONDS = 60


@dataclass(frozen=True)
class RunPlan:
    """Locked scale parameters of one run."""

    scale_factor: float
    previous_proportion: float
    remaining_real_seconds: float

    @property
    def capacity(self) -> float:
        return max(0.0, 1.0 - self.previous_proportion)

    def fill(self, seconds: float) -> float:
        return min(self.capacity, max(0.0, seconds) * self.scale_factor)

    def proportion_at(self, seconds: float) -> float:
        """Cumulative block fill after *seconds* of this run."""
        return min(1.0, self.previous_proportion + self.fill(seconds))


@dataclass
class FillSlice:
    type: SegmentType
    category: str | None
    label: str | None
    start: float
    width: float
    live: bool = False


def plan_run(previous_proportion: float, remaining_real_seconds: float) -> RunPlan:
    """Lock the scale factor for a run starting now.

    Raises InvalidTransition when the block has ended or has no fill left.
    """
    if remaining_real_seconds <= 0:
        raise InvalidTransition("Block has already ended; no run may start on it.")
    previous = min(max(previous_proportion, 0.0), 1.0)
    remaining_visual = 1.0 - previous
    if remaining_visual <= 0:
        raise InvalidTransition("Block is already 100% filled.")
    return RunPlan(
        scale_factor=remaining_visual / remaining_real_seconds,
        previous_proportion=previous,
        remaining_real_seconds=remaining_real_seconds,
    )


def legacy_proportion(segments: Iterable[BlockSegment]) -> float:
    """Fill of segments recorded without runs: one block is 1200 seconds."""
    return min(1.0, total_seconds(segments) / BLOCK_SECONDS)


def previous_visual_proportion(block: Block) -> float:
    """Fill already used on *block* by finalized runs."""
    if block.runs:
        return min(1.0, sum(run.fill for run in block.runs))
    return legacy_proportion(block.segments)


def _slices(
    segments: Iterable[BlockSegment],
    start: float,
    scale_factor: float,
    limit: float,
    live: bool = False,
) -> list[FillSlice]:
    out: list[FillSlice] = []
    cursor = start
    for seg in segments:
        width = min(seg.seconds * scale_factor, max(0.0, limit - cursor))
        out.append(FillSlice(seg.type, seg.category, seg.label, cursor, width, live))
        cursor += width
    return out


def fill_layout(
    runs: Iterable[Run],
    live_segments: list[BlockSegment] | None = None,
    plan: RunPlan | None = None,
    seconds_used: int = 0,
    legacy_segments: Iterable[BlockSegment] = (),
) -> list[FillSlice]:
    """Slices for drawing a block's fill bar, left to right.

    Finalized runs draw at their own locked factor. The live run draws at
    *plan*'s factor; during its first minute its last slice never renders
    narrower than ``MIN_SLIVER_PROPORTION``. Only the drawing is floored,
    seconds are untouched.
    """
    runs = list(runs)
    slices: list[FillSlice] = []
    cursor = 0.0
    if runs:
        for run in runs:
            limit = min(1.0, run.previous_proportion + run.capacity)
            run_slices = _slices(run.segments, cursor, run.scale_factor, limit)
            slices.extend(run_slices)
            cursor += sum(s.width for s in run_slices)
    else:
        legacy = _slices(legacy_segments, 0.0, 1.0 / BLOCK_SECONDS, 1.0)
        slices.extend(legacy)
        cursor = sum(s.width for s in legacy)

    if plan is not None and live_segments:
        cursor = max(cursor, plan.previous_proportion)
        live = _slices(live_segments, cursor, plan.scale_factor, 1.0, live=True)
        if live and seconds_used < SLIVER_WINDOW_SECONDS:
            last = live[-1]
            last.width = min(max(last.width, MIN_SLIVER_PROPORTION), max(0.0, 1.0 - last.start))
        slices.extend(live)
    return slices
