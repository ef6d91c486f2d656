"""Day-level bookkeeping around the timer.

Status rules for finished runs, auto-skipping of past blocks, muted (night)
block activation and day resets. Everything here reads a fresh copy from the
store before writing.
"""

from __future__ import annotations

import logging
from datetime import date

from blockday.clock import BLOCK_SECONDS, BLOCKS_PER_DAY, NIGHT_BLOCKS, Clock
from blockday.models import Block, BlockStatus
from blockday.segments import work_seconds
from blockday.store import BlockStore, fill_day
from blockday.timer import Completion

logger = logging.getLogger(__name__)

DONE_PROGRESS = 95.0  # percent of a full block that counts as done
SETTLED = (BlockStatus.DONE, BlockStatus.SKIPPED)


def completion_status(block: Block, completion: Completion) -> BlockStatus:
    """Status a block should have once *completion* has been recorded on it.

    Done on a natural completion (boundary reached, 5 s tolerance), when the
    user asked for it, or when the block holds at least 95% of a full block
    of work. Otherwise the status is kept; never ``skipped``.
    """
    if completion.mark_complete:
        return BlockStatus.DONE
    if completion.is_natural:
        return BlockStatus.DONE
    if work_seconds(block.segments) / BLOCK_SECONDS * 100.0 >= DONE_PROGRESS:
        return BlockStatus.DONE
    if block.status == BlockStatus.SKIPPED:
        return BlockStatus.PLANNED
    return block.status


class DayBook:
    def __init__(self, store: BlockStore, clock: Clock, user_id: str = "") -> None:
        self.store = store
        self.clock = clock
        self.user_id = user_id

    def _today(self) -> str:
        return self.clock.now().date().isoformat()

    def load_day(self, day: str | None = None) -> list[Block]:
        """All 72 blocks of *day* (default today), idle placeholders for missing rows."""
        day = day or self._today()
        day = date.fromisoformat(day).isoformat()
        return fill_day(self.store.fetch(day), day, self.user_id)

    def load_block(self, block_index: int, day: str | None = None) -> Block:
        day = day or self._today()
        if not 0 <= block_index < BLOCKS_PER_DAY:
            raise ValueError(f"block_index out of range: {block_index}")
        return self.store.fetch_block(day, block_index) or Block.placeholder(day, block_index, self.user_id)

    def load_range(self, start: str, end: str, only_with_activity: bool = False) -> list[Block]:
        """Stored blocks from *start* to *end* inclusive, ordered by date and index."""
        if date.fromisoformat(start) > date.fromisoformat(end):
            return []
        blocks = self.store.fetch_range(start, end)
        if only_with_activity:
            blocks = [b for b in blocks if b.status == BlockStatus.DONE]
        return sorted(blocks, key=lambda b: (b.date, b.block_index))

    def process_auto_skip(self, current_index: int, timer_index: int | None = None) -> list[Block]:
        """Settle today's past blocks: done if they hold usage, skipped otherwise.

        Night blocks, muted blocks and the block the timer is on are left alone.
        """
        changed: list[Block] = []
        for block in self.store.fetch(self._today()):
            if block.block_index >= current_index or block.status in SETTLED:
                continue
            if block.block_index in NIGHT_BLOCKS or block.is_muted:
                continue
            if block.block_index == timer_index:
                continue
            if block.has_real_usage():
                block.status = BlockStatus.DONE
                logger.info("Auto-marking block %d as done", block.block_index)
            else:
                block.status = BlockStatus.SKIPPED
                logger.info("Auto-skipping block %d", block.block_index)
            changed.append(self.store.upsert(block))
        return changed

    def activate_block(self, block_index: int) -> list[Block]:
        """Unmute a block a timer is about to run on.

        For night blocks, earlier muted night blocks are settled (done with
        usage, skipped without) and later ones are unmuted.
        """
        day = self._today()
        changed: list[Block] = []
        target = self.store.fetch_block(day, block_index)
        if target is not None and target.is_muted:
            target.is_muted = False
            target.is_activated = True
            changed.append(self.store.upsert(target))
            logger.info("Activated muted block %d", block_index)

        if block_index not in NIGHT_BLOCKS:
            return changed
        for other in self.store.fetch(day):
            if other.block_index == block_index or other.block_index not in NIGHT_BLOCKS:
                continue
            if not other.is_muted or other.status in SETTLED:
                continue
            if other.block_index < block_index:
                if other.segments or other.used_seconds > 0 or other.progress > 0:
                    other.status = BlockStatus.DONE
                    other.is_muted = False
                    other.is_activated = True
                else:
                    other.status = BlockStatus.SKIPPED
            else:
                other.is_muted = False
                other.is_activated = True
            changed.append(self.store.upsert(other))
        return changed

    def reset_day(self, day: str | None = None) -> list[Block]:
        """Clear recorded time on every unmuted block; planning metadata stays."""
        day = day or self._today()
        day = date.fromisoformat(day).isoformat()
        changed: list[Block] = []
        for block in self.store.fetch(day):
            if block.is_muted:
                continue
            block.status = BlockStatus.IDLE
            block.progress = 0.0
            block.break_progress = 0.0
            block.used_seconds = 0
            block.segments = []
            block.runs = []
            block.active_run_snapshot = None
            changed.append(self.store.upsert(block))
        logger.info("Reset %d blocks for %s", len(changed), day)
        return changed
