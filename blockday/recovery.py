"""Crash recovery: snapshot the run in flight, restore it after a restart."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any

from blockday.clock import Clock
from blockday.errors import PersistenceError
from blockday.models import Block
from blockday.store import BlockStore, save_timer_fields
from blockday.timer import (
    RUNNING_STATES,
    STARTABLE_STATES,
    BlockTimer,
    EventKind,
    TickResult,
    TimerEvent,
    TimerState,
    apply_aggregates,
    base_segments,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_INTERVAL_SECONDS = 5

SNAPSHOT_EVENTS = (
    EventKind.STARTED,
    EventKind.SEGMENT_SPLIT,
    EventKind.CONTEXT_CHANGED,
    EventKind.PAUSED,
    EventKind.RESUMED,
    EventKind.RESTORED,
)


class CrashRecoveryManager:
    def __init__(
        self,
        timer: BlockTimer,
        store: BlockStore,
        clock: Clock,
        autosave_interval_seconds: int = DEFAULT_AUTOSAVE_INTERVAL_SECONDS,
    ) -> None:
        self.timer = timer
        self.store = store
        self.clock = clock
        self.autosave_interval_seconds = autosave_interval_seconds
        self.last_saved_at: float | None = None
        self.last_error: PersistenceError | None = None
        self._unsubscribe = timer.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    def _on_event(self, event: TimerEvent) -> None:
        if event.kind in SNAPSHOT_EVENTS and event.state in RUNNING_STATES + (TimerState.PAUSED,):
            self.save_snapshot(event.at)
        elif event.kind == EventKind.COMPLETED:
            self.last_saved_at = None

    # ── Snapshots ─────────────────────────────────────────────

    def save_snapshot(self, now: float | None = None) -> Block | None:
        """Write the active run as the block's ``activeRunSnapshot``.

        A failed write is logged and kept in ``last_error``; the next
        autosave retries it.
        """
        if now is None:
            now = self.clock.now().timestamp()
        block = self.timer.snapshot_block(now)
        if block is None:
            return None
        try:
            saved = save_timer_fields(self.store, block)
        except PersistenceError as e:
            self.last_error = e
            logger.warning("Snapshot write failed for block %s/%d: %s", block.date, block.block_index, e)
            return None
        self.last_error = None
        self.last_saved_at = now
        logger.debug("Snapshot saved for block %s/%d: %ds used",
                     block.date, block.block_index, block.used_seconds)
        return saved

    def maybe_autosave(self, now: float | None = None) -> Block | None:
        """Save a snapshot if the autosave interval has elapsed while running."""
        if self.timer.state not in RUNNING_STATES:
            return None
        if now is None:
            now = self.clock.now().timestamp()
        if self.last_saved_at is not None and now - self.last_saved_at < self.autosave_interval_seconds:
            return None
        return self.save_snapshot(now)

    # ── Restore ───────────────────────────────────────────────

    def find_snapshots(self) -> list[Block]:
        """Blocks of today and yesterday that still carry an unfinished run."""
        today = self.clock.now().date()
        found: list[Block] = []
        for day in (today - timedelta(days=1), today):
            found.extend(b for b in self.store.fetch(day.isoformat()) if b.active_run_snapshot is not None)
        return sorted(found, key=lambda b: b.active_run_snapshot.started_at)

    def _finalize_stale(self, block: Block) -> Block:
        """Close an orphaned snapshot in place, crediting what it recorded."""
        snapshot = block.active_run_snapshot
        assert snapshot is not None
        ended_at = snapshot.paused_at if snapshot.paused_at is not None else snapshot.started_at + snapshot.elapsed
        block.runs.append(replace(snapshot, ended_at=ended_at))
        block.active_run_snapshot = None
        apply_aggregates(block, base_segments(block))
        logger.warning("Finalized orphaned run %s on block %s/%d", snapshot.id, block.date, block.block_index)
        return save_timer_fields(self.store, block)

    def recover(self) -> TimerState | None:
        """Restore the newest unfinished run; close any older ones.

        Returns the timer state after recovery, or None if there was nothing
        to recover.
        """
        if self.timer.state not in STARTABLE_STATES or self.timer.session is not None:
            return None
        blocks = self.find_snapshots()
        if not blocks:
            return None
        *stale, latest = blocks
        for block in stale:
            self._finalize_stale(block)
        logger.info("Recovering run %s on block %s/%d",
                    latest.active_run_snapshot.id, latest.date, latest.block_index)
        return self.timer.restore(latest)

    def restore_from_background(self) -> TickResult:
        """Catch up after the process was suspended with the engine in memory."""
        result = self.timer.tick(background=True)
        if self.timer.state in RUNNING_STATES:
            self.save_snapshot()
        return result

    def describe(self) -> dict[str, Any]:
        return {
            "lastSavedAt": self.last_saved_at,
            "lastError": str(self.last_error) if self.last_error else None,
        }
