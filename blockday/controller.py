"""The single owned engine instance.

Wires the clock, the store, the timer and its observers (crash recovery,
auto-continue, check-in governor, hooks) together. Presentation code calls
the intent methods and ``tick()``; nothing else mutates the timer.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any

from blockday.autocontinue import AutoContinueScheduler
from blockday.checkin import CheckInGovernor, GracePeriod
from blockday.clock import Clock, SystemClock, block_index_at, display_number
from blockday.days import DayBook, completion_status
from blockday.errors import InvalidTransition, PersistenceError
from blockday.hooks import fire_hooks
from blockday.models import Block
from blockday.recovery import CrashRecoveryManager
from blockday.scale import fill_layout
from blockday.settings import Settings, load_settings
from blockday.stats import day_totals, display_label, display_minutes
from blockday.store import BlockStore, JsonBlockStore
from blockday.timer import (
    BlockTimer,
    Completion,
    EventKind,
    TickResult,
    TimerEvent,
    TimerSession,
    TimerState,
    Trigger,
)
from blockday.workspace import get_user_timezone, workspace_root

logger = logging.getLogger(__name__)

HOOK_POINTS = {
    EventKind.STARTED: "on_timer_start",
    EventKind.COMPLETED: "on_timer_complete",
    EventKind.BOUNDARY_CROSSED_BACKGROUND: "on_boundary_crossed_background",
    EventKind.BREAK_NOTIFY: "on_break_notify",
    EventKind.SKIPPED: "on_block_skipped",
}


def _event_context(event: TimerEvent) -> dict[str, Any]:
    context: dict[str, Any] = {
        "event": event.kind.value,
        "trigger": event.trigger.value,
        "state": event.state.value,
        "blockIndex": event.block_index,
        "date": event.date,
        "at": event.at,
    }
    if event.completion is not None:
        c = event.completion
        context.update({
            "outcome": c.outcome.value,
            "wasBreak": c.was_break,
            "secondsUsed": c.seconds_used,
            "category": c.category,
            "label": c.label,
        })
    return context


class BlockdayController:
    def __init__(
        self,
        root: Path | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        store: BlockStore | None = None,
        hooks_enabled: bool = True,
    ) -> None:
        self.root = root if root is not None else workspace_root()
        self.settings = settings if settings is not None else load_settings(self.root)
        self.clock = clock if clock is not None else SystemClock(get_user_timezone(self.root))
        self.store = store if store is not None else JsonBlockStore(self.root, self.settings.user_id)
        self.hooks_enabled = hooks_enabled

        s = self.settings
        self.days = DayBook(self.store, self.clock, s.user_id)
        self.timer = BlockTimer(
            self.clock,
            self.store,
            user_id=s.user_id,
            break_notify_seconds=s.break_notify_seconds,
            status_policy=completion_status,
        )
        self.recovery = CrashRecoveryManager(
            self.timer, self.store, self.clock, s.autosave_interval_seconds
        )
        self.scheduler = AutoContinueScheduler(
            self.timer, self.clock, s.auto_continue_seconds, s.break_over_seconds
        )
        self.governor = CheckInGovernor(
            self.timer, self.scheduler, self.clock, s.checkin_threshold, s.grace_period_seconds
        )
        self.scheduler.continue_work = self.continue_work
        self.scheduler.back_to_work = self.back_to_work
        self.timer.subscribe(self._on_timer_event)
        self.governor.subscribe(self._on_grace)
        self._last_block_index: int | None = None

    def close(self) -> None:
        self.governor.close()
        self.scheduler.close()
        self.recovery.close()

    # ── Hooks ─────────────────────────────────────────────────

    def _fire(self, hook_point: str, context: dict[str, Any]) -> None:
        if self.hooks_enabled:
            fire_hooks(hook_point, context, self.root)

    def _on_timer_event(self, event: TimerEvent) -> None:
        hook_point = HOOK_POINTS.get(event.kind)
        if hook_point is not None:
            self._fire(hook_point, _event_context(event))

    def _on_grace(self, what: str, grace: GracePeriod) -> None:
        self._fire("on_grace_period", {
            "event": what,
            "blockIndex": grace.block_index,
            "date": grace.date,
            "startedAt": grace.started_at,
            "duration": grace.duration,
        })

    # ── Lifecycle ─────────────────────────────────────────────

    def startup(self) -> TimerState:
        """Recover an interrupted run and settle past blocks. Call once after construction."""
        recovered = self.recovery.recover()
        if recovered is not None:
            logger.info("Recovered timer in state %s", recovered.value)
        self._try_settle_past_blocks()
        return self.timer.state

    def _timer_block_index(self) -> int | None:
        session = self.timer.session
        return session.block_index if session is not None else None

    def _settle_past_blocks(self) -> None:
        index = block_index_at(self.clock.now())
        self.days.process_auto_skip(index, self._timer_block_index())
        self._last_block_index = index

    def _try_settle_past_blocks(self) -> None:
        # _last_block_index only moves on success, so the next tick retries
        try:
            self._settle_past_blocks()
        except PersistenceError as e:
            logger.warning("Settling past blocks failed; will retry: %s", e)

    def tick(self) -> TickResult:
        """The periodic wake-up (about once a second)."""
        if self.timer.pending_write:
            try:
                self.timer.flush()
            except PersistenceError as e:
                logger.warning("Retrying block write failed: %s", e)
        try:
            result = self.timer.tick()
        except PersistenceError as e:
            logger.warning("Block write failed on completion; will retry: %s", e)
            result = TickResult(time_left=self.timer.time_left())
        self.recovery.maybe_autosave()
        try:
            self.scheduler.poll()
            self.governor.poll()
        except InvalidTransition as e:
            logger.warning("Autonomous transition refused: %s", e)
        except PersistenceError as e:
            logger.warning("Block write failed during autonomous transition: %s", e)

        if block_index_at(self.clock.now()) != self._last_block_index:
            self._try_settle_past_blocks()
        return result

    def wake(self) -> TickResult:
        """Catch up after the process was suspended."""
        try:
            self.recovery.restore_from_background()
        except PersistenceError as e:
            logger.warning("Block write failed while catching up: %s", e)
        return self.tick()

    # ── User intents ──────────────────────────────────────────

    def start(
        self,
        block_index: int | None = None,
        category: str | None = None,
        label: str | None = None,
        break_mode: bool = False,
    ) -> TimerSession:
        if block_index is None:
            block_index = block_index_at(self.clock.now())
        if block_index == block_index_at(self.clock.now()):
            self.days.activate_block(block_index)
        return self.timer.start(block_index, category, label, break_mode, Trigger.USER)

    def pause(self) -> int:
        return self.timer.pause(Trigger.USER)

    def resume(self) -> TimerState:
        return self.timer.resume(Trigger.USER)

    def switch_to_break(self) -> None:
        self.timer.switch_to_break(Trigger.USER)

    def switch_to_work(self) -> None:
        self.timer.switch_to_work(Trigger.USER)

    def update_category(self, category: str | None, label: str | None) -> bool:
        return self.timer.update_category(category, label, Trigger.USER)

    def snooze_break(self) -> None:
        self.timer.snooze_break(trigger=Trigger.USER)

    def stop(self, mark_complete: bool = False) -> Completion:
        return self.timer.stop(mark_complete, Trigger.USER)

    def skip(self, block_index: int | None = None) -> Block:
        if block_index is None:
            block_index = block_index_at(self.clock.now())
        if self.timer.state in (TimerState.COMPLETED, TimerState.SKIPPED):
            self.timer.dismiss(Trigger.USER)
        return self.timer.skip(block_index, trigger=Trigger.USER)

    def continue_work(self, trigger: Trigger = Trigger.USER) -> TimerSession:
        """Start on the current block with the finished run's context.

        The auto-continue countdown fires this same method with ``Trigger.AUTO``.
        """
        self.days.activate_block(block_index_at(self.clock.now()))
        return self.timer.continue_work(trigger)

    def back_to_work(self, trigger: Trigger = Trigger.USER) -> TimerSession:
        self.days.activate_block(block_index_at(self.clock.now()))
        return self.timer.back_to_work(trigger)

    def dismiss(self) -> None:
        self.timer.dismiss(Trigger.USER)
        self.governor.acknowledge()

    def check_in(self) -> None:
        """The user answered "still there?"."""
        self.governor.acknowledge()

    def flush(self) -> bool:
        return self.timer.flush()

    def reset_day(self, day: str | None = None) -> list[Block]:
        """Clear recorded time on *day* (default today).

        Refused while a run is live on that date or a failed write for it is
        still waiting to be flushed.
        """
        day = date.fromisoformat(day or self.clock.now().date().isoformat()).isoformat()
        session = self.timer.session
        if session is not None and session.date == day:
            raise InvalidTransition(f"Cannot reset {day} while a timer is running on it.")
        pending = self.timer.pending_block
        if pending is not None and pending.date == day:
            raise InvalidTransition(f"Cannot reset {day} while a block write is pending.")
        return self.days.reset_day(day)

    # ── Published state ───────────────────────────────────────

    def state(self) -> dict[str, Any]:
        moment = self.clock.now()
        now = moment.timestamp()
        current = block_index_at(moment)
        data = self.timer.describe()
        pending = self.scheduler.pending
        data.update({
            "now": now,
            "date": data.get("date") or moment.date().isoformat(),
            "currentBlockIndex": current,
            "currentDisplayNumber": display_number(current, self.settings.day_start_hour),
            "pendingWrite": self.timer.pending_write,
            "autoContinue": {
                "kind": pending.kind.value,
                "remaining": pending.remaining(now),
                "blockIndex": pending.block_index,
            } if pending is not None else None,
            "checkIn": {
                "consecutiveAuto": self.governor.consecutive_auto,
                "threshold": self.governor.threshold,
                "graceRemaining": self.governor.remaining(now),
            },
            "recovery": self.recovery.describe(),
        })
        return data

    def day(self, day: str | None = None) -> dict[str, Any]:
        """All 72 blocks of a day with display fields."""
        blocks = self.days.load_day(day)
        rows = []
        for block in blocks:
            row = block.to_dict()
            row["displayNumber"] = display_number(block.block_index, self.settings.day_start_hour)
            row["displayMinutes"] = display_minutes(block)
            row["displayLabel"] = display_label(block)
            row["fill"] = [
                {"type": s.type.value, "category": s.category, "label": s.label,
                 "start": round(s.start, 6), "width": round(s.width, 6)}
                for s in fill_layout(block.runs, legacy_segments=block.segments)
            ]
            rows.append(row)
        return {
            "date": blocks[0].date if blocks else day,
            "blocks": rows,
            "totals": day_totals(blocks),
        }
