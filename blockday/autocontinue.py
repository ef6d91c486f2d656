"""Auto-continue countdowns.

After a natural completion the engine waits a short, epoch-anchored window
for the user. If nobody answers, it performs the same intent the user's
button would have, with ``Trigger.AUTO``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from blockday.clock import Clock
from blockday.errors import PersistenceError
from blockday.timer import BlockTimer, EventKind, Outcome, TimerEvent, TimerState, Trigger

logger = logging.getLogger(__name__)

DEFAULT_AUTO_CONTINUE_SECONDS = 25
DEFAULT_BREAK_OVER_SECONDS = 30


class Countdown(str, Enum):
    CONTINUE = "continue"  # work block finished: start the next one
    BREAK_OVER = "break_over"  # break block finished: back to work on the next one
    BREAK_RETURN = "break_return"  # break reminder unanswered: switch to work in place


@dataclass
class PendingAction:
    kind: Countdown
    fired_at: float
    duration: int
    block_index: int | None = None
    date: str | None = None

    def remaining(self, now: float) -> float:
        return max(0.0, self.duration - (now - self.fired_at))


Gate = Callable[[PendingAction], bool]
Intent = Callable[[Trigger], Any]


class AutoContinueScheduler:
    """Arms at most one countdown at a time and fires it from ``poll``.

    *gate*, when set, is asked before arming; returning False leaves the
    scheduler idle (the check-in governor uses this). ``continue_work`` and
    ``back_to_work`` are the intents fired on expiry; they default to the
    timer's own and the controller swaps in its user-button versions.
    """

    def __init__(
        self,
        timer: BlockTimer,
        clock: Clock,
        auto_continue_seconds: int = DEFAULT_AUTO_CONTINUE_SECONDS,
        break_over_seconds: int = DEFAULT_BREAK_OVER_SECONDS,
    ) -> None:
        self.timer = timer
        self.clock = clock
        self.auto_continue_seconds = auto_continue_seconds
        self.break_over_seconds = break_over_seconds
        self.pending: PendingAction | None = None
        self.gate: Gate | None = None
        self.continue_work: Intent = timer.continue_work
        self.back_to_work: Intent = timer.back_to_work
        self._unsubscribe = timer.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    def _on_event(self, event: TimerEvent) -> None:
        if event.trigger == Trigger.USER:
            self.cancel()
            return
        if event.kind == EventKind.COMPLETED and event.completion is not None:
            completion = event.completion
            if completion.outcome != Outcome.NATURAL:
                self.cancel()
                return
            kind = Countdown.BREAK_OVER if completion.was_break else Countdown.CONTINUE
            duration = self.break_over_seconds if completion.was_break else self.auto_continue_seconds
            self.arm(kind, completion.completed_at, duration, completion.block_index, completion.date)
        elif event.kind == EventKind.BREAK_NOTIFY:
            self.arm(Countdown.BREAK_RETURN, event.at, self.break_over_seconds, event.block_index, event.date)
        elif event.kind in (EventKind.STARTED, EventKind.DISMISSED, EventKind.SKIPPED):
            self.cancel()

    def arm(
        self,
        kind: Countdown,
        fired_at: float,
        duration: int,
        block_index: int | None = None,
        date: str | None = None,
    ) -> PendingAction | None:
        action = PendingAction(kind, fired_at, duration, block_index, date)
        if self.gate is not None and not self.gate(action):
            logger.info("Auto-continue %s withheld for block %s", kind.value, block_index)
            self.pending = None
            return None
        self.pending = action
        logger.info("Armed %s countdown (%ds) for block %s", kind.value, duration, block_index)
        return action

    def cancel(self) -> None:
        if self.pending is not None:
            logger.debug("Cancelled %s countdown", self.pending.kind.value)
        self.pending = None

    def remaining(self, now: float | None = None) -> float | None:
        if self.pending is None:
            return None
        if now is None:
            now = self.clock.now().timestamp()
        return self.pending.remaining(now)

    def poll(self, now: float | None = None) -> PendingAction | None:
        """Fire the pending countdown if it has run out. Returns the fired action."""
        action = self.pending
        if action is None:
            return None
        if now is None:
            now = self.clock.now().timestamp()
        if action.remaining(now) > 0:
            return None
        self.pending = None
        logger.info("Auto-continue: %s countdown expired", action.kind.value)
        if action.kind == Countdown.BREAK_RETURN:
            if self.timer.state == TimerState.RUNNING_BREAK:
                self.timer.switch_to_work(Trigger.AUTO)
            return action
        if self.timer.state != TimerState.COMPLETED:
            return None
        try:
            if action.kind == Countdown.CONTINUE:
                self.continue_work(Trigger.AUTO)
            else:
                self.back_to_work(Trigger.AUTO)
        except PersistenceError:
            # Nothing started; keep the countdown so the next poll tries again
            if self.timer.state == TimerState.COMPLETED:
                self.pending = action
            raise
        return action
