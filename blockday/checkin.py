"""Check-in governor: caps how many blocks advance without the user.

Every block started by the auto-continue scheduler counts as one autonomous
advance; any explicit user intent resets the count. Once the count reaches
the threshold, the next completion opens a grace period instead of a
countdown. If the grace period runs out unanswered, the current block is
skipped (never one with recorded time) and the count starts over.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from blockday.autocontinue import AutoContinueScheduler, Countdown, PendingAction
from blockday.clock import Clock, block_index_at
from blockday.models import Block
from blockday.timer import BlockTimer, EventKind, TimerEvent, TimerState, Trigger

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 3
DEFAULT_GRACE_PERIOD_SECONDS = 30


@dataclass
class GracePeriod:
    started_at: float
    duration: int
    block_index: int | None = None
    date: str | None = None

    def remaining(self, now: float) -> float:
        return max(0.0, self.duration - (now - self.started_at))


GraceListener = Callable[[str, GracePeriod], None]


class CheckInGovernor:
    def __init__(
        self,
        timer: BlockTimer,
        scheduler: AutoContinueScheduler,
        clock: Clock,
        threshold: int = DEFAULT_THRESHOLD,
        grace_period_seconds: int = DEFAULT_GRACE_PERIOD_SECONDS,
    ) -> None:
        self.timer = timer
        self.scheduler = scheduler
        self.clock = clock
        self.threshold = threshold
        self.grace_period_seconds = grace_period_seconds
        self.consecutive_auto = 0
        self.grace: GracePeriod | None = None
        self._listeners: list[GraceListener] = []
        scheduler.gate = self._allow
        self._unsubscribe = timer.subscribe(self._on_event)

    def subscribe(self, listener: GraceListener) -> None:
        """*listener* receives ``("started" | "expired" | "answered", grace)``."""
        self._listeners.append(listener)

    def _notify(self, what: str, grace: GracePeriod) -> None:
        for listener in list(self._listeners):
            listener(what, grace)

    def close(self) -> None:
        self._unsubscribe()
        if self.scheduler.gate == self._allow:
            self.scheduler.gate = None

    @property
    def in_grace_period(self) -> bool:
        return self.grace is not None

    def _on_event(self, event: TimerEvent) -> None:
        if event.trigger == Trigger.USER:
            if self.consecutive_auto:
                logger.debug("User action %s resets auto counter (was %d)", event.kind.value, self.consecutive_auto)
            self.consecutive_auto = 0
            if self.grace is not None:
                self.acknowledge()
            return
        if event.kind == EventKind.STARTED:
            self.consecutive_auto += 1
            logger.info("Autonomous advance %d/%d", self.consecutive_auto, self.threshold)

    def _allow(self, action: PendingAction) -> bool:
        if action.kind == Countdown.BREAK_RETURN:
            return True
        if self.consecutive_auto < self.threshold:
            return True
        self.grace = GracePeriod(
            started_at=action.fired_at,
            duration=self.grace_period_seconds,
            block_index=action.block_index,
            date=action.date,
        )
        logger.info("Check-in required after %d autonomous blocks; grace period %ds",
                    self.consecutive_auto, self.grace_period_seconds)
        self._notify("started", self.grace)
        return False

    def acknowledge(self) -> None:
        """The user answered the check-in."""
        grace = self.grace
        self.grace = None
        self.consecutive_auto = 0
        if grace is not None:
            logger.info("Check-in answered")
            self._notify("answered", grace)

    def remaining(self, now: float | None = None) -> float | None:
        if self.grace is None:
            return None
        if now is None:
            now = self.clock.now().timestamp()
        return self.grace.remaining(now)

    def poll(self) -> Block | None:
        """Expire the grace period if it ran out. Returns the skipped block, if any."""
        grace = self.grace
        if grace is None:
            return None
        moment = self.clock.now()
        if grace.remaining(moment.timestamp()) > 0:
            return None
        self.grace = None
        self.consecutive_auto = 0
        logger.info("Grace period expired without an answer")

        if self.timer.state in (TimerState.COMPLETED, TimerState.SKIPPED):
            self.timer.dismiss(Trigger.AUTO)
        skipped = None
        if self.timer.state == TimerState.IDLE:
            day = moment.date().isoformat()
            index = block_index_at(moment)
            current = self.timer.store.fetch_block(day, index)
            if current is not None and (current.used_seconds > 0 or current.active_run_snapshot is not None):
                logger.info("Block %d has recorded time; not skipping", index)
            else:
                skipped = self.timer.skip(index, day, Trigger.AUTO)
        self._notify("expired", grace)
        return skipped
