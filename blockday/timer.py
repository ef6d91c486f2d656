"""Block timer state machine.

Owns the active block, the countdown, work/break mode and the pause state,
and turns them into Run and Block updates. All remaining-time arithmetic is
derived from epoch anchors (``started_at``, ``end_at``), never from counted
ticks, so a missed tick or a suspended process cannot cause drift.

States::

    Idle -> RunningWork <-> RunningBreak
    Running* -> Paused -> Running*      (resume before the boundary)
    Running* / Paused -> Completed      (boundary, paused expiry, stop)
    Idle -> Skipped
    Completed / Skipped -> Idle         (dismiss)
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from itertools import chain
from typing import Any, Callable

from blockday.clock import BLOCK_SECONDS, Clock, block_end_at, block_index_at
from blockday.errors import InvalidTransition
from blockday.models import Block, BlockSegment, BlockStatus, Run, SegmentType
from blockday.scale import (
    RunPlan,
    fill_layout,
    legacy_proportion,
    plan_run,
    previous_visual_proportion,
)
from blockday.segments import (
    MIN_SEGMENT_SECONDS,
    SegmentLedger,
    break_seconds,
    normalize,
    total_seconds,
    work_seconds,
)
from blockday.store import BlockStore, save_timer_fields

logger = logging.getLogger(__name__)

DEFAULT_BREAK_NOTIFY_SECONDS = 300


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING_WORK = "running_work"
    RUNNING_BREAK = "running_break"
    PAUSED = "paused"
    COMPLETED = "completed"
    SKIPPED = "skipped"


RUNNING_STATES = (TimerState.RUNNING_WORK, TimerState.RUNNING_BREAK)
STARTABLE_STATES = (TimerState.IDLE, TimerState.COMPLETED, TimerState.SKIPPED)


class Trigger(str, Enum):
    """Who issued an intent: the user, or the engine acting on its own."""

    USER = "user"
    AUTO = "auto"


class Outcome(str, Enum):
    NATURAL = "natural"  # countdown reached the block boundary while running
    PAUSED_EXPIRY = "paused_expiry"
    STOPPED = "stopped"


class EventKind(str, Enum):
    STARTED = "started"
    SEGMENT_SPLIT = "segment_split"
    CONTEXT_CHANGED = "context_changed"
    PAUSED = "paused"
    RESUMED = "resumed"
    BREAK_NOTIFY = "break_notify"
    BOUNDARY_CROSSED_BACKGROUND = "boundary_crossed_background"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    DISMISSED = "dismissed"
    RESTORED = "restored"


@dataclass
class Completion:
    block_index: int
    date: str
    outcome: Outcome
    was_break: bool
    seconds_used: int
    initial_time: int
    segments: list[BlockSegment]
    completed_at: float
    run_id: str
    category: str | None = None
    label: str | None = None
    last_work_category: str | None = None
    last_work_label: str | None = None
    mark_complete: bool = False

    @property
    def is_natural(self) -> bool:
        """Timer reached the boundary (5 s tolerance for timing jitter)."""
        return self.outcome == Outcome.NATURAL or self.seconds_used >= self.initial_time - 5


@dataclass
class TimerEvent:
    kind: EventKind
    at: float
    trigger: Trigger
    state: TimerState
    block_index: int | None = None
    date: str | None = None
    completion: Completion | None = None


@dataclass
class TickResult:
    events: list[TimerEvent] = field(default_factory=list)
    time_left: int = 0


@dataclass
class TimerSession:
    """Ephemeral state of the run in flight."""

    block_index: int
    date: str
    run_id: str
    plan: RunPlan
    started_at: float
    end_at: float
    initial_time: int
    ledger: SegmentLedger
    is_break: bool = False
    category: str | None = None
    label: str | None = None
    last_work_category: str | None = None
    last_work_label: str | None = None
    paused_at: float | None = None
    seconds_used_at_pause: int = 0
    break_notify_at: float | None = None
    earlier_seconds: int = 0  # seconds of runs closed by pause/resume in this session

    @property
    def paused(self) -> bool:
        return self.paused_at is not None

    def time_left(self, now: float) -> int:
        if self.paused:
            return max(0, self.initial_time - self.seconds_used_at_pause)
        return max(0, math.ceil(self.end_at - now))

    def seconds_used(self, now: float) -> int:
        if self.paused:
            return self.seconds_used_at_pause
        return max(0, min(self.initial_time, self.initial_time - self.time_left(now)))


StatusPolicy = Callable[[Block, Completion], BlockStatus]
Observer = Callable[[TimerEvent], Any]


def keep_status(block: Block, completion: Completion) -> BlockStatus:
    """Default completion policy: leave the status alone unless asked to mark done."""
    if completion.mark_complete:
        return BlockStatus.DONE
    return block.status


def base_segments(block: Block) -> list[BlockSegment]:
    """Segments of all finalized runs on *block*."""
    return normalize(chain.from_iterable(run.segments for run in block.runs))


def apply_aggregates(block: Block, segments: list[BlockSegment]) -> None:
    block.segments = normalize(segments)
    block.used_seconds = total_seconds(block.segments)
    block.progress = min(100.0, work_seconds(block.segments) / BLOCK_SECONDS * 100.0)
    block.break_progress = min(100.0, break_seconds(block.segments) / BLOCK_SECONDS * 100.0)


class BlockTimer:
    """The timer state machine. One instance per user; single control flow."""

    def __init__(
        self,
        clock: Clock,
        store: BlockStore,
        user_id: str = "",
        break_notify_seconds: int = DEFAULT_BREAK_NOTIFY_SECONDS,
        status_policy: StatusPolicy = keep_status,
    ) -> None:
        self.clock = clock
        self.store = store
        self.user_id = user_id
        self.break_notify_seconds = break_notify_seconds
        self.status_policy = status_policy
        self.state = TimerState.IDLE
        self.session: TimerSession | None = None
        self.block: Block | None = None
        self.completion: Completion | None = None
        self._observers: list[Observer] = []
        self._pending: Block | None = None
        self._collecting: list[TimerEvent] | None = None

    # ---- Observers ----

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(self, kind: EventKind, trigger: Trigger, completion: Completion | None = None) -> TimerEvent:
        session = self.session
        event = TimerEvent(
            kind=kind,
            at=self._now(),
            trigger=trigger,
            state=self.state,
            block_index=session.block_index if session else (completion.block_index if completion else None),
            date=session.date if session else (completion.date if completion else None),
            completion=completion,
        )
        if self._collecting is not None:
            self._collecting.append(event)
        for observer in list(self._observers):
            observer(event)
        return event

    # ---- Read-only views ----

    def _now(self) -> float:
        return self.clock.now().timestamp()

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    @property
    def pending_write(self) -> bool:
        return self._pending is not None

    @property
    def pending_block(self) -> Block | None:
        return self._pending

    def seconds_used(self, now: float | None = None) -> int:
        if self.session is None:
            return 0
        return self.session.seconds_used(self._now() if now is None else now)

    def time_left(self, now: float | None = None) -> int:
        if self.session is None:
            return 0
        return self.session.time_left(self._now() if now is None else now)

    def live_segments(self, now: float | None = None) -> list[BlockSegment]:
        """Segments of the current run including the in-progress tail."""
        if self.session is None:
            return []
        return self.session.ledger.segments(self.seconds_used(now))

    def _require(self, allowed: tuple[TimerState, ...], action: str) -> None:
        if self.state not in allowed:
            raise InvalidTransition(f"Cannot {action} while {self.state.value}.", state=self.state.value)

    def _finish_if_expired(self) -> Completion | None:
        """Complete a running timer whose boundary passed before the next tick."""
        session = self.session
        if session is None or self.state not in RUNNING_STATES:
            return None
        if self._now() < session.end_at:
            return None
        return self._complete(Outcome.NATURAL, session.end_at, Trigger.AUTO)

    # ---- Start ----

    def _load_block(self, day: str, block_index: int) -> Block:
        block = self.store.fetch_block(day, block_index)
        if block is None:
            block = Block.placeholder(day, block_index, self.user_id)
        return block

    @staticmethod
    def _adopt_legacy_segments(block: Block, now: float) -> None:
        """Fold segments recorded without runs into one finalized run."""
        if block.runs or not block.segments:
            return
        legacy = normalize(block.segments)
        block.runs.append(Run(
            id=f"legacy-{block.date}-{block.block_index}",
            started_at=now,
            ended_at=now,
            initial_real_time=float(BLOCK_SECONDS),
            scale_factor=1.0 / BLOCK_SECONDS,
            previous_proportion=0.0,
            segments=tuple(legacy),
        ))
        logger.debug("Adopted %d legacy segments (%.3f fill) on block %d",
                     len(legacy), legacy_proportion(legacy), block.block_index)

    def start(
        self,
        block_index: int,
        category: str | None = None,
        label: str | None = None,
        break_mode: bool = False,
        trigger: Trigger = Trigger.USER,
    ) -> TimerSession:
        """Start a run on *block_index*, which must be the current block."""
        self._require(STARTABLE_STATES, "start a timer")
        moment = self.clock.now()
        now = moment.timestamp()
        current = block_index_at(moment)
        if block_index < current:
            raise InvalidTransition(f"Block {block_index} is in the past (current: {current}).", state=self.state.value)
        if block_index > current:
            raise InvalidTransition(f"Block {block_index} is in the future (current: {current}).", state=self.state.value)

        day = moment.date().isoformat()
        block = self._load_block(day, block_index)
        if block.active_run_snapshot is not None:
            raise InvalidTransition(
                f"Block {block_index} has an unfinished run {block.active_run_snapshot.id}; recover it first.",
                state=self.state.value,
            )
        self._adopt_legacy_segments(block, now)

        end_at = block_end_at(day, block_index, moment.tzinfo).timestamp()
        plan = plan_run(previous_visual_proportion(block), end_at - now)

        previous = self.completion
        if break_mode:
            # Keep the work context of the previous session for "back to work"
            last_category = previous.last_work_category if previous else category
            last_label = previous.last_work_label if previous else label
        else:
            last_category, last_label = category, label

        segment_type = SegmentType.BREAK if break_mode else SegmentType.WORK
        session = TimerSession(
            block_index=block_index,
            date=day,
            run_id=str(uuid.uuid4()),
            plan=plan,
            started_at=now,
            end_at=end_at,
            initial_time=math.ceil(end_at - now),
            ledger=SegmentLedger(segment_type, category, label),
            is_break=break_mode,
            category=category,
            label=label,
            last_work_category=last_category,
            last_work_label=last_label,
            break_notify_at=now + self.break_notify_seconds if break_mode else None,
        )

        if block.status in (BlockStatus.IDLE, BlockStatus.SKIPPED) and block.used_seconds == 0:
            block.status = BlockStatus.PLANNED
        if category is not None:
            block.category = category
        if label is not None:
            block.label = label
        apply_aggregates(block, base_segments(block))

        self.block = block
        self.session = session
        self.completion = None
        self.state = TimerState.RUNNING_BREAK if break_mode else TimerState.RUNNING_WORK
        logger.info(
            "Timer started for block %d - initial_time=%ds break=%s previous=%.1f%% scale_factor=%.8f",
            block_index, session.initial_time, break_mode,
            plan.previous_proportion * 100, plan.scale_factor,
        )
        self._emit(EventKind.STARTED, trigger)
        return session

    def continue_work(self, trigger: Trigger = Trigger.USER) -> TimerSession:
        """Start on the block that is current now, keeping the finished session's context."""
        previous = self._require_completion("continue")
        return self.start(
            block_index_at(self.clock.now()),
            category=previous.category,
            label=previous.label,
            trigger=trigger,
        )

    def back_to_work(self, trigger: Trigger = Trigger.USER) -> TimerSession:
        """Start work on the current block, restoring the pre-break work context."""
        previous = self._require_completion("go back to work")
        return self.start(
            block_index_at(self.clock.now()),
            category=previous.last_work_category,
            label=previous.last_work_label,
            trigger=trigger,
        )

    def _require_completion(self, action: str) -> Completion:
        self._require((TimerState.COMPLETED,), action)
        assert self.completion is not None
        return self.completion

    # ---- Work / break ----

    def switch_to_break(self, trigger: Trigger = Trigger.USER) -> None:
        self._require(RUNNING_STATES, "switch to break")
        if self._finish_if_expired() is not None:
            return
        session = self.session
        assert session is not None
        if session.is_break:
            return
        now = self._now()
        session.last_work_category = session.category
        session.last_work_label = session.label
        session.ledger.append_or_extend(SegmentType.BREAK, None, None, session.seconds_used(now))
        session.is_break = True
        session.break_notify_at = now + self.break_notify_seconds
        self.state = TimerState.RUNNING_BREAK
        logger.info("Switched to break, preserved work context: %s / %s",
                    session.last_work_category, session.last_work_label)
        self._emit(EventKind.SEGMENT_SPLIT, trigger)

    def switch_to_work(self, trigger: Trigger = Trigger.USER) -> None:
        self._require(RUNNING_STATES, "switch to work")
        if self._finish_if_expired() is not None:
            return
        session = self.session
        assert session is not None
        if not session.is_break:
            return
        session.category = session.last_work_category
        session.label = session.last_work_label
        session.ledger.append_or_extend(
            SegmentType.WORK, session.category, session.label, self.seconds_used()
        )
        session.is_break = False
        session.break_notify_at = None
        self.state = TimerState.RUNNING_WORK
        logger.info("Switched to work, restored work context: %s / %s", session.category, session.label)
        self._emit(EventKind.SEGMENT_SPLIT, trigger)

    def snooze_break(self, seconds: int | None = None, trigger: Trigger = Trigger.USER) -> None:
        """Push the mid-block break reminder back; the timer keeps running."""
        self._require((TimerState.RUNNING_BREAK,), "snooze the break reminder")
        if self._finish_if_expired() is not None:
            return
        assert self.session is not None
        self.session.break_notify_at = self._now() + (seconds or self.break_notify_seconds)
        self._emit(EventKind.CONTEXT_CHANGED, trigger)

    def update_category(
        self, category: str | None, label: str | None, trigger: Trigger = Trigger.USER
    ) -> bool:
        """Change what the user is working on. Returns True if a segment boundary was made.

        Label-only changes need ``MIN_SEGMENT_SECONDS`` on the open segment to
        split; shorter segments are just relabeled.
        """
        self._require(RUNNING_STATES, "change category")
        if self._finish_if_expired() is not None:
            return False
        session = self.session
        assert session is not None and self.block is not None
        category_changed = category != session.category
        label_changed = label != session.label
        split = False

        if (category_changed or label_changed) and not session.is_break:
            used = session.seconds_used(self._now())
            duration = used - session.ledger.open_start
            label_only = label_changed and not category_changed
            if duration > 0 and (not label_only or duration >= MIN_SEGMENT_SECONDS):
                session.ledger.append_or_extend(SegmentType.WORK, category, label, used)
                split = True
            else:
                session.ledger.relabel(category, label)

        session.category = category
        session.label = label
        if session.is_break:
            session.last_work_category = category
            session.last_work_label = label
        if category is not None:
            self.block.category = category
        if label is not None:
            self.block.label = label
        self._emit(EventKind.SEGMENT_SPLIT if split else EventKind.CONTEXT_CHANGED, trigger)
        return split

    # ---- Pause / resume ----

    def pause(self, trigger: Trigger = Trigger.USER) -> int:
        """Freeze the countdown. Returns the seconds used so far in this run.

        A run whose boundary already passed completes naturally instead.
        """
        self._require(RUNNING_STATES, "pause")
        session = self.session
        assert session is not None
        if self._finish_if_expired() is not None:
            return session.initial_time
        now = self._now()
        used = session.seconds_used(now)
        session.ledger.close(used)
        session.seconds_used_at_pause = used
        session.paused_at = now
        self.state = TimerState.PAUSED
        logger.info("Timer paused at %ds remaining", session.time_left(now))
        self._emit(EventKind.PAUSED, trigger)
        return used

    def resume(self, trigger: Trigger = Trigger.USER) -> TimerState:
        """Resume a paused timer, or complete it if the boundary passed meanwhile."""
        self._require((TimerState.PAUSED,), "resume")
        session = self.session
        block = self.block
        assert session is not None and block is not None
        moment = self.clock.now()
        now = moment.timestamp()
        if now >= session.end_at:
            self._complete(Outcome.PAUSED_EXPIRY, now, trigger)
            return self.state

        # The paused run ends here; the remainder gets its own locked factor
        block.runs.append(self._finished_run(session.paused_at))
        apply_aggregates(block, base_segments(block))
        plan = plan_run(previous_visual_proportion(block), session.end_at - now)
        session.earlier_seconds += session.seconds_used_at_pause
        session.run_id = str(uuid.uuid4())
        session.plan = plan
        session.started_at = now
        session.initial_time = math.ceil(session.end_at - now)
        open_type = SegmentType.BREAK if session.is_break else SegmentType.WORK
        session.ledger = SegmentLedger(open_type, session.category, session.label)
        session.paused_at = None
        session.seconds_used_at_pause = 0
        if session.is_break:
            session.break_notify_at = now + self.break_notify_seconds
        self.state = TimerState.RUNNING_BREAK if session.is_break else TimerState.RUNNING_WORK
        logger.info("Timer resumed with %ds remaining, scale_factor=%.8f",
                    session.initial_time, plan.scale_factor)
        self._emit(EventKind.RESUMED, trigger)
        return self.state

    # ---- Ticking / completion ----

    def tick(self, background: bool = False) -> TickResult:
        """Recompute the countdown from the clock and fire due transitions.

        *background* marks a wake-up after suspension; crossing the boundary
        while suspended is reported before completing.
        """
        result = TickResult()
        session = self.session
        if session is None or self.state not in RUNNING_STATES + (TimerState.PAUSED,):
            return result
        self._collecting = result.events
        try:
            now = self._now()
            if self.state == TimerState.PAUSED:
                if now >= session.end_at:
                    self._complete(Outcome.PAUSED_EXPIRY, session.end_at, Trigger.AUTO)
                else:
                    result.time_left = session.time_left(now)
                return result

            result.time_left = session.time_left(now)
            if session.is_break and session.break_notify_at is not None and now >= session.break_notify_at:
                session.break_notify_at = None
                self._emit(EventKind.BREAK_NOTIFY, Trigger.AUTO)
            if result.time_left <= 0:
                if background:
                    self._emit(EventKind.BOUNDARY_CROSSED_BACKGROUND, Trigger.AUTO)
                self._complete(Outcome.NATURAL, session.end_at, Trigger.AUTO)
        finally:
            self._collecting = None
        return result

    def complete(self, trigger: Trigger = Trigger.AUTO) -> Completion:
        """Complete a run whose boundary has passed (running or paused)."""
        self._require(RUNNING_STATES + (TimerState.PAUSED,), "complete")
        session = self.session
        assert session is not None
        if self._now() < session.end_at:
            raise InvalidTransition("Countdown has not reached zero; use stop().", state=self.state.value)
        outcome = Outcome.PAUSED_EXPIRY if session.paused else Outcome.NATURAL
        return self._complete(outcome, session.end_at, trigger)

    def stop(self, mark_complete: bool = False, trigger: Trigger = Trigger.USER) -> Completion:
        """End the run early at the current elapsed time."""
        self._require(RUNNING_STATES + (TimerState.PAUSED,), "stop")
        expired = self._finish_if_expired()
        if expired is not None:
            return expired
        return self._complete(Outcome.STOPPED, self._now(), trigger, mark_complete=mark_complete)

    def _finished_run(self, ended_at: float | None) -> Run:
        session = self.session
        assert session is not None
        plan = session.plan
        return Run(
            id=session.run_id,
            started_at=session.started_at,
            ended_at=ended_at,
            initial_real_time=plan.remaining_real_seconds,
            scale_factor=plan.scale_factor,
            previous_proportion=plan.previous_proportion,
            segments=tuple(session.ledger.closed),
        )

    def _complete(
        self,
        outcome: Outcome,
        completed_at: float,
        trigger: Trigger,
        mark_complete: bool = False,
    ) -> Completion:
        session = self.session
        block = self.block
        assert session is not None and block is not None
        if outcome == Outcome.NATURAL:
            used = session.initial_time
        elif session.paused:
            used = session.seconds_used_at_pause
        else:
            used = session.seconds_used(completed_at)
        session.ledger.close(used)

        block.runs.append(self._finished_run(completed_at))
        block.active_run_snapshot = None
        apply_aggregates(block, base_segments(block))
        if session.category is not None:
            block.category = session.category
        if session.label is not None:
            block.label = session.label

        completion = Completion(
            block_index=session.block_index,
            date=session.date,
            outcome=outcome,
            was_break=session.is_break,
            seconds_used=session.earlier_seconds + used,
            initial_time=session.earlier_seconds + session.initial_time,
            segments=list(block.segments),
            completed_at=completed_at,
            run_id=session.run_id,
            category=session.category,
            label=session.label,
            last_work_category=session.last_work_category,
            last_work_label=session.last_work_label,
            mark_complete=mark_complete,
        )
        status = self.status_policy(block, completion)
        if status == BlockStatus.SKIPPED and block.used_seconds > 0:
            status = block.status
        block.status = status

        self.completion = completion
        self.session = None
        self.state = TimerState.COMPLETED
        logger.info(
            "Timer complete (%s) on block %d - used %ds, segments: %d, status: %s",
            outcome.value, completion.block_index, completion.seconds_used,
            len(completion.segments), block.status.value,
        )
        self._emit(EventKind.COMPLETED, trigger, completion)
        self._write(block)
        return completion

    # ---- Skip / dismiss ----

    def skip(self, block_index: int, day: str | None = None, trigger: Trigger = Trigger.USER) -> Block:
        """Mark a block skipped. Only from Idle and only for blocks with no recorded time."""
        self._require((TimerState.IDLE,), "skip a block")
        if day is None:
            day = self.clock.now().date().isoformat()
        block = self._load_block(day, block_index)
        if block.used_seconds > 0 or block.active_run_snapshot is not None:
            raise InvalidTransition(
                f"Block {block_index} has recorded time and cannot be skipped.", state=self.state.value
            )
        block.status = BlockStatus.SKIPPED
        self.block = block
        self.state = TimerState.SKIPPED
        self.completion = None
        logger.info("Skipped block %s/%d", day, block_index)
        self._emit(EventKind.SKIPPED, trigger, None)
        self._write(block)
        return block

    def dismiss(self, trigger: Trigger = Trigger.USER) -> None:
        """Close a completion/skip and return to Idle."""
        if self.state == TimerState.IDLE:
            return
        self._require((TimerState.COMPLETED, TimerState.SKIPPED), "dismiss")
        self.state = TimerState.IDLE
        self._emit(EventKind.DISMISSED, trigger)

    # ---- Persistence ----

    def _write(self, block: Block) -> Block:
        self._pending = block
        saved = save_timer_fields(self.store, block)
        self._pending = None
        if self.block is block:
            self.block = saved
        return saved

    def flush(self) -> bool:
        """Retry a finalization write that failed. Returns True if one was pending."""
        if self._pending is None:
            return False
        self._write(self._pending)
        return True

    # ---- Snapshots ----

    def snapshot_run(self, now: float | None = None) -> Run | None:
        """The in-flight run, including its unfinished tail segment."""
        session = self.session
        if session is None or self.state not in RUNNING_STATES + (TimerState.PAUSED,):
            return None
        now = self._now() if now is None else now
        used = session.seconds_used(now)
        ledger = session.ledger
        plan = session.plan
        return Run(
            id=session.run_id,
            started_at=session.started_at,
            initial_real_time=plan.remaining_real_seconds,
            scale_factor=plan.scale_factor,
            previous_proportion=plan.previous_proportion,
            segments=tuple(ledger.segments(used)),
            current_segment_start=ledger.open_start,
            current_type=ledger.open_type,
            current_category=session.category,
            current_label=session.label,
            last_work_category=session.last_work_category,
            last_work_label=session.last_work_label,
            elapsed=used,
            paused_at=session.paused_at,
            earlier_seconds=session.earlier_seconds,
        )

    def snapshot_block(self, now: float | None = None) -> Block | None:
        """A copy of the active block carrying the in-flight run as its snapshot."""
        run = self.snapshot_run(now)
        if run is None or self.block is None:
            return None
        block = replace(self.block, runs=list(self.block.runs))
        block.active_run_snapshot = run
        apply_aggregates(block, base_segments(block) + list(run.segments))
        return block

    def restore(self, block: Block, trigger: Trigger = Trigger.AUTO) -> TimerState:
        """Rebuild the session from ``block.active_run_snapshot``.

        The snapshot's locked scale factor is reused. If the boundary has
        already passed, the run completes at the boundary.
        """
        self._require(STARTABLE_STATES, "restore a snapshot")
        snapshot = block.active_run_snapshot
        if snapshot is None:
            raise InvalidTransition(f"Block {block.block_index} has no snapshot to restore.")
        moment = self.clock.now()
        now = moment.timestamp()
        end_at = block_end_at(block.date, block.block_index, moment.tzinfo).timestamp()
        closed = [
            s for s in snapshot.segments
            if s.start_elapsed is None or s.start_elapsed < snapshot.current_segment_start
        ]
        is_break = snapshot.current_type == SegmentType.BREAK
        ledger = SegmentLedger(
            snapshot.current_type,
            snapshot.current_category,
            snapshot.current_label,
            closed=closed,
            open_start=snapshot.current_segment_start,
        )
        session = TimerSession(
            block_index=block.block_index,
            date=block.date,
            run_id=snapshot.id,
            plan=RunPlan(
                scale_factor=snapshot.scale_factor,
                previous_proportion=snapshot.previous_proportion,
                remaining_real_seconds=snapshot.initial_real_time,
            ),
            started_at=snapshot.started_at,
            end_at=end_at,
            initial_time=math.ceil(end_at - snapshot.started_at),
            ledger=ledger,
            is_break=is_break,
            category=snapshot.current_category,
            label=snapshot.current_label,
            last_work_category=snapshot.last_work_category,
            last_work_label=snapshot.last_work_label,
            paused_at=snapshot.paused_at,
            seconds_used_at_pause=snapshot.elapsed if snapshot.paused_at is not None else 0,
            earlier_seconds=snapshot.earlier_seconds,
            break_notify_at=now + self.break_notify_seconds if is_break else None,
        )
        self.block = block
        self.session = session
        self.completion = None
        if session.paused:
            self.state = TimerState.PAUSED
        else:
            self.state = TimerState.RUNNING_BREAK if is_break else TimerState.RUNNING_WORK
        logger.info("Restored run %s on block %s/%d (%s)", snapshot.id, block.date, block.block_index, self.state.value)
        self._emit(EventKind.RESTORED, trigger)

        if now >= end_at:
            if session.paused:
                self._complete(Outcome.PAUSED_EXPIRY, end_at, Trigger.AUTO)
            else:
                self._emit(EventKind.BOUNDARY_CROSSED_BACKGROUND, Trigger.AUTO)
                self._complete(Outcome.NATURAL, end_at, Trigger.AUTO)
        return self.state

    # ---- Presentation ----

    def describe(self) -> dict[str, Any]:
        """Everything the presentation layer draws, in one dict."""
        now = self._now()
        session = self.session
        data: dict[str, Any] = {"state": self.state.value}
        if session is not None and self.block is not None:
            used = session.seconds_used(now)
            live = session.ledger.segments(used)
            data.update({
                "blockIndex": session.block_index,
                "date": session.date,
                "runId": session.run_id,
                "timeLeft": session.time_left(now),
                "secondsUsed": used,
                "isBreak": session.is_break,
                "paused": session.paused,
                "category": session.category,
                "label": session.label,
                "lastWorkCategory": session.last_work_category,
                "lastWorkLabel": session.last_work_label,
                "scaleFactor": session.plan.scale_factor,
                "previousProportion": session.plan.previous_proportion,
                "fillProportion": session.plan.proportion_at(used),
                "segments": [s.to_dict() for s in live],
                "fill": [
                    {"type": s.type.value, "category": s.category, "label": s.label,
                     "start": round(s.start, 6), "width": round(s.width, 6), "live": s.live}
                    for s in fill_layout(self.block.runs, live, session.plan, used)
                ],
            })
        if self.completion is not None:
            c = self.completion
            data["completion"] = {
                "blockIndex": c.block_index,
                "date": c.date,
                "outcome": c.outcome.value,
                "wasBreak": c.was_break,
                "secondsUsed": c.seconds_used,
                "completedAt": c.completed_at,
                "segments": [s.to_dict() for s in c.segments],
            }
        return data
