"""Tests for blockday/recovery.py: snapshots and crash recovery."""

import pytest

from blockday.days import completion_status
from blockday.models import BlockStatus
from blockday.recovery import CrashRecoveryManager
from blockday.timer import BlockTimer, EventKind, Outcome, TimerState

from conftest import TODAY


@pytest.fixture
def recovery(timer, store, clock):
    return CrashRecoveryManager(timer, store, clock, autosave_interval_seconds=5)


def _fresh_engine(clock, store):
    """A new timer and recovery manager over the same store, as after a restart."""
    timer = BlockTimer(clock, store, status_policy=completion_status)
    return timer, CrashRecoveryManager(timer, store, clock)


def test_snapshot_written_on_start(timer, recovery, store):
    session = timer.start(30, "Work", "Writing")
    saved = store.fetch_block(TODAY, 30)
    assert saved.active_run_snapshot is not None
    assert saved.active_run_snapshot.id == session.run_id
    assert saved.active_run_snapshot.scale_factor == pytest.approx(1 / 1200)
    assert saved.status == BlockStatus.PLANNED


def test_snapshot_written_on_segment_boundary(timer, recovery, store, clock):
    timer.start(30, "Work")
    clock.advance(40)
    timer.switch_to_break()
    snapshot = store.fetch_block(TODAY, 30).active_run_snapshot
    assert snapshot.elapsed == 40
    assert snapshot.current_segment_start == 40
    assert snapshot.current_type.value == "break"


def test_autosave_interval(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(3)
    assert recovery.maybe_autosave() is None
    clock.advance(2)
    saved = recovery.maybe_autosave()
    assert saved is not None
    assert saved.active_run_snapshot.elapsed == 5
    assert saved.used_seconds == 5


def test_autosave_skipped_while_paused(timer, recovery, clock):
    timer.start(30)
    clock.advance(10)
    timer.pause()
    clock.advance(10)
    assert recovery.maybe_autosave() is None


def test_snapshot_failure_is_kept_for_retry(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(5)
    store.fail_writes = 1
    assert recovery.save_snapshot() is None
    assert recovery.last_error is not None
    clock.advance(5)
    assert recovery.maybe_autosave() is not None
    assert recovery.last_error is None


def test_completion_clears_snapshot(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(1200)
    timer.tick()
    saved = store.fetch_block(TODAY, 30)
    assert saved.active_run_snapshot is None
    assert len(saved.runs) == 1


def test_recover_running_session_keeps_locked_factor(timer, recovery, store, clock):
    clock.advance(200)
    session = timer.start(30, "Work", "A")
    clock.advance(100)
    timer.update_category("Work", "B")
    clock.advance(50)
    recovery.save_snapshot()

    clock.advance(10)
    timer2, recovery2 = _fresh_engine(clock, store)
    assert recovery2.recover() == TimerState.RUNNING_WORK
    restored = timer2.session
    assert restored.run_id == session.run_id
    assert restored.plan.scale_factor == pytest.approx(session.plan.scale_factor)
    assert timer2.seconds_used() == 160
    assert timer2.time_left() == 1000 - 160
    assert [(s.label, s.seconds) for s in timer2.live_segments()] == [("A", 100), ("B", 60)]


def test_recover_paused_session(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(90)
    timer.pause()
    clock.advance(60)
    timer2, recovery2 = _fresh_engine(clock, store)
    assert recovery2.recover() == TimerState.PAUSED
    assert timer2.seconds_used() == 90
    timer2.resume()
    assert timer2.state == TimerState.RUNNING_WORK


def test_recover_after_boundary_completes(timer, recovery, store, clock):
    session = timer.start(30, "Work")
    clock.advance(300)
    recovery.save_snapshot()
    clock.advance(3000)
    timer2, recovery2 = _fresh_engine(clock, store)
    seen = []
    timer2.subscribe(seen.append)
    assert recovery2.recover() == TimerState.COMPLETED
    assert EventKind.BOUNDARY_CROSSED_BACKGROUND in [e.kind for e in seen]
    assert timer2.completion.outcome == Outcome.NATURAL
    assert timer2.completion.completed_at == session.end_at
    saved = store.fetch_block(TODAY, 30)
    assert saved.active_run_snapshot is None
    assert [r.id for r in saved.runs] == [session.run_id]
    assert saved.used_seconds == 1200
    assert saved.status == BlockStatus.DONE


def test_recover_paused_after_boundary_is_paused_expiry(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(200)
    timer.pause()
    clock.advance(3000)
    timer2, recovery2 = _fresh_engine(clock, store)
    assert recovery2.recover() == TimerState.COMPLETED
    assert timer2.completion.outcome == Outcome.PAUSED_EXPIRY
    saved = store.fetch_block(TODAY, 30)
    assert saved.used_seconds == 200
    assert saved.status == BlockStatus.PLANNED


def test_recover_after_pause_resume_keeps_earlier_time(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(300)
    timer.pause()
    clock.advance(60)
    timer.resume()
    clock.advance(100)
    recovery.save_snapshot()
    timer2, recovery2 = _fresh_engine(clock, store)
    assert recovery2.recover() == TimerState.RUNNING_WORK
    clock.advance(timer2.time_left())
    timer2.tick()
    assert timer2.completion.outcome == Outcome.NATURAL
    # 300s before the pause plus the 840s left at resume
    assert timer2.completion.seconds_used == 1140


def test_recover_nothing(timer, recovery):
    assert recovery.recover() is None
    assert timer.state == TimerState.IDLE


def test_recover_finalizes_older_orphans(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(100)
    recovery.save_snapshot()
    # Crash; a later run on another block was also left unfinished
    clock.advance(1200)
    timer_b, recovery_b = _fresh_engine(clock, store)
    timer_b.start(31)
    clock.advance(60)
    recovery_b.save_snapshot()

    timer_c, recovery_c = _fresh_engine(clock, store)
    assert recovery_c.recover() == TimerState.RUNNING_WORK
    assert timer_c.session.block_index == 31
    orphan = store.fetch_block(TODAY, 30)
    assert orphan.active_run_snapshot is None
    assert orphan.used_seconds == 100


def test_restore_from_background_crosses_boundary(timer, recovery, clock):
    timer.start(30)
    clock.advance(5000)
    result = recovery.restore_from_background()
    kinds = [e.kind for e in result.events]
    assert kinds == [EventKind.BOUNDARY_CROSSED_BACKGROUND, EventKind.COMPLETED]
    assert timer.state == TimerState.COMPLETED


def test_restore_from_background_before_boundary_snapshots(timer, recovery, store, clock):
    timer.start(30)
    clock.advance(500)
    recovery.restore_from_background()
    assert timer.state == TimerState.RUNNING_WORK
    assert store.fetch_block(TODAY, 30).active_run_snapshot.elapsed == 500
