"""End-to-end tests for blockday/controller.py with a fake clock."""

import pytest

from blockday.autocontinue import Countdown
from blockday.controller import BlockdayController, _event_context
from blockday.errors import InvalidTransition, PersistenceError
from blockday.models import Block, BlockStatus
from blockday.settings import Settings
from blockday.timer import EventKind, TimerEvent, TimerState, Trigger

from conftest import TODAY


def _controller(workspace, clock, store, **settings):
    s = Settings(user_id="user-1", **settings)
    controller = BlockdayController(workspace, s, clock, store, hooks_enabled=False)
    controller.startup()
    return controller


@pytest.fixture
def controller(workspace, clock, store):
    c = _controller(workspace, clock, store)
    yield c
    c.close()


def test_full_block_then_auto_continue(controller, clock, store):
    controller.start(category="Work", label="Writing")
    clock.advance(1200)
    controller.tick()
    assert controller.timer.state == TimerState.COMPLETED
    assert controller.scheduler.pending.kind == Countdown.CONTINUE
    assert store.fetch_block(TODAY, 30).status == BlockStatus.DONE

    clock.advance(25)
    controller.tick()
    session = controller.timer.session
    assert controller.timer.state == TimerState.RUNNING_WORK
    assert session.block_index == 31
    assert session.category == "Work"
    assert session.label == "Writing"
    assert controller.timer.time_left() == 1175
    assert controller.governor.consecutive_auto == 1


def test_user_start_resets_auto_counter(controller, clock):
    controller.start()
    clock.advance(1200)
    controller.tick()
    clock.advance(25)
    controller.tick()
    assert controller.governor.consecutive_auto == 1
    controller.pause()
    assert controller.governor.consecutive_auto == 0


def test_check_in_grace_expires_and_skips(workspace, clock, store):
    c = _controller(workspace, clock, store, checkin_threshold=1)
    c.start()
    clock.advance(1200)
    c.tick()
    clock.advance(25)
    c.tick()
    assert c.timer.session.block_index == 31

    clock.advance(c.timer.time_left())
    c.tick()
    assert c.governor.in_grace_period
    assert c.scheduler.pending is None
    assert c.state()["checkIn"]["graceRemaining"] == 30

    clock.advance(30)
    c.tick()
    assert not c.governor.in_grace_period
    assert c.timer.state == TimerState.SKIPPED
    assert store.fetch_block(TODAY, 32).status == BlockStatus.SKIPPED
    assert store.fetch_block(TODAY, 31).status == BlockStatus.DONE
    c.close()


def test_check_in_answered(workspace, clock, store):
    c = _controller(workspace, clock, store, checkin_threshold=1)
    c.start()
    clock.advance(1200)
    c.tick()
    clock.advance(25)
    c.tick()
    clock.advance(c.timer.time_left())
    c.tick()
    c.check_in()
    assert not c.governor.in_grace_period
    clock.advance(60)
    c.tick()
    assert c.timer.state == TimerState.COMPLETED
    c.continue_work()
    assert c.timer.session.block_index == 32
    c.close()


def test_failed_stop_write_is_flushed(controller, clock, store):
    controller.start()
    clock.advance(600)
    store.fail_writes = 1
    with pytest.raises(PersistenceError):
        controller.stop()
    assert controller.timer.pending_write
    assert controller.timer.state == TimerState.COMPLETED
    assert controller.flush()
    assert not controller.flush()
    saved = store.fetch_block(TODAY, 30)
    assert saved.used_seconds == 600
    assert saved.status == BlockStatus.PLANNED


def test_failed_completion_write_on_tick(controller, clock, store):
    controller.start()
    clock.advance(1200)
    store.fail_writes = 1
    controller.tick()
    assert controller.timer.state == TimerState.COMPLETED
    assert controller.state()["pendingWrite"]

    controller.tick()
    assert not controller.timer.pending_write
    saved = store.fetch_block(TODAY, 30)
    assert saved.used_seconds == 1200
    assert saved.active_run_snapshot is None
    assert saved.status == BlockStatus.DONE


def test_settle_failure_is_retried_on_next_tick(controller, clock, store):
    used = Block.placeholder(TODAY, 30, "user-1")
    used.used_seconds = 100
    used.status = BlockStatus.PLANNED
    store.upsert(used)
    clock.advance(1200)
    store.fail_writes = 5
    controller.tick()
    assert store.fetch_block(TODAY, 30).status == BlockStatus.PLANNED

    store.fail_writes = 0
    controller.tick()
    assert store.fetch_block(TODAY, 30).status == BlockStatus.DONE


def test_startup_survives_settle_failure(workspace, clock, store):
    old = Block.placeholder(TODAY, 28, "user-1")
    store.upsert(old)
    store.fail_writes = 1
    controller = _controller(workspace, clock, store)
    assert store.fetch_block(TODAY, 28).status == BlockStatus.IDLE
    controller.tick()
    assert store.fetch_block(TODAY, 28).status == BlockStatus.SKIPPED
    controller.close()


def test_startup_recovers_and_settles(workspace, clock, store):
    old = Block.placeholder(TODAY, 28, "user-1")
    old.category = "Planned"
    store.upsert(old)
    first = _controller(workspace, clock, store)
    first.start()
    clock.advance(300)
    first.recovery.save_snapshot()
    first.close()

    clock.advance(20)
    second = _controller(workspace, clock, store)
    assert second.timer.state == TimerState.RUNNING_WORK
    assert second.timer.seconds_used() == 320
    assert store.fetch_block(TODAY, 28).status == BlockStatus.SKIPPED
    second.close()


def test_start_past_block_refused(controller):
    with pytest.raises(InvalidTransition):
        controller.start(block_index=29)


def test_skip_after_completion(controller, clock, store):
    controller.start()
    clock.advance(100)
    controller.stop()
    clock.advance(1200)
    controller.tick()
    block = controller.skip()
    assert block.block_index == 31
    assert controller.timer.state == TimerState.SKIPPED
    assert controller.scheduler.pending is None


def test_start_activates_muted_block(controller, store):
    muted = Block.placeholder(TODAY, 30, "user-1")
    muted.is_muted = True
    store.upsert(muted)
    controller.start()
    saved = store.fetch_block(TODAY, 30)
    assert saved.is_activated
    assert not saved.is_muted


def test_auto_continue_activates_muted_block(controller, clock, store):
    muted = Block.placeholder(TODAY, 31, "user-1")
    muted.is_muted = True
    store.upsert(muted)
    controller.start()
    clock.advance(1200)
    controller.tick()
    clock.advance(25)
    controller.tick()
    assert controller.timer.session.block_index == 31
    saved = store.fetch_block(TODAY, 31)
    assert saved.is_activated
    assert not saved.is_muted
    assert controller.governor.consecutive_auto == 1


def test_failed_auto_continue_is_retried(controller, clock, store):
    muted = Block.placeholder(TODAY, 31, "user-1")
    muted.is_muted = True
    store.upsert(muted)
    controller.start()
    clock.advance(1200)
    controller.tick()
    clock.advance(25)
    store.fail_writes = 1
    controller.tick()
    assert controller.timer.state == TimerState.COMPLETED
    assert controller.scheduler.pending.kind == Countdown.CONTINUE

    controller.tick()
    assert controller.timer.session.block_index == 31
    assert store.fetch_block(TODAY, 31).is_activated


def test_day_view(controller, clock):
    controller.start(category="Work")
    clock.advance(1200)
    controller.tick()
    view = controller.day()
    assert view["date"] == TODAY
    assert len(view["blocks"]) == 72
    row = view["blocks"][30]
    assert row["displayNumber"] == 13
    assert row["displayMinutes"] == 20
    assert row["displayLabel"] == "Work"
    assert row["fill"][0]["width"] == pytest.approx(1.0)
    assert view["totals"]["workSeconds"] == 1200


def test_state_while_running(controller, clock):
    controller.start(category="Work")
    clock.advance(30)
    state = controller.state()
    assert state["state"] == "running_work"
    assert state["blockIndex"] == 30
    assert state["timeLeft"] == 1170
    assert state["currentDisplayNumber"] == 13
    assert state["autoContinue"] is None
    assert state["recovery"] is not None


def test_wake_after_suspension(controller, clock, store):
    controller.start()
    clock.advance(5000)
    controller.wake()
    # The countdown was anchored at the boundary, so it already ran out
    assert controller.timer.state == TimerState.RUNNING_WORK
    assert controller.timer.session.block_index == 34
    assert controller.timer.time_left() == 1000
    saved = store.fetch_block(TODAY, 30)
    assert saved.used_seconds == 1200
    assert saved.status == BlockStatus.DONE


def test_hook_context_without_completion():
    event = TimerEvent(EventKind.SKIPPED, 1.0, Trigger.AUTO, TimerState.SKIPPED, 32, TODAY)
    context = _event_context(event)
    assert context == {
        "event": "skipped",
        "trigger": "auto",
        "state": "skipped",
        "blockIndex": 32,
        "date": TODAY,
        "at": 1.0,
    }


# ── Day reset ─────────────────────────────────────────────────


def test_reset_day_refused_while_running(controller, clock, store):
    controller.start(category="Work")
    clock.advance(300)
    with pytest.raises(InvalidTransition, match="running"):
        controller.reset_day()
    controller.pause()
    with pytest.raises(InvalidTransition, match="running"):
        controller.reset_day(TODAY)
    assert controller.timer.state == TimerState.PAUSED


def test_reset_day_other_date_while_running(controller, store):
    other = Block.placeholder("2026-03-09", 40, "user-1")
    other.used_seconds = 600
    other.status = BlockStatus.DONE
    store.upsert(other)
    controller.start()
    changed = controller.reset_day("2026-03-09")
    assert [b.block_index for b in changed] == [40]
    assert store.fetch_block("2026-03-09", 40).used_seconds == 0


def test_reset_day_refused_with_pending_write(controller, clock, store):
    controller.start()
    clock.advance(600)
    store.fail_writes = 1
    with pytest.raises(PersistenceError):
        controller.stop()
    with pytest.raises(InvalidTransition, match="pending"):
        controller.reset_day()
    controller.flush()
    controller.reset_day()
    assert store.fetch_block(TODAY, 30).used_seconds == 0


def test_reset_day_after_stop(controller, clock, store):
    controller.start(category="Work")
    clock.advance(600)
    controller.stop()
    controller.reset_day()
    saved = store.fetch_block(TODAY, 30)
    assert saved.used_seconds == 0
    assert saved.status == BlockStatus.IDLE
    assert saved.category == "Work"


def test_reset_day_bad_date(controller):
    with pytest.raises(ValueError):
        controller.reset_day("2026-02-30")
