"""Shared test fixtures for blockday tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from blockday.days import completion_status
from blockday.errors import PersistenceError
from blockday.models import Block
from blockday.settings import Settings
from blockday.store import MemoryBlockStore
from blockday.timer import BlockTimer

# 10:00 UTC is the start of block 30
START = datetime(2026, 3, 10, 10, 0, 0, tzinfo=timezone.utc)
TODAY = "2026-03-10"


class FakeClock:
    """Settable epoch source."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment


class FlakyStore(MemoryBlockStore):
    """Memory store whose next ``fail_writes`` upserts raise PersistenceError."""

    def __init__(self, user_id: str = "") -> None:
        super().__init__(user_id)
        self.fail_writes = 0

    def upsert(self, block: Block) -> Block:
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise PersistenceError("store unavailable")
        return super().upsert(block)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with settings.yaml."""
    root = tmp_path / "workspace"
    (root / "blocks").mkdir(parents=True)

    settings = {
        "timezone": "UTC",
        "user_id": "user-1",
        "day_start_hour": 6,
        "auto_continue_seconds": 25,
        "break_over_seconds": 30,
        "checkin_threshold": 3,
        "grace_period_seconds": 30,
    }
    (root / "settings.yaml").write_text(
        yaml.dump(settings, default_flow_style=False), encoding="utf-8"
    )

    os.environ["BLOCKDAY_ROOT"] = str(root)
    yield root
    if "BLOCKDAY_ROOT" in os.environ:
        del os.environ["BLOCKDAY_ROOT"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def timer(clock: FakeClock, store: FlakyStore) -> BlockTimer:
    return BlockTimer(clock, store, status_policy=completion_status)


@pytest.fixture
def settings() -> Settings:
    return Settings()


def run_to_boundary(clock: FakeClock, timer: BlockTimer, extra: float = 0):
    """Advance the clock to the running block's boundary (plus *extra*) and tick."""
    clock.advance(timer.time_left() + extra)
    return timer.tick()
