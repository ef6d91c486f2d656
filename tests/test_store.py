"""Tests for blockday/store.py: upsert semantics and the JSON day files."""

import json

import pytest

from blockday.errors import PersistenceError
from blockday.models import Block, BlockSegment, BlockStatus, SegmentType
from blockday.store import (
    JsonBlockStore,
    MemoryBlockStore,
    fill_day,
    merge_timer_fields,
    save_timer_fields,
)
from blockday.workspace import day_path

from conftest import TODAY


def _block(index: int = 30, **kwargs) -> Block:
    block = Block.placeholder(TODAY, index, "user-1")
    for name, value in kwargs.items():
        setattr(block, name, value)
    return block


def test_json_store_round_trip(workspace):
    store = JsonBlockStore(workspace, "user-1")
    block = _block(
        category="Work",
        status=BlockStatus.DONE,
        segments=[BlockSegment(SegmentType.WORK, 600, "Work")],
        used_seconds=600,
    )
    store.upsert(block)
    loaded = store.fetch_block(TODAY, 30)
    assert loaded.category == "Work"
    assert loaded.status == BlockStatus.DONE
    assert loaded.segments == block.segments
    assert loaded.updated_at
    data = json.loads(day_path(TODAY, workspace).read_text())
    assert data["blocks"][0]["blockIndex"] == 30


def test_upsert_is_idempotent_and_keeps_id(workspace):
    store = JsonBlockStore(workspace, "user-1")
    first = store.upsert(_block(category="A"))
    second = _block(category="B")
    stored = store.upsert(second)
    assert stored.id == first.id
    assert stored.created_at == first.created_at
    assert [b.category for b in store.fetch(TODAY)] == ["B"]


def test_json_store_missing_day_is_empty(workspace):
    store = JsonBlockStore(workspace)
    assert store.fetch("2026-01-01") == []
    assert store.fetch_block("2026-01-01", 3) is None


def test_json_store_malformed_file(workspace):
    day_path(TODAY, workspace).write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError, match="Cannot read"):
        JsonBlockStore(workspace).fetch(TODAY)


def test_json_store_rejects_bad_index(workspace):
    with pytest.raises(ValueError, match="out of range"):
        JsonBlockStore(workspace).upsert(_block(index=72))


def test_fetch_range_spans_days(workspace):
    store = JsonBlockStore(workspace, "user-1")
    store.upsert(_block(index=5))
    other = Block.placeholder("2026-03-11", 6, "user-1")
    store.upsert(other)
    blocks = store.fetch_range(TODAY, "2026-03-11")
    assert [(b.date, b.block_index) for b in blocks] == [(TODAY, 5), ("2026-03-11", 6)]


def test_memory_store_returns_copies():
    store = MemoryBlockStore()
    store.upsert(_block(category="A"))
    fetched = store.fetch_block(TODAY, 30)
    fetched.category = "changed"
    assert store.fetch_block(TODAY, 30).category == "A"
    assert store.writes == 1


def test_fill_day_synthesizes_placeholders():
    blocks = fill_day([_block(index=3, category="A")], TODAY, "user-1")
    assert len(blocks) == 72
    assert blocks[3].category == "A"
    assert blocks[4].status == BlockStatus.IDLE
    assert blocks[4].date == TODAY


def test_merge_keeps_planning_metadata():
    fresh = _block(note="call the bank", is_muted=True, category="Planned")
    ours = _block(used_seconds=300, status=BlockStatus.PLANNED)
    merged = merge_timer_fields(fresh, ours)
    assert merged.note == "call the bank"
    assert merged.category == "Planned"
    assert merged.used_seconds == 300
    assert merged.is_muted


def test_merge_activation_unmutes():
    fresh = _block(is_muted=True)
    ours = _block(is_activated=True)
    merged = merge_timer_fields(fresh, ours)
    assert merged.is_activated
    assert not merged.is_muted


def test_save_timer_fields_merges_with_stored_record():
    store = MemoryBlockStore()
    store.upsert(_block(note="keep me"))
    saved = save_timer_fields(store, _block(used_seconds=42))
    assert saved.note == "keep me"
    assert saved.used_seconds == 42
