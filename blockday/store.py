"""Block persistence: the upsert-by-natural-key collaborator.

Blocks are keyed by (user_id, date, block_index). ``upsert`` is idempotent:
writing the same block twice leaves one record. The JSON store keeps one file
per date under ``blocks/``.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Protocol

from blockday.clock import BLOCKS_PER_DAY
from blockday.errors import PersistenceError
from blockday.fileio import read_json, write_json_atomic
from blockday.models import Block
from blockday.workspace import day_path, workspace_root

logger = logging.getLogger(__name__)

# Fields owned by the timer; everything else comes from the freshest record
TIMER_FIELDS = (
    "segments",
    "runs",
    "active_run_snapshot",
    "used_seconds",
    "progress",
    "break_progress",
    "status",
)


class BlockStore(Protocol):
    def upsert(self, block: Block) -> Block: ...

    def fetch(self, day: str) -> list[Block]: ...

    def fetch_block(self, day: str, block_index: int) -> Block | None: ...

    def fetch_range(self, start: str, end: str) -> list[Block]: ...


def _date_range(start: str, end: str) -> Iterable[str]:
    current = date.fromisoformat(start)
    last = date.fromisoformat(end)
    while current <= last:
        yield current.isoformat()
        current += timedelta(days=1)


def _stamp(block: Block) -> Block:
    stored = copy.deepcopy(block)
    stored.updated_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
    if not stored.created_at:
        stored.created_at = stored.updated_at
    return stored


# ── In-memory store ───────────────────────────────────────────


class MemoryBlockStore:
    """Dict-backed store; used by tests and as a scratch store."""

    def __init__(self, user_id: str = "") -> None:
        self.user_id = user_id
        self._rows: dict[tuple[str, int], Block] = {}
        self.writes = 0

    def upsert(self, block: Block) -> Block:
        key = (block.date, block.block_index)
        existing = self._rows.get(key)
        stored = _stamp(block)
        if existing is not None:
            stored.id = existing.id
            stored.created_at = existing.created_at
        self._rows[key] = stored
        self.writes += 1
        return copy.deepcopy(stored)

    def fetch(self, day: str) -> list[Block]:
        rows = [b for (d, _), b in self._rows.items() if d == day]
        return [copy.deepcopy(b) for b in sorted(rows, key=lambda b: b.block_index)]

    def fetch_block(self, day: str, block_index: int) -> Block | None:
        block = self._rows.get((day, block_index))
        return copy.deepcopy(block) if block is not None else None

    def fetch_range(self, start: str, end: str) -> list[Block]:
        out: list[Block] = []
        for day in _date_range(start, end):
            out.extend(self.fetch(day))
        return out


# ── JSON file store ───────────────────────────────────────────


class JsonBlockStore:
    """One ``blocks/YYYY-MM-DD.json`` file per day, written atomically."""

    def __init__(self, root: Path | None = None, user_id: str = "") -> None:
        self.root = root if root is not None else workspace_root()
        self.user_id = user_id

    def _load(self, day: str) -> dict[int, Block]:
        path = day_path(day, self.root)
        try:
            data = read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e
        if not data:
            return {}
        try:
            blocks = [Block.from_dict(b) for b in data.get("blocks", [])]
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed block record in {path}: {e}") from e
        return {b.block_index: b for b in blocks if not self.user_id or b.user_id in ("", self.user_id)}

    def _save(self, day: str, rows: dict[int, Block]) -> None:
        path = day_path(day, self.root)
        payload = {"date": day, "blocks": [rows[i].to_dict() for i in sorted(rows)]}
        try:
            write_json_atomic(path, payload)
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e

    def upsert(self, block: Block) -> Block:
        if not 0 <= block.block_index < BLOCKS_PER_DAY:
            raise ValueError(f"block_index out of range: {block.block_index}")
        rows = self._load(block.date)
        existing = rows.get(block.block_index)
        stored = _stamp(block)
        if not stored.user_id:
            stored.user_id = self.user_id
        if existing is not None:
            stored.id = existing.id or stored.id
            stored.created_at = existing.created_at or stored.created_at
        rows[block.block_index] = stored
        self._save(block.date, rows)
        logger.debug("Upserted block %s/%d (status=%s)", block.date, block.block_index, stored.status.value)
        return copy.deepcopy(stored)

    def fetch(self, day: str) -> list[Block]:
        rows = self._load(day)
        return [rows[i] for i in sorted(rows)]

    def fetch_block(self, day: str, block_index: int) -> Block | None:
        return self._load(day).get(block_index)

    def fetch_range(self, start: str, end: str) -> list[Block]:
        out: list[Block] = []
        for day in _date_range(start, end):
            out.extend(self.fetch(day))
        return out


# ── Helpers ───────────────────────────────────────────────────


def fill_day(blocks: Iterable[Block], day: str, user_id: str = "") -> list[Block]:
    """All 72 blocks of *day*, synthesizing idle placeholders for missing indices."""
    by_index = {b.block_index: b for b in blocks}
    return [
        by_index.get(i) or Block.placeholder(day, i, user_id)
        for i in range(BLOCKS_PER_DAY)
    ]


def merge_timer_fields(fresh: Block | None, ours: Block) -> Block:
    """Apply the timer-owned fields of *ours* onto the freshest stored record.

    Planning metadata edited elsewhere (note, mute flags) survives; category
    and label from *ours* win only when set.
    """
    if fresh is None:
        return copy.deepcopy(ours)
    merged = copy.deepcopy(fresh)
    for name in TIMER_FIELDS:
        setattr(merged, name, copy.deepcopy(getattr(ours, name)))
    if ours.category is not None:
        merged.category = ours.category
    if ours.label is not None:
        merged.label = ours.label
    if ours.is_activated and not fresh.is_activated:
        merged.is_muted = False
        merged.is_activated = True
    return merged


def save_timer_fields(store: BlockStore, block: Block) -> Block:
    """Fresh-fetch, merge, upsert. Store failures surface as PersistenceError."""
    try:
        fresh = store.fetch_block(block.date, block.block_index)
        return store.upsert(merge_timer_fields(fresh, block))
    except PersistenceError:
        raise
    except OSError as e:
        raise PersistenceError(str(e)) from e
