"""Typed dataclasses for the blockday data model.

All persisted models use from_dict/to_dict for JSON serialization.
camelCase in JSON is mapped to snake_case in Python; the snake_case column
names of database rows are accepted on read as well.
Unknown keys are ignored; missing keys use defaults.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _get(d: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    return d.get(camel, d.get(snake, default))


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ── Enums ─────────────────────────────────────────────────────


class SegmentType(str, Enum):
    WORK = "work"
    BREAK = "break"


class BlockStatus(str, Enum):
    IDLE = "idle"
    PLANNED = "planned"
    DONE = "done"
    SKIPPED = "skipped"


# ── Segment ───────────────────────────────────────────────────


@dataclass
class BlockSegment:
    type: SegmentType = SegmentType.WORK
    seconds: int = 0
    category: str | None = None
    label: str | None = None
    start_elapsed: int | None = None

    def key(self) -> tuple[SegmentType, str | None, str | None]:
        return (self.type, self.category, self.label)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> BlockSegment:
        start = _get(d, "startElapsed", "start_elapsed")
        return cls(
            type=SegmentType(d.get("type", "work")),
            seconds=int(d.get("seconds", 0)),
            category=d.get("category"),
            label=d.get("label"),
            start_elapsed=int(start) if start is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type.value, "seconds": self.seconds}
        if self.category is not None:
            d["category"] = self.category
        if self.label is not None:
            d["label"] = self.label
        if self.start_elapsed is not None:
            d["startElapsed"] = self.start_elapsed
        return d


# ── Run ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Run:
    """One timer session on one block.

    Frozen: the scale factor is fixed when the run is created. Snapshots and
    finalization produce new instances via ``dataclasses.replace``.
    """

    id: str
    started_at: float
    initial_real_time: float
    scale_factor: float
    previous_proportion: float = 0.0
    ended_at: float | None = None
    segments: tuple[BlockSegment, ...] = ()
    # In-flight tail, only meaningful while the run is a snapshot
    current_segment_start: int = 0
    current_type: SegmentType = SegmentType.WORK
    current_category: str | None = None
    current_label: str | None = None
    last_work_category: str | None = None
    last_work_label: str | None = None
    elapsed: int = 0
    paused_at: float | None = None
    earlier_seconds: int = 0  # resumed runs: time used before the last pause

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @property
    def seconds(self) -> int:
        return sum(s.seconds for s in self.segments)

    @property
    def capacity(self) -> float:
        """Visual space this run was allowed to fill."""
        return max(0.0, 1.0 - self.previous_proportion)

    @property
    def fill(self) -> float:
        return min(self.capacity, self.seconds * self.scale_factor)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Run:
        started = float(_get(d, "startedAt", "started_at", 0.0))
        ended = _get(d, "endedAt", "ended_at")
        paused = _get(d, "pausedAt", "paused_at")
        return cls(
            id=str(d.get("id", "")),
            started_at=started,
            ended_at=float(ended) if ended is not None else None,
            # Older records may miss these
            initial_real_time=float(_get(d, "initialRealTime", "initial_real_time", 0.0)),
            scale_factor=float(_get(d, "scaleFactor", "scale_factor", 1.0 / 1200.0)),
            previous_proportion=float(_get(d, "previousProportion", "previous_proportion", 0.0)),
            segments=tuple(BlockSegment.from_dict(s) for s in (d.get("segments") or [])),
            current_segment_start=int(_get(d, "currentSegmentStart", "current_segment_start", 0)),
            current_type=SegmentType(_get(d, "currentType", "current_type", "work")),
            current_category=_get(d, "currentCategory", "current_category"),
            current_label=_get(d, "currentLabel", "current_label"),
            last_work_category=_get(d, "lastWorkCategory", "last_work_category"),
            last_work_label=_get(d, "lastWorkLabel", "last_work_label"),
            elapsed=int(d.get("elapsed", 0)),
            paused_at=float(paused) if paused is not None else None,
            earlier_seconds=int(_get(d, "earlierSeconds", "earlier_seconds", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "initialRealTime": self.initial_real_time,
            "scaleFactor": self.scale_factor,
            "previousProportion": self.previous_proportion,
            "segments": [s.to_dict() for s in self.segments],
        }
        if self.is_active:
            d.update({
                "currentSegmentStart": self.current_segment_start,
                "currentType": self.current_type.value,
                "currentCategory": self.current_category,
                "currentLabel": self.current_label,
                "lastWorkCategory": self.last_work_category,
                "lastWorkLabel": self.last_work_label,
                "elapsed": self.elapsed,
                "pausedAt": self.paused_at,
                "earlierSeconds": self.earlier_seconds,
            })
        return d


# ── Block ─────────────────────────────────────────────────────


@dataclass
class Block:
    date: str = ""
    block_index: int = 0
    id: str = ""
    user_id: str = ""
    is_muted: bool = False
    is_activated: bool = False
    category: str | None = None
    label: str | None = None
    note: str | None = None
    status: BlockStatus = BlockStatus.IDLE
    progress: float = 0.0
    break_progress: float = 0.0
    runs: list[Run] = field(default_factory=list)
    active_run_snapshot: Run | None = None
    segments: list[BlockSegment] = field(default_factory=list)
    used_seconds: int = 0
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def placeholder(cls, date: str, block_index: int, user_id: str = "") -> Block:
        """An idle, empty block for an index the store has no row for."""
        now = _utc_now_iso()
        return cls(
            date=date,
            block_index=block_index,
            id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.user_id, self.date, self.block_index)

    def has_real_usage(self) -> bool:
        """True when the block carries work data, not just planning metadata."""
        return bool(
            self.segments
            or self.used_seconds > 0
            or self.runs
            or self.active_run_snapshot is not None
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Block:
        snapshot = _get(d, "activeRunSnapshot", "active_run_snapshot")
        return cls(
            date=str(d.get("date", "")),
            block_index=int(_get(d, "blockIndex", "block_index", 0)),
            id=str(d.get("id", "")),
            user_id=str(_get(d, "userId", "user_id", "")),
            is_muted=bool(_get(d, "isMuted", "is_muted", False)),
            is_activated=bool(_get(d, "isActivated", "is_activated", False)),
            category=d.get("category"),
            label=d.get("label"),
            note=d.get("note"),
            status=BlockStatus(d.get("status", "idle")),
            progress=float(d.get("progress", 0) or 0),
            break_progress=float(_get(d, "breakProgress", "break_progress", 0) or 0),
            runs=[Run.from_dict(r) for r in (d.get("runs") or [])],
            active_run_snapshot=Run.from_dict(snapshot) if snapshot else None,
            segments=[BlockSegment.from_dict(s) for s in (d.get("segments") or [])],
            used_seconds=int(_get(d, "usedSeconds", "used_seconds", 0) or 0),
            created_at=str(_get(d, "createdAt", "created_at", "")),
            updated_at=str(_get(d, "updatedAt", "updated_at", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        # Optional fields are written as explicit nulls so an upsert clears them
        return {
            "id": self.id,
            "userId": self.user_id,
            "date": self.date,
            "blockIndex": self.block_index,
            "isMuted": self.is_muted,
            "isActivated": self.is_activated,
            "category": self.category,
            "label": self.label,
            "note": self.note,
            "status": self.status.value,
            "progress": int(self.progress),
            "breakProgress": int(self.break_progress),
            "runs": [r.to_dict() for r in self.runs],
            "activeRunSnapshot": self.active_run_snapshot.to_dict() if self.active_run_snapshot else None,
            "segments": [s.to_dict() for s in self.segments],
            "usedSeconds": self.used_seconds,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
