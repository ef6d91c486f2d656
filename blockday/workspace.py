"""Workspace root, timezone, path helpers for blockday."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from blockday.fileio import read_yaml


def workspace_root() -> Path:
    """Get the workspace root directory (holds settings.yaml, hooks.yaml and blocks/)."""
    return Path(
        os.environ.get("BLOCKDAY_ROOT", str(Path.home() / "blockday"))
    ).expanduser().resolve()


def get_user_timezone(root: Path | None = None) -> ZoneInfo:
    """Get user's timezone from settings.yaml, defaulting to UTC."""
    settings = read_yaml(settings_path(root))
    name = settings.get("timezone") if settings else None
    if name:
        try:
            return ZoneInfo(str(name))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return ZoneInfo("UTC")


def today_str(root: Path | None = None) -> str:
    """Get today's date string (YYYY-MM-DD) in user's timezone."""
    return now_local(root).date().isoformat()


def now_local(root: Path | None = None) -> datetime:
    return datetime.now(get_user_timezone(root))


# ── Path helpers ──────────────────────────────────────────────

def settings_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "settings.yaml"


def hooks_config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "hooks.yaml"


def blocks_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "blocks"


def day_path(day: str, root: Path | None = None) -> Path:
    return blocks_dir(root) / f"{day}.json"
