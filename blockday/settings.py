"""User settings loaded from settings.yaml."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from blockday.fileio import read_yaml, write_yaml_atomic
from blockday.workspace import settings_path


@dataclass
class Settings:
    timezone: str = "UTC"
    user_id: str = ""
    day_start_hour: int = 6
    auto_continue_seconds: int = 25
    break_over_seconds: int = 30
    checkin_threshold: int = 3
    grace_period_seconds: int = 30
    autosave_interval_seconds: int = 5
    break_notify_seconds: int = 300

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        defaults = cls()
        settings = cls(
            timezone=str(d.get("timezone", defaults.timezone)),
            user_id=str(d.get("user_id", defaults.user_id)),
            day_start_hour=int(d.get("day_start_hour", defaults.day_start_hour)),
            auto_continue_seconds=int(d.get("auto_continue_seconds", defaults.auto_continue_seconds)),
            break_over_seconds=int(d.get("break_over_seconds", defaults.break_over_seconds)),
            checkin_threshold=int(d.get("checkin_threshold", defaults.checkin_threshold)),
            grace_period_seconds=int(d.get("grace_period_seconds", defaults.grace_period_seconds)),
            autosave_interval_seconds=int(d.get("autosave_interval_seconds", defaults.autosave_interval_seconds)),
            break_notify_seconds=int(d.get("break_notify_seconds", defaults.break_notify_seconds)),
        )
        errors = settings.validate()
        if errors:
            raise ValueError("Invalid settings: " + "; ".join(errors))
        return settings

    def validate(self) -> list[str]:
        """Return a list of problems (empty if valid)."""
        errors = []
        if not 0 <= self.day_start_hour <= 23:
            errors.append("day_start_hour must be 0-23")
        if self.checkin_threshold < 1:
            errors.append("checkin_threshold must be at least 1")
        for name in (
            "auto_continue_seconds",
            "break_over_seconds",
            "grace_period_seconds",
            "autosave_interval_seconds",
            "break_notify_seconds",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "user_id": self.user_id,
            "day_start_hour": self.day_start_hour,
            "auto_continue_seconds": self.auto_continue_seconds,
            "break_over_seconds": self.break_over_seconds,
            "checkin_threshold": self.checkin_threshold,
            "grace_period_seconds": self.grace_period_seconds,
            "autosave_interval_seconds": self.autosave_interval_seconds,
            "break_notify_seconds": self.break_notify_seconds,
        }


def load_settings(root: Path | None = None) -> Settings:
    """Load settings.yaml; a missing file yields defaults."""
    return Settings.from_dict(read_yaml(settings_path(root)))


def save_settings(settings: Settings, root: Path | None = None) -> None:
    errors = settings.validate()
    if errors:
        raise ValueError("Invalid settings: " + "; ".join(errors))
    write_yaml_atomic(settings_path(root), settings.to_dict())
