from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meetwatch.homepage.watchdog import (
    DEFAULT_BACKOFF_SCHEDULE_MS,
    DEFAULT_DAILY_RELOAD_LIMIT,
    DEFAULT_STALE_THRESHOLD_MS,
    WatchdogConfig,
)
from meetwatch.meetings.meeting import SchedulerConfig

ENV_PREFIX = "MEETWATCH_"

# Settings that are lists in the model; env values are comma-separated.
_LIST_FIELDS = {"title_exclude_filters", "homepage_backoff_schedule_ms"}


class Settings(BaseModel):
    """User-facing settings, validated the same way on every platform."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    # Timing
    check_interval_seconds: int = Field(default=30, ge=30, le=120)
    join_before_minutes: int = Field(default=1, ge=0, le=30)
    max_minutes_after_start: int = Field(default=30, ge=0, le=120)

    # Join behavior: case-sensitive substrings, any match excludes the meeting.
    title_exclude_filters: list[str] = Field(default_factory=list)

    # Homepage recovery
    homepage_stale_threshold_ms: int = Field(default=DEFAULT_STALE_THRESHOLD_MS, ge=1)
    homepage_backoff_schedule_ms: list[int] = Field(default_factory=lambda: list(DEFAULT_BACKOFF_SCHEDULE_MS))
    homepage_daily_reload_limit: int = Field(default=DEFAULT_DAILY_RELOAD_LIMIT, ge=1)

    @field_validator("title_exclude_filters")
    @classmethod
    def _drop_blank_filters(cls, v: list[str]) -> list[str]:
        # An empty filter would be a substring of every title.
        return [f for f in v if f]

    @field_validator("homepage_backoff_schedule_ms")
    @classmethod
    def _default_empty_backoff(cls, v: list[int]) -> list[int]:
        cleaned = [max(0, x) for x in v]
        return cleaned or list(DEFAULT_BACKOFF_SCHEDULE_MS)

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            join_before_minutes=self.join_before_minutes,
            max_minutes_after_start=self.max_minutes_after_start,
            title_exclude_filters=tuple(self.title_exclude_filters),
        )

    def watchdog_config(self, **overrides: Any) -> WatchdogConfig:
        return WatchdogConfig(
            stale_threshold_ms=overrides.pop("stale_threshold_ms", self.homepage_stale_threshold_ms),
            backoff_schedule_ms=tuple(overrides.pop("backoff_schedule_ms", self.homepage_backoff_schedule_ms)),
            daily_reload_limit=overrides.pop("daily_reload_limit", self.homepage_daily_reload_limit),
            **overrides,
        )


def merge_settings(current: Settings, changes: Mapping[str, Any]) -> Settings:
    """Apply a partial update; fields not mentioned keep their current value."""

    data = current.model_dump()
    data.update({k: v for k, v in changes.items() if v is not None})
    return Settings.model_validate(data)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None or not raw.strip():
            continue
        if name in _LIST_FIELDS:
            out[name] = [part.strip() for part in raw.split(",") if part.strip()]
        else:
            out[name] = raw.strip()
    return out


def load_settings(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Defaults < JSON settings file < MEETWATCH_* environment variables.

    The file may use either snake_case keys or the camelCase keys the browser
    side stores (e.g. `joinBeforeMinutes`).
    """

    data: dict[str, Any] = {}
    if path is not None and path.exists():
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file must contain a JSON object: {path}")
        data.update({_snake_case(k): v for k, v in raw.items()})

    data.update(_env_overrides(os.environ if environ is None else environ))
    return Settings.model_validate(data)


def _snake_case(key: str) -> str:
    out: list[str] = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")
