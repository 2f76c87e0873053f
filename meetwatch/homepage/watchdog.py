from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Sequence

from dateutil import tz

MINUTE_MS = 60 * 1000

DEFAULT_STALE_THRESHOLD_MS = 30 * MINUTE_MS
DEFAULT_BACKOFF_SCHEDULE_MS: tuple[int, ...] = (
    30 * MINUTE_MS,
    60 * MINUTE_MS,
    120 * MINUTE_MS,
)
DEFAULT_DAILY_RELOAD_LIMIT = 8

DayKeyFn = Callable[[int], str]


class ReloadAction(str, Enum):
    NONE = "none"
    DEFER = "defer"
    RELOAD = "reload"


class ReloadReason(str, Enum):
    INITIALIZED = "initialized"
    FINGERPRINT_CHANGED = "fingerprint_changed"
    NOT_STALE = "not_stale"
    NOT_HOMEPAGE = "not_homepage"
    COOLDOWN = "cooldown"
    DAILY_LIMIT = "daily_limit"
    FOREGROUND = "foreground"
    RELOAD = "reload"


def local_day_key(now_ms: int) -> str:
    return dt.datetime.fromtimestamp(now_ms / 1000, tz=tz.tzlocal()).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class WatchdogConfig:
    stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS
    backoff_schedule_ms: Sequence[int] | None = DEFAULT_BACKOFF_SCHEDULE_MS
    daily_reload_limit: int = DEFAULT_DAILY_RELOAD_LIMIT
    day_key: DayKeyFn | None = None


@dataclass
class WatchdogState:
    last_fingerprint: str | None = None
    last_fingerprint_changed_at_ms: int | None = None
    consecutive_reloads_without_change: int = 0
    last_reload_at_ms: int | None = None
    # A reload was due but deferred because the page was in the foreground.
    pending_reload: bool = False
    reload_count_today: int = 0
    reload_day_key: str | None = None


@dataclass(frozen=True)
class Evaluation:
    action: ReloadAction
    reason: ReloadReason
    stale_for_ms: int
    backoff_ms: int
    cooldown_remaining_ms: int
    pending_reload: bool
    consecutive_reloads_without_change: int
    reload_count_today: int
    fingerprint_changed: bool
    state_changed: bool


def normalize_backoff_schedule(schedule: Sequence[int] | None) -> tuple[int, ...]:
    if not schedule:
        return DEFAULT_BACKOFF_SCHEDULE_MS
    normalized: list[int] = []
    for value in schedule:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            continue
        normalized.append(max(0, int(math.floor(value))))
    return tuple(normalized) if normalized else DEFAULT_BACKOFF_SCHEDULE_MS


class HomepageReloadWatchdog:
    """Decides when a meeting list that stopped changing should be force-reloaded.

    One `evaluate` per observation. Priority of outcomes:
    initialized > fingerprint_changed > not_stale > not_homepage > cooldown >
    daily_limit > foreground (defer) > reload.

    Cooldown after a reload is `backoff_schedule_ms[min(n, len - 1)]` where `n` is the
    number of consecutive reloads that did not change the fingerprint. A reload that
    later fails on the caller side still counts; there is no immediate retry.
    """

    def __init__(self, config: WatchdogConfig | None = None):
        config = config or WatchdogConfig()
        self.stale_threshold_ms = max(1, int(config.stale_threshold_ms))
        self.backoff_schedule_ms = normalize_backoff_schedule(config.backoff_schedule_ms)
        self.daily_reload_limit = max(1, int(config.daily_reload_limit))
        self._day_key = config.day_key or local_day_key
        self._state = WatchdogState()

    def has_pending_reload(self) -> bool:
        return self._state.pending_reload

    def get_state(self) -> WatchdogState:
        return replace(self._state)

    def evaluate(
        self,
        *,
        fingerprint: str,
        now_ms: int,
        is_homepage: bool,
        is_foreground: bool,
    ) -> Evaluation:
        state = self._state
        self._reset_daily_counter_if_needed(now_ms)

        if state.last_fingerprint is None:
            state.last_fingerprint = fingerprint
            state.last_fingerprint_changed_at_ms = now_ms
            return self._evaluation(
                ReloadAction.NONE,
                ReloadReason.INITIALIZED,
                stale_for_ms=0,
                backoff_ms=self.current_backoff_ms(),
                state_changed=True,
            )

        if state.last_fingerprint != fingerprint:
            state.last_fingerprint = fingerprint
            state.last_fingerprint_changed_at_ms = now_ms
            state.consecutive_reloads_without_change = 0
            state.pending_reload = False
            return self._evaluation(
                ReloadAction.NONE,
                ReloadReason.FINGERPRINT_CHANGED,
                stale_for_ms=0,
                backoff_ms=self.current_backoff_ms(),
                fingerprint_changed=True,
                state_changed=True,
            )

        changed_at = state.last_fingerprint_changed_at_ms
        stale_for_ms = max(0, now_ms - (now_ms if changed_at is None else changed_at))
        backoff_ms = self.current_backoff_ms()

        if stale_for_ms < self.stale_threshold_ms:
            return self._evaluation(ReloadAction.NONE, ReloadReason.NOT_STALE, stale_for_ms, backoff_ms)

        if not is_homepage:
            return self._evaluation(ReloadAction.NONE, ReloadReason.NOT_HOMEPAGE, stale_for_ms, backoff_ms)

        cooldown_remaining_ms = self._cooldown_remaining_ms(now_ms, backoff_ms)
        if cooldown_remaining_ms > 0:
            return self._evaluation(
                ReloadAction.NONE,
                ReloadReason.COOLDOWN,
                stale_for_ms,
                backoff_ms,
                cooldown_remaining_ms=cooldown_remaining_ms,
            )

        if state.reload_count_today >= self.daily_reload_limit:
            return self._evaluation(ReloadAction.NONE, ReloadReason.DAILY_LIMIT, stale_for_ms, backoff_ms)

        if is_foreground:
            # Never force a visible reload while the user is looking at the page.
            first_deferral = not state.pending_reload
            state.pending_reload = True
            return self._evaluation(
                ReloadAction.DEFER,
                ReloadReason.FOREGROUND,
                stale_for_ms,
                backoff_ms,
                state_changed=first_deferral,
            )

        state.pending_reload = False
        state.last_reload_at_ms = now_ms
        state.reload_count_today += 1
        state.consecutive_reloads_without_change += 1
        return self._evaluation(
            ReloadAction.RELOAD,
            ReloadReason.RELOAD,
            stale_for_ms,
            backoff_ms,
            state_changed=True,
        )

    def current_backoff_ms(self) -> int:
        idx = min(self._state.consecutive_reloads_without_change, len(self.backoff_schedule_ms) - 1)
        return self.backoff_schedule_ms[idx]

    def _cooldown_remaining_ms(self, now_ms: int, backoff_ms: int) -> int:
        last = self._state.last_reload_at_ms
        if backoff_ms <= 0 or last is None:
            return 0
        elapsed = now_ms - last
        return 0 if elapsed >= backoff_ms else backoff_ms - elapsed

    def _reset_daily_counter_if_needed(self, now_ms: int) -> None:
        day_key = self._day_key(now_ms)
        if self._state.reload_day_key == day_key:
            return
        self._state.reload_day_key = day_key
        self._state.reload_count_today = 0

    def _evaluation(
        self,
        action: ReloadAction,
        reason: ReloadReason,
        stale_for_ms: int,
        backoff_ms: int,
        *,
        cooldown_remaining_ms: int = 0,
        fingerprint_changed: bool = False,
        state_changed: bool = False,
    ) -> Evaluation:
        return Evaluation(
            action=action,
            reason=reason,
            stale_for_ms=stale_for_ms,
            backoff_ms=backoff_ms,
            cooldown_remaining_ms=cooldown_remaining_ms,
            pending_reload=self._state.pending_reload,
            consecutive_reloads_without_change=self._state.consecutive_reloads_without_change,
            reload_count_today=self._state.reload_count_today,
            fingerprint_changed=fingerprint_changed,
            state_changed=state_changed,
        )


def create_watchdog(config: WatchdogConfig | None = None, **overrides) -> HomepageReloadWatchdog:
    base = config or WatchdogConfig()
    return HomepageReloadWatchdog(replace(base, **overrides) if overrides else base)
