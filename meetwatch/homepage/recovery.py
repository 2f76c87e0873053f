from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from meetwatch.homepage.watchdog import (
    Evaluation,
    HomepageReloadWatchdog,
    ReloadAction,
    ReloadReason,
    WatchdogConfig,
)
from meetwatch.meetings.fingerprint import fingerprint
from meetwatch.meetings.meeting import Meeting


@dataclass(frozen=True)
class RecoveryDecision:
    fingerprint: str
    evaluation: Evaluation


class HomepageRecoveryController:
    """Stale-homepage recovery policy: fingerprint the meeting list, then ask the watchdog.

    The host only performs the actual reload, and only when
    `decision.evaluation.action is ReloadAction.RELOAD`.
    """

    def __init__(self, config: WatchdogConfig | None = None):
        self.watchdog = HomepageReloadWatchdog(config)
        self._last_log_key: ReloadReason | None = None

    def has_pending_reload(self) -> bool:
        return self.watchdog.has_pending_reload()

    def evaluate(
        self,
        *,
        meetings: Sequence[Meeting],
        now_ms: int,
        is_homepage: bool,
        is_foreground: bool,
    ) -> RecoveryDecision:
        fp = fingerprint(meetings)
        evaluation = self.watchdog.evaluate(
            fingerprint=fp,
            now_ms=now_ms,
            is_homepage=is_homepage,
            is_foreground=is_foreground,
        )
        return RecoveryDecision(fingerprint=fp, evaluation=evaluation)

    def describe(self, source: str, decision: RecoveryDecision) -> str | None:
        """Log line for a decision, or None when nothing worth logging happened.

        Cooldown and daily-limit lines are printed once per streak.
        """

        ev = decision.evaluation

        if ev.reason is ReloadReason.FINGERPRINT_CHANGED:
            self._last_log_key = None
            return f"RECOVERY: homepage fingerprint changed ({source}): {decision.fingerprint}"

        if ev.action is ReloadAction.DEFER and ev.state_changed:
            self._last_log_key = None
            return f"RECOVERY: homepage reload deferred in foreground ({source}), stale={round(ev.stale_for_ms / 1000)}s"

        if ev.action is ReloadAction.RELOAD:
            self._last_log_key = None
            return (
                f"RECOVERY: reloading stale homepage ({source}), stale={round(ev.stale_for_ms / 1000)}s, "
                f"backoff={round(ev.backoff_ms / 1000)}s, countToday={ev.reload_count_today}"
            )

        if ev.reason in (ReloadReason.COOLDOWN, ReloadReason.DAILY_LIMIT):
            if self._last_log_key is ev.reason:
                return None
            self._last_log_key = ev.reason
            if ev.reason is ReloadReason.COOLDOWN:
                return (
                    f"RECOVERY: homepage stale reload cooling down ({source}), "
                    f"remaining={round(ev.cooldown_remaining_ms / 1000)}s"
                )
            return f"RECOVERY: homepage stale reload skipped ({source}), daily limit reached"

        self._last_log_key = None
        return None
