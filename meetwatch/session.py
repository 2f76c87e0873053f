from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from meetwatch.homepage.recovery import HomepageRecoveryController, RecoveryDecision
from meetwatch.homepage.watchdog import DayKeyFn, ReloadAction
from meetwatch.log import log
from meetwatch.meetings.alarms import AlarmScheduler
from meetwatch.meetings.join_trigger import JoinTriggerCoordinator, OpenMeeting
from meetwatch.meetings.meeting import MINUTE_MS, Meeting, SchedulerEvent
from meetwatch.meetings.scheduler import Scheduler
from meetwatch.settings import Settings, merge_settings

# Consecutive failed meeting-list extractions before the homepage is reloaded.
PARSE_FAILURE_THRESHOLD = 3

ReloadPage = Callable[[], None]


@dataclass(frozen=True)
class SessionStatus:
    next_event: SchedulerEvent
    last_check_ms: int | None
    joined_call_ids: list[str]
    suppressed_call_ids: list[str]

    def to_json(self) -> dict[str, Any]:
        return {
            "nextEvent": self.next_event.to_json(),
            "lastCheck": self.last_check_ms,
            "joinedCallIds": list(self.joined_call_ids),
            "suppressedCallIds": list(self.suppressed_call_ids),
        }


class MeetingSession:
    """All join/recovery state for one watched homepage tab.

    Every public method takes the session lock, so alarm callbacks arriving on a
    timer thread are serialized with updates from the polling loop.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        alarms: AlarmScheduler,
        open_meeting: OpenMeeting,
        reload_page: ReloadPage,
        day_key: DayKeyFn | None = None,
    ):
        self._lock = threading.RLock()
        self.settings = settings
        self.meetings: tuple[Meeting, ...] = ()
        self.joined: set[str] = set()
        # call_id -> epoch ms at which the user closed the meeting.
        self.suppressed: dict[str, int] = {}
        self.last_check_ms: int | None = None
        self.parse_failures = 0

        self._reload_page = reload_page
        self.scheduler = Scheduler(settings.scheduler_config())
        self.coordinator = JoinTriggerCoordinator(alarms, open_meeting, on_alarm=self.handle_join_alarm)
        self.recovery = HomepageRecoveryController(settings.watchdog_config(day_key=day_key))

    def update_meetings(self, meetings: Sequence[Meeting], now_ms: int) -> None:
        with self._lock:
            self.meetings = tuple(meetings)
            log(f"MEETINGS: updated, {len(self.meetings)} meetings")
            self.parse_failures = 0
            self._prune(now_ms)
            self._check(now_ms)

    def check(self, now_ms: int) -> None:
        with self._lock:
            self._check(now_ms)

    def update_settings(self, now_ms: int, **changes: Any) -> Settings:
        with self._lock:
            self.settings = merge_settings(self.settings, changes)
            config = self.settings.scheduler_config()
            self.scheduler.update_config(
                join_before_minutes=config.join_before_minutes,
                max_minutes_after_start=config.max_minutes_after_start,
                title_exclude_filters=config.title_exclude_filters,
            )
            self._schedule(now_ms)
            return self.settings

    def handle_meeting_closed(self, call_id: str, closed_at_ms: int) -> None:
        with self._lock:
            meeting = next((m for m in self.meetings if m.call_id == call_id), None)
            if meeting is None:
                return

            trigger_at = meeting.begin_ms - self.settings.join_before_minutes * MINUTE_MS
            if closed_at_ms >= trigger_at:
                # Closed once it was due: the user does not want it reopened.
                self.suppressed[call_id] = closed_at_ms
                log(f'SUPPRESS: "{meeting.title}" closed by user, will not reopen')

            self._prune(closed_at_ms)
            self._schedule(closed_at_ms)

    def handle_join_alarm(self, fired_at_ms: int) -> None:
        with self._lock:
            self.coordinator.handle_alarm(fired_at_ms)

    def evaluate_homepage(
        self,
        *,
        now_ms: int,
        is_homepage: bool,
        is_foreground: bool,
        source: str = "poll",
    ) -> RecoveryDecision:
        with self._lock:
            decision = self.recovery.evaluate(
                meetings=self.meetings,
                now_ms=now_ms,
                is_homepage=is_homepage,
                is_foreground=is_foreground,
            )
            line = self.recovery.describe(source, decision)
            if line:
                log(line)

            if decision.evaluation.action is ReloadAction.RELOAD:
                self._safe_reload(f"stale homepage ({source})")
            return decision

    def flush_pending_homepage_recovery(
        self,
        *,
        now_ms: int,
        is_homepage: bool,
        is_foreground: bool,
        source: str = "blur",
    ) -> RecoveryDecision | None:
        """Re-evaluate a deferred reload once the page left the foreground."""

        with self._lock:
            if not self.recovery.has_pending_reload():
                return None
            return self.evaluate_homepage(
                now_ms=now_ms,
                is_homepage=is_homepage,
                is_foreground=is_foreground,
                source=source,
            )

    def report_parse_result(self, ok: bool) -> bool:
        """Track meeting-list extraction health. Returns True when a reload was forced."""

        with self._lock:
            if ok:
                self.parse_failures = 0
                return False

            self.parse_failures += 1
            if self.parse_failures < PARSE_FAILURE_THRESHOLD:
                return False

            log(f"RECOVERY: reloading homepage after {self.parse_failures} parse failures")
            self.parse_failures = 0
            self._safe_reload("parse failures")
            return True

    def status(self, now_ms: int) -> SessionStatus:
        with self._lock:
            return SessionStatus(
                next_event=self.scheduler.check(self.meetings, self.joined, self.suppressed, now_ms),
                last_check_ms=self.last_check_ms,
                joined_call_ids=sorted(self.joined),
                suppressed_call_ids=sorted(self.suppressed),
            )

    def close(self) -> None:
        with self._lock:
            self.coordinator.cancel()

    def _check(self, now_ms: int) -> None:
        self.last_check_ms = now_ms
        if self.meetings:
            first = self.meetings[0]
            log(
                f'CHECK: {len(self.meetings)} meetings, first "{first.title}" '
                f"starts in {round((first.begin_ms - now_ms) / 1000)}s"
            )
        else:
            log("CHECK: no meetings")
        self._schedule(now_ms)

    def _schedule(self, now_ms: int) -> None:
        self.coordinator.schedule_next(
            self.meetings,
            self.joined,
            self.scheduler.get_config(),
            now_ms,
            suppressed=self.suppressed,
        )

    def _prune(self, now_ms: int) -> None:
        active = {m.call_id for m in self.meetings if m.end_ms > now_ms}
        self.joined.intersection_update(active)
        for call_id in [c for c in self.suppressed if c not in active]:
            del self.suppressed[call_id]

    def _safe_reload(self, why: str) -> None:
        try:
            self._reload_page()
        except Exception as e:
            log(f"RECOVERY: reload failed ({why}): {e}")
