from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Collection, MutableSet, Sequence

from meetwatch.log import log
from meetwatch.meetings.alarms import AlarmCallback, AlarmScheduler
from meetwatch.meetings.meeting import MINUTE_MS, Meeting, SchedulerConfig

# Triggers this close to now are fired inline instead of through the alarm.
IMMEDIATE_FIRE_MS = 1000

OpenMeeting = Callable[[Meeting], None]


@dataclass(frozen=True)
class _Candidate:
    meeting: Meeting
    # Ranking key: the ideal trigger time, even when it is already in the past.
    trigger_time_ms: int
    fire_at_ms: int


class JoinTriggerCoordinator:
    """Keeps at most one pending join alarm, always aimed at the next meeting to open.

    `schedule_next` throws away all previous scheduling state and derives it again
    from its arguments, so it is safe to call on every meeting/settings update and on
    every periodic re-check.

    `joined` is the session's join ledger. It is the only argument the coordinator
    writes to: a meeting is added after it was opened successfully.
    """

    def __init__(
        self,
        alarms: AlarmScheduler,
        open_meeting: OpenMeeting,
        *,
        on_alarm: AlarmCallback | None = None,
    ):
        self._alarms = alarms
        self._open_meeting = open_meeting
        self._on_alarm = on_alarm or self.handle_alarm

        self.scheduled_meeting: Meeting | None = None
        self.scheduled_at_ms: int | None = None

        self._meetings: tuple[Meeting, ...] = ()
        self._joined: MutableSet[str] = set()
        self._config = SchedulerConfig()
        self._suppressed: Collection[str] = ()
        # Meetings whose open failed in the current firing chain; not re-fired inline.
        self._failed_opens: set[str] = set()

    def schedule_next(
        self,
        meetings: Sequence[Meeting],
        joined: MutableSet[str],
        config: SchedulerConfig,
        now_ms: int,
        suppressed: Collection[str] | None = None,
    ) -> None:
        self._meetings = tuple(meetings)
        self._joined = joined
        self._config = config
        self._suppressed = suppressed or ()
        self._failed_opens = set()
        self._schedule(now_ms)

    def handle_alarm(self, fired_at_ms: int) -> None:
        due_at = self.scheduled_at_ms
        if due_at is not None and fired_at_ms < due_at - IMMEDIATE_FIRE_MS:
            # Callback of a registration that a later schedule already replaced.
            log(f"JOIN: ignoring stale alarm, next trigger in {due_at - fired_at_ms}ms")
            return

        self._failed_opens = set()
        self._fire(fired_at_ms)

    def cancel(self) -> None:
        self._alarms.clear()
        self.scheduled_meeting = None
        self.scheduled_at_ms = None

    def _pick(self, now_ms: int) -> _Candidate | None:
        config = self._config
        join_before_ms = config.join_before_minutes * MINUTE_MS
        max_after_start_ms = config.max_minutes_after_start * MINUTE_MS

        best: _Candidate | None = None
        for meeting in self._meetings:
            if meeting.call_id in self._joined or meeting.call_id in self._failed_opens:
                continue
            if config.is_excluded(meeting.title):
                continue
            if meeting.end_ms <= now_ms:
                continue

            start = meeting.begin_ms
            trigger_time = start - join_before_ms
            if meeting.call_id in self._suppressed and now_ms >= trigger_time:
                continue

            if trigger_time > now_ms:
                candidate = _Candidate(meeting, trigger_time, trigger_time)
            elif now_ms - start < max_after_start_ms:
                # Catch-up: ranked by its original (past) trigger time, fired now.
                candidate = _Candidate(meeting, trigger_time, now_ms)
            else:
                continue

            if best is None or candidate.trigger_time_ms < best.trigger_time_ms:
                best = candidate
        return best

    def _schedule(self, now_ms: int) -> None:
        self._alarms.clear()
        self.scheduled_meeting = None
        self.scheduled_at_ms = None

        candidate = self._pick(now_ms)
        if candidate is None:
            log("SCHEDULE: no meeting to schedule a join for")
            return

        delay_ms = max(0, candidate.fire_at_ms - now_ms)
        log(
            f'SCHEDULE: join for "{candidate.meeting.title}" in {delay_ms}ms '
            f"({delay_ms / MINUTE_MS:.1f} minutes)"
        )
        self.scheduled_meeting = candidate.meeting

        if delay_ms <= IMMEDIATE_FIRE_MS:
            log("JOIN: triggering immediately")
            self._fire(now_ms)
            return

        self.scheduled_at_ms = candidate.fire_at_ms
        self._alarms.register(candidate.fire_at_ms, self._on_alarm)

    def _fire(self, now_ms: int) -> None:
        meeting = self.scheduled_meeting
        self.scheduled_meeting = None
        self.scheduled_at_ms = None

        if meeting is None:
            log("JOIN: trigger fired but no meeting scheduled")
            self._schedule(now_ms)
            return

        if meeting.call_id in self._joined:
            # Joined through another path since the alarm was set.
            log(f'JOIN: "{meeting.title}" already joined, skipping')
            self._schedule(now_ms)
            return

        log(f'JOIN: opening "{meeting.title}" ({meeting.call_id})')
        try:
            self._open_meeting(meeting)
        except Exception as e:
            log(f'JOIN: failed to open "{meeting.title}": {e} (will retry next cycle)')
            self._failed_opens.add(meeting.call_id)
        else:
            self._joined.add(meeting.call_id)

        self._schedule(now_ms)


def create_coordinator(
    alarms: AlarmScheduler,
    open_meeting: OpenMeeting,
    *,
    on_alarm: AlarmCallback | None = None,
) -> JoinTriggerCoordinator:
    return JoinTriggerCoordinator(alarms, open_meeting, on_alarm=on_alarm)
