from __future__ import annotations

import math
from typing import Any, Collection, Sequence

from meetwatch.meetings.meeting import MINUTE_MS, Meeting, SchedulerConfig, SchedulerEvent, utc_now_ms

DEFAULT_GRACE_PERIOD_MINUTES = 10


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class Scheduler:
    """Pure join decision over one meeting list snapshot.

    Holds only its configuration; every `check` is computed from its arguments.
    """

    def __init__(self, config: SchedulerConfig | None = None):
        self._config = config or SchedulerConfig()

    def check(
        self,
        meetings: Sequence[Meeting],
        already_joined: Collection[str] = (),
        suppressed: Collection[str] | None = None,
        now_ms: int | None = None,
    ) -> SchedulerEvent:
        """Classify `meetings` (pre-sorted by start) into join / upcoming / none.

        `suppressed` is accepted for call-site symmetry with the host status path
        but is not consulted here; see `get_next_joinable_meeting`.
        """

        now = utc_now_ms() if now_ms is None else now_ms
        config = self._config
        join_threshold = config.join_before_minutes * MINUTE_MS
        max_after_start = config.max_minutes_after_start * MINUTE_MS

        next_upcoming: Meeting | None = None
        next_upcoming_minutes: float = math.inf

        for meeting in meetings:
            if meeting.call_id in already_joined:
                continue
            if config.is_excluded(meeting.title):
                continue

            time_until_start = meeting.begin_ms - now
            if time_until_start <= join_threshold and time_until_start > -max_after_start:
                return SchedulerEvent.join(meeting)

            if time_until_start > 0 and time_until_start < next_upcoming_minutes * MINUTE_MS:
                next_upcoming = meeting
                next_upcoming_minutes = _round_half_up(time_until_start / MINUTE_MS)

        if next_upcoming is not None:
            return SchedulerEvent.upcoming(next_upcoming, int(next_upcoming_minutes))
        return SchedulerEvent.none()

    def update_config(self, **changes: Any) -> None:
        self._config = self._config.merged(**changes)

    def get_config(self) -> SchedulerConfig:
        # Frozen dataclass, so the current value is already a snapshot.
        return self._config


def create_scheduler(config: SchedulerConfig | None = None, **overrides: Any) -> Scheduler:
    base = config or SchedulerConfig()
    return Scheduler(base.merged(**overrides) if overrides else base)


def get_next_joinable_meeting(
    meetings: Sequence[Meeting],
    *,
    already_joined: Collection[str] | None = None,
    suppressed: Collection[str] | None = None,
    join_before_minutes: int | None = None,
    title_filter: str | None = None,
    now_ms: int | None = None,
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
) -> Meeting | None:
    """Next meeting to show the user, as opposed to the next one to fire.

    Differs from `Scheduler.check` on purpose:
    - a joined meeting stays a candidate until it has actually started
    - a suppressed meeting is skipped only from its trigger time on
      (`begin - join_before_minutes`); without `join_before_minutes` suppression
      is ignored
    - `title_filter` is an include filter, not an exclude list
    - ended meetings are skipped, and started ones stay joinable for
      `grace_period_minutes`
    """

    joined = already_joined or ()
    suppressed_ids = suppressed or ()
    now = utc_now_ms() if now_ms is None else now_ms
    grace_ms = grace_period_minutes * MINUTE_MS

    for meeting in meetings:
        start = meeting.begin_ms
        trigger_at = start - join_before_minutes * MINUTE_MS if join_before_minutes is not None else None

        if meeting.call_id in joined and start <= now:
            continue
        if title_filter and title_filter not in meeting.title:
            continue
        if meeting.end_ms <= now:
            continue
        if trigger_at is not None and meeting.call_id in suppressed_ids and now >= trigger_at:
            continue

        if start > now - grace_ms:
            return meeting

    return None
