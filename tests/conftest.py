"""Shared fixtures for meetwatch tests."""

from __future__ import annotations

import datetime as dt
from typing import Callable

import pytest

from meetwatch.meetings.meeting import MINUTE_MS, Meeting, from_ms

NOW_MS = 1_770_372_000_000  # 2026-02-06T10:00:00Z


def make_meeting(
    call_id: str = "abc-defg-hij",
    *,
    title: str = "Daily Standup",
    starts_in_minutes: float | None = None,
    begin: dt.datetime | None = None,
    duration_minutes: int = 60,
    event_id: str | None = "event-1",
    display_time: str = "10:00 AM",
    now_ms: int = NOW_MS,
) -> Meeting:
    if begin is None:
        offset = 5 if starts_in_minutes is None else starts_in_minutes
        begin = from_ms(now_ms + int(offset * MINUTE_MS))
    return Meeting(
        call_id=call_id,
        url=f"https://meet.google.com/{call_id}",
        title=title,
        display_time=display_time,
        begin_time=begin,
        end_time=begin + dt.timedelta(minutes=duration_minutes),
        event_id=event_id,
        starts_in_minutes=int(starts_in_minutes or 0),
    )


class FakeAlarms:
    """In-memory alarm scheduler: holds the single registration for inspection."""

    def __init__(self):
        self.when_ms: int | None = None
        self.callback: Callable[[int], None] | None = None
        self.registrations = 0
        self.clears = 0

    def register(self, when_ms: int, callback: Callable[[int], None]) -> None:
        self.when_ms = when_ms
        self.callback = callback
        self.registrations += 1

    def clear(self) -> None:
        self.when_ms = None
        self.callback = None
        self.clears += 1

    def fire(self, at_ms: int | None = None) -> None:
        assert self.callback is not None, "no alarm registered"
        callback, when = self.callback, self.when_ms
        self.callback = None
        self.when_ms = None
        callback(when if at_ms is None else at_ms)


class RecordingOpener:
    def __init__(self, fail_for: set[str] | None = None):
        self.opened: list[str] = []
        self.attempts: list[str] = []
        self.fail_for = fail_for or set()

    def __call__(self, meeting: Meeting) -> None:
        self.attempts.append(meeting.call_id)
        if meeting.call_id in self.fail_for:
            raise RuntimeError("tab could not be opened")
        self.opened.append(meeting.call_id)


@pytest.fixture
def alarms() -> FakeAlarms:
    return FakeAlarms()


@pytest.fixture
def opener() -> RecordingOpener:
    return RecordingOpener()
