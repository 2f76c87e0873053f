from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

MINUTE_MS = 60 * 1000


def utc_now_ms() -> int:
    return int(dt.datetime.now(tz=dt.timezone.utc).timestamp() * 1000)


def to_ms(value: dt.datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return int(value.timestamp() * 1000)


def from_ms(value_ms: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(value_ms / 1000, tz=dt.timezone.utc)


def _parse_instant(value: Any, *, field_name: str) -> dt.datetime:
    # The extractor sends either ISO-8601 strings (JSON-encoded dates) or epoch milliseconds.
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an ISO-8601 string or epoch milliseconds")
    if isinstance(value, (int, float)):
        return from_ms(int(value))
    if isinstance(value, str) and value.strip():
        try:
            parsed = dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"{field_name} is not a valid ISO-8601 timestamp: {value!r}") from e
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=dt.timezone.utc)
        return parsed
    raise ValueError(f"{field_name} must be an ISO-8601 string or epoch milliseconds")


@dataclass(frozen=True)
class Meeting:
    """One meeting occurrence as delivered by the meeting-list extractor.

    Two meetings are the same occurrence iff `call_id` matches. `display_time`
    and `starts_in_minutes` are presentation/relative fields and never take part
    in identity decisions.
    """

    call_id: str
    url: str
    title: str
    display_time: str
    begin_time: dt.datetime
    end_time: dt.datetime
    event_id: str | None = None
    starts_in_minutes: int = 0

    @property
    def begin_ms(self) -> int:
        return to_ms(self.begin_time)

    @property
    def end_ms(self) -> int:
        return to_ms(self.end_time)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Meeting:
        if not isinstance(data, dict):
            raise ValueError("meeting payload must be an object")

        call_id = data.get("callId")
        url = data.get("url")
        if not isinstance(call_id, str) or not call_id:
            raise ValueError("meeting payload is missing callId")
        if not isinstance(url, str) or not url:
            raise ValueError(f"meeting {call_id} is missing url")

        event_id = data.get("eventId")
        starts_in = data.get("startsInMinutes", 0)
        return cls(
            call_id=call_id,
            url=url,
            title=str(data.get("title") or ""),
            display_time=str(data.get("displayTime") or ""),
            begin_time=_parse_instant(data.get("beginTime"), field_name="beginTime"),
            end_time=_parse_instant(data.get("endTime"), field_name="endTime"),
            event_id=event_id if isinstance(event_id, str) and event_id else None,
            starts_in_minutes=int(starts_in) if isinstance(starts_in, (int, float)) else 0,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "callId": self.call_id,
            "url": self.url,
            "title": self.title,
            "displayTime": self.display_time,
            "beginTime": self.begin_time.astimezone(dt.timezone.utc).isoformat(),
            "endTime": self.end_time.astimezone(dt.timezone.utc).isoformat(),
            "eventId": self.event_id,
            "startsInMinutes": self.starts_in_minutes,
        }


@dataclass(frozen=True)
class SchedulerConfig:
    # Minutes before start at which joining begins.
    join_before_minutes: int = 1
    # Latest point after start (minutes) at which a meeting is still joinable.
    max_minutes_after_start: int = 30
    # Case-sensitive substrings; any match excludes the meeting.
    title_exclude_filters: tuple[str, ...] = field(default_factory=tuple)

    def merged(self, **changes: Any) -> SchedulerConfig:
        if "title_exclude_filters" in changes and changes["title_exclude_filters"] is not None:
            changes["title_exclude_filters"] = tuple(changes["title_exclude_filters"])
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def is_excluded(self, title: str) -> bool:
        return any(f in title for f in self.title_exclude_filters)


class EventType(str, Enum):
    JOIN = "join"
    UPCOMING = "upcoming"
    NONE = "none"


@dataclass(frozen=True)
class SchedulerEvent:
    type: EventType
    meeting: Meeting | None = None
    # Only set for UPCOMING.
    minutes_until: int | None = None

    @classmethod
    def join(cls, meeting: Meeting) -> SchedulerEvent:
        return cls(type=EventType.JOIN, meeting=meeting)

    @classmethod
    def upcoming(cls, meeting: Meeting, minutes_until: int) -> SchedulerEvent:
        return cls(type=EventType.UPCOMING, meeting=meeting, minutes_until=minutes_until)

    @classmethod
    def none(cls) -> SchedulerEvent:
        return cls(type=EventType.NONE, meeting=None)

    def to_json(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "meeting": self.meeting.to_json() if self.meeting else None,
            "minutesUntil": self.minutes_until,
        }
