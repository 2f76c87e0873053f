from __future__ import annotations

from typing import Iterable

from meetwatch.meetings.meeting import Meeting

EMPTY_FINGERPRINT = "0:empty"

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def normalize_title(title: str) -> str:
    return " ".join(title.split())


def fnv1a_32(text: str) -> int:
    # Hash UTF-16 code units so fingerprints match the ones produced by the page side.
    data = text.encode("utf-16-le")
    h = _FNV_OFFSET_BASIS
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def _identity_key(meeting: Meeting) -> str:
    return "|".join(
        [
            meeting.call_id,
            str(meeting.begin_ms),
            str(meeting.end_ms),
            meeting.event_id or "",
            normalize_title(meeting.title),
        ]
    )


def fingerprint(meetings: Iterable[Meeting]) -> str:
    """Stable short summary of a meeting set's identity fields.

    Relative fields (`display_time`, `starts_in_minutes`) and title whitespace are
    ignored so a list that only ticks forward in time keeps the same fingerprint.
    """

    keys = sorted(_identity_key(m) for m in meetings)
    if not keys:
        return EMPTY_FINGERPRINT
    return f"{len(keys)}:{fnv1a_32('||'.join(keys)):08x}"
