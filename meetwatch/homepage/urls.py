from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

MEET_BASE_URL = "https://meet.google.com/"
AUTO_JOIN_PARAM = "meetcatAuto"

_MEETING_SLUG = re.compile(r"^[a-z]{3}-[a-z]{4}-[a-z]{3}$")


def is_homepage_url(url: str) -> bool:
    """True for the Meet landing page (the page that lists upcoming meetings)."""

    if not url.startswith(MEET_BASE_URL):
        return False

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if query.get("calling") == "1":
        return False

    slug = parts.path.rstrip("/").lstrip("/")
    if slug == "":
        return True
    return not _MEETING_SLUG.match(slug)


def append_auto_join_param(url: str) -> str:
    """Mark a meeting URL as opened by the watcher."""

    absolute = url if urlsplit(url).scheme else urljoin(MEET_BASE_URL, url)
    parts = urlsplit(absolute)
    if not parts.scheme or not parts.netloc:
        return url

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != AUTO_JOIN_PARAM]
    query.append((AUTO_JOIN_PARAM, "1"))
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", urlencode(query), parts.fragment))


def has_auto_join_param(url: str) -> bool:
    parts = urlsplit(urljoin(MEET_BASE_URL, url))
    return any(k == AUTO_JOIN_PARAM for k, _ in parse_qsl(parts.query, keep_blank_values=True))
