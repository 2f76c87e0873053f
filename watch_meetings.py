from __future__ import annotations

import argparse
import json
import os
import re
import shlex
import subprocess
import time
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

from meetwatch.homepage.urls import append_auto_join_param
from meetwatch.log import log
from meetwatch.meetings.alarms import ThreadingAlarmScheduler
from meetwatch.meetings.meeting import Meeting, utc_now_ms
from meetwatch.session import MeetingSession
from meetwatch.settings import Settings, load_settings, merge_settings

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Watch a meeting-list snapshot and open meetings when they are due.")
    p.add_argument(
        "--snapshot",
        required=True,
        help=(
            "Path to the JSON snapshot written by the meeting-list extractor: "
            '{"meetings": [...], "isHomepage": true, "isForeground": false}'
        ),
    )
    p.add_argument("--settings", default=None, help="Optional settings JSON file (snake_case or camelCase keys)")
    p.add_argument(
        "--join-before-minutes",
        default=None,
        type=int,
        help="Open a meeting this many minutes before it starts (default: settings, 1)",
    )
    p.add_argument(
        "--max-minutes-after-start",
        default=None,
        type=int,
        help="Still open meetings up to N minutes after start (default: settings, 30)",
    )
    p.add_argument(
        "--exclude-title",
        action="append",
        default=None,
        help="Skip meetings whose title contains this text (case-sensitive, repeatable)",
    )
    p.add_argument(
        "--on-join-cmd",
        default=None,
        help=(
            "Optional shell command used to open a meeting instead of the default browser. "
            "Supports placeholders: {url} {call_id} {title} {begin_utc}."
        ),
    )
    p.add_argument(
        "--on-reload-cmd",
        default=None,
        help="Optional shell command run when the stale homepage must be reloaded",
    )
    p.add_argument(
        "--poll-seconds",
        default=0,
        type=int,
        help="If set to >0, re-check every N seconds (default: 0 = run once)",
    )
    p.add_argument(
        "--watch",
        action="store_true",
        help="Keep re-checking at the settings check interval (30-120 s) unless --poll-seconds is set",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not open meetings or run commands; only print what would happen",
    )
    return p


def _state_dir() -> Path:
    env = os.environ.get("MEETWATCH_STATE_DIR")
    return Path(env) if env else (Path.cwd() / ".state")


def _joined_state_path() -> Path:
    return _state_dir() / "joined_state.json"


def _history_path() -> Path:
    return _state_dir() / "history.jsonl"


def _append_jsonl(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, ensure_ascii=False)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def _load_joined_state(path: Path) -> dict[str, str]:
    # Maps call_id -> begin_utc_iso, so a restart does not reopen a meeting.
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        # Corrupted state file; back it up so we don't crash or spam.
        try:
            path.replace(path.with_suffix(path.suffix + ".corrupt"))
        except Exception:
            pass
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}


def _save_joined_state(path: Path, state: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(state, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


@dataclass(frozen=True)
class Snapshot:
    meetings: list[Meeting]
    is_homepage: bool
    is_foreground: bool


def load_snapshot(path: Path) -> Snapshot | None:
    """Read the extractor's snapshot. None means the extraction is unusable."""

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        log(f"SNAPSHOT: cannot read {path}: {e}")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("meetings"), list):
        log(f"SNAPSHOT: {path} has no meetings list")
        return None

    meetings: list[Meeting] = []
    for item in data["meetings"]:
        try:
            meetings.append(Meeting.from_json(item))
        except ValueError as e:
            log(f"SNAPSHOT: skipping malformed meeting: {e}")

    meetings.sort(key=lambda m: m.begin_ms)
    return Snapshot(
        meetings=meetings,
        is_homepage=bool(data.get("isHomepage", True)),
        is_foreground=bool(data.get("isForeground", False)),
    )


def _run_cmd(cmd_template: str, **placeholders: str) -> None:
    # Values come from calendar invites: quote each one and substitute in a single
    # pass, so text inside a value is never expanded again.
    def _sub(m: re.Match[str]) -> str:
        key = m.group(1)
        return shlex.quote(placeholders[key]) if key in placeholders else m.group(0)

    cmd = _PLACEHOLDER.sub(_sub, cmd_template)
    log(f"RUN: {cmd}")
    result = subprocess.run(cmd, shell=True, check=False)
    if result.returncode != 0:
        raise RuntimeError(f"command exited with code {result.returncode}")


def make_open_meeting(args: argparse.Namespace) -> Callable[[Meeting], None]:
    def open_meeting(meeting: Meeting) -> None:
        url = append_auto_join_param(meeting.url)
        _append_jsonl(
            _history_path(),
            {
                "ts_ms": utc_now_ms(),
                "type": "open_meeting",
                "call_id": meeting.call_id,
                "title": meeting.title,
                "url": url,
                "dry_run": bool(args.dry_run),
            },
        )
        if args.dry_run:
            log(f"RUN: (dry-run) would open {url}")
            return
        if args.on_join_cmd:
            _run_cmd(
                args.on_join_cmd,
                url=url,
                call_id=meeting.call_id,
                title=meeting.title,
                begin_utc=meeting.to_json()["beginTime"],
            )
            return
        if not webbrowser.open(url, new=2):
            raise RuntimeError("no browser available")

    return open_meeting


def make_reload_page(args: argparse.Namespace) -> Callable[[], None]:
    def reload_page() -> None:
        _append_jsonl(_history_path(), {"ts_ms": utc_now_ms(), "type": "reload_homepage", "dry_run": bool(args.dry_run)})
        if args.dry_run or not args.on_reload_cmd:
            log("RUN: (no reload command) homepage reload requested")
            return
        _run_cmd(args.on_reload_cmd)

    return reload_page


def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(Path(args.settings) if args.settings else None)
    return merge_settings(
        settings,
        {
            "join_before_minutes": args.join_before_minutes,
            "max_minutes_after_start": args.max_minutes_after_start,
            "title_exclude_filters": args.exclude_title,
        },
    )


def poll_interval_seconds(args: argparse.Namespace, settings: Settings) -> int:
    """Seconds between checks; 0 means run once."""

    if args.poll_seconds and args.poll_seconds > 0:
        return int(args.poll_seconds)
    if args.watch:
        return settings.check_interval_seconds
    return 0


def run_once(session: MeetingSession, args: argparse.Namespace) -> int:
    now_ms = utc_now_ms()
    snapshot = load_snapshot(Path(args.snapshot))
    if snapshot is None:
        session.report_parse_result(False)
        return 1

    session.update_meetings(snapshot.meetings, now_ms)
    decision = session.evaluate_homepage(
        now_ms=now_ms,
        is_homepage=snapshot.is_homepage,
        is_foreground=snapshot.is_foreground,
    )

    status = session.status(now_ms)
    ev = status.next_event
    if ev.meeting is not None:
        suffix = f" in {ev.minutes_until} min" if ev.minutes_until is not None else ""
        log(f'STATUS: {ev.type.value} "{ev.meeting.title}"{suffix}')
    else:
        log("STATUS: nothing to do")

    if not args.dry_run:
        joined_state = {
            m.call_id: m.to_json()["beginTime"] for m in session.meetings if m.call_id in session.joined
        }
        _save_joined_state(_joined_state_path(), joined_state)
        _append_jsonl(
            _history_path(),
            {
                "ts_ms": now_ms,
                "type": "poll",
                "fingerprint": decision.fingerprint,
                "recovery_action": decision.evaluation.action.value,
                "recovery_reason": decision.evaluation.reason.value,
                "status": status.to_json(),
            },
        )
    return 0


def main() -> int:
    load_dotenv()
    args = build_parser().parse_args()
    settings = resolve_settings(args)

    session = MeetingSession(
        settings=settings,
        alarms=ThreadingAlarmScheduler(),
        open_meeting=make_open_meeting(args),
        reload_page=make_reload_page(args),
    )
    session.joined.update(_load_joined_state(_joined_state_path()))

    interval = poll_interval_seconds(args, settings)
    if interval > 0:
        try:
            while True:
                run_once(session, args)
                time.sleep(interval)
        except KeyboardInterrupt:
            log("Stopped (KeyboardInterrupt).")
            return 0
        finally:
            session.close()

    try:
        return run_once(session, args)
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
