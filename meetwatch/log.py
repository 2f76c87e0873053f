from __future__ import annotations

import datetime as dt


def log(message: str) -> None:
    """Simple logging with timestamp."""
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat()
    print(f"[{timestamp}] {message}", flush=True)
