from __future__ import annotations

import threading
from typing import Callable, Protocol

from meetwatch.log import log
from meetwatch.meetings.meeting import utc_now_ms

AlarmCallback = Callable[[int], None]


class AlarmScheduler(Protocol):
    """One-shot callback at an absolute epoch-ms timestamp.

    A single instance holds at most one registration; registering replaces it.
    The callback receives the time it fired at.
    """

    def register(self, when_ms: int, callback: AlarmCallback) -> None: ...

    def clear(self) -> None: ...


class ThreadingAlarmScheduler:
    def __init__(self, *, name: str = "join-trigger", clock: Callable[[], int] = utc_now_ms):
        self._name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self.when_ms: int | None = None

    def register(self, when_ms: int, callback: AlarmCallback) -> None:
        with self._lock:
            self._cancel_locked()
            self._generation += 1
            generation = self._generation
            delay_s = max(0.0, (when_ms - self._clock()) / 1000)
            timer = threading.Timer(delay_s, self._fire, args=(generation, callback))
            timer.name = f"{self._name}-{generation}"
            timer.daemon = True
            self._timer = timer
            self.when_ms = when_ms
            timer.start()

    def clear(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self.when_ms = None

    def _fire(self, generation: int, callback: AlarmCallback) -> None:
        with self._lock:
            # A timer that was cancelled after it started waiting must not fire.
            if generation != self._generation or self._timer is None:
                return
            self._timer = None
            self.when_ms = None
        try:
            callback(self._clock())
        except Exception as e:
            # Never let an alarm callback kill the timer thread silently.
            log(f"ALARM: {self._name} callback failed: {e}")
