"""
telemetry.py — Snapshot fallback-rate tracker and snapshot event log

FallbackRateTracker is a bounded sliding window of (timestamp, fallback_used)
outcomes. One instance lives for the life of the process (created in
main.py create_app and injected into the mode selector and orchestrator);
nothing is persisted, so a restart resets to the conservative default of
"not enough data".

Business Rules:
- Keep at most max_events outcomes (100), drop anything older than
  window_seconds (1 hour); trimming happens on every write
- fallback_rate() is None below min_events_for_rate (5) events
- record() appends and trims under one lock so concurrent writers never
  lose an update

Called by: services/mode_selection.py, services/snapshot_service.py, main.py
"""

import threading
import time
from collections import deque
from typing import Callable

from loguru import logger

from ..config import Settings

ERROR_CODES = ("E_REASONING", "E_SCHEMA", "E_TIMEOUT", "E_UNKNOWN")


class FallbackRateTracker:
    def __init__(
        self,
        max_events: int = 100,
        window_seconds: float = 3600,
        min_events_for_rate: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.max_events = max_events
        self.window_seconds = window_seconds
        self.min_events_for_rate = min_events_for_rate
        self._clock = clock
        self._events: deque[tuple[float, bool]] = deque()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FallbackRateTracker":
        return cls(
            max_events=settings.telemetry_max_events,
            window_seconds=settings.telemetry_window_seconds,
            min_events_for_rate=settings.telemetry_min_events_for_rate,
        )

    def _trim(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._events and self._events[0][0] < cutoff:
            self._events.popleft()
        while len(self._events) > self.max_events:
            self._events.popleft()

    def record(self, fallback_used: bool) -> None:
        now = self._clock()
        with self._lock:
            self._events.append((now, bool(fallback_used)))
            self._trim(now)

    def fallback_rate(self) -> float | None:
        with self._lock:
            self._trim(self._clock())
            total = len(self._events)
            if total < self.min_events_for_rate:
                return None
            fallbacks = sum(1 for _, used in self._events if used)
        return fallbacks / total

    def event_count(self) -> int:
        with self._lock:
            self._trim(self._clock())
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


def log_snapshot_event(
    *,
    source_id: str,
    snapshot_id: str,
    mode_attempted: str,
    mode_used: str,
    fallback_used: bool,
    duration_ms: int,
    error_code: str | None = None,
) -> dict:
    """Write one structured snapshot telemetry line. Returns the entry."""
    entry = {
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "source_id": source_id,
        "snapshot_id": snapshot_id,
        "mode_attempted": mode_attempted,
        "mode_used": mode_used,
        "fallback_used": fallback_used,
        "error_code": error_code,
        "duration_ms": duration_ms,
    }
    if fallback_used:
        logger.bind(**entry).warning("Snapshot fell back to deterministic scoring")
    else:
        logger.bind(**entry).info("Snapshot scored")
    return entry
