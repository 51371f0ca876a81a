"""
Bookkeeping for in-flight retry sequences.

Entries are created when an execution starts and removed when it succeeds or
gives up. A periodic sweep drops entries that outlive the staleness threshold,
for example when a caller abandons a call mid-retry.
"""

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from retrykit.core.retry.registry import RequestContext

# Sweep every 5 minutes, drop entries older than 10 minutes
DEFAULT_CLEANUP_INTERVAL_MS = 5 * 60 * 1000
DEFAULT_STALE_THRESHOLD_MS = 10 * 60 * 1000


@dataclass
class TrackingEntry:
    """State of one in-flight retry sequence."""

    start_time_ms: float
    attempts: int
    context: RequestContext


@dataclass(frozen=True)
class RetryStats:
    """Snapshot of a tracked request for observability."""

    request_id: str
    attempts: int
    duration_ms: float
    context: RequestContext

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "context": self.context.to_dict(),
        }


def sweep_stale(
    now_ms: float,
    entries: Mapping[str, TrackingEntry],
    threshold_ms: float,
) -> dict[str, TrackingEntry]:
    """
    Drop entries older than the threshold.

    Args:
        now_ms: Current wall-clock time in milliseconds
        entries: Tracked entries keyed by request id
        threshold_ms: Maximum age to keep

    Returns:
        The surviving entries
    """
    return {
        request_id: entry for request_id, entry in entries.items() if now_ms - entry.start_time_ms <= threshold_ms
    }


class AttemptTracker:
    """
    Thread-safe map of request id -> TrackingEntry.

    Only the retry manager writes to it. All access goes through a lock so the
    blocking executor can be used from several threads at once.
    """

    def __init__(self, stale_threshold_ms: float = DEFAULT_STALE_THRESHOLD_MS):
        self.stale_threshold_ms = stale_threshold_ms
        self._entries: dict[str, TrackingEntry] = {}
        self._lock = threading.Lock()

    def start(self, request_id: str, context: RequestContext, now_ms: float) -> TrackingEntry:
        """Register a new sequence, replacing any entry with the same id."""
        entry = TrackingEntry(start_time_ms=now_ms, attempts=0, context=context)
        with self._lock:
            self._entries[request_id] = entry
        return entry

    def update_attempts(self, request_id: str, attempts: int) -> None:
        """Record the attempt count; counts never decrease."""
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is not None and attempts > entry.attempts:
                entry.attempts = attempts

    def finish(self, request_id: str) -> None:
        """Forget a sequence that succeeded or gave up."""
        with self._lock:
            self._entries.pop(request_id, None)

    def insert(self, request_id: str, entry: TrackingEntry) -> None:
        """Store an entry as-is."""
        with self._lock:
            self._entries[request_id] = entry

    def get_stats(self, request_id: str, now_ms: float) -> RetryStats | None:
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                return None
            return RetryStats(
                request_id=request_id,
                attempts=entry.attempts,
                duration_ms=now_ms - entry.start_time_ms,
                context=entry.context,
            )

    def all_stats(self, now_ms: float) -> list[RetryStats]:
        with self._lock:
            return [
                RetryStats(
                    request_id=request_id,
                    attempts=entry.attempts,
                    duration_ms=now_ms - entry.start_time_ms,
                    context=entry.context,
                )
                for request_id, entry in self._entries.items()
            ]

    def cleanup_stale(self, now_ms: float) -> int:
        """
        Remove stale entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            survivors = sweep_stale(now_ms, self._entries, self.stale_threshold_ms)
            removed = len(self._entries) - len(survivors)
            self._entries = survivors
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries
