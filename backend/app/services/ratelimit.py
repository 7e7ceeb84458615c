from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

WINDOW_MS = 60 * 1000
MAX_REQUESTS_PER_WINDOW = 60
CLEANUP_INTERVAL_MS = 60 * 1000


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int


class RateLimiter:
    """In-memory fixed window rate limiter keyed by client identifier.

    Expired entries are swept inline, at most once per ``cleanup_interval_ms``,
    before a check is evaluated. State is process-local and never persisted.
    """

    def __init__(
        self,
        *,
        cleanup_interval_ms: int = CLEANUP_INTERVAL_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._clock = clock or _wall_clock_ms
        self._cleanup_interval_ms = cleanup_interval_ms
        self._store: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = self._clock()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def check(
        self,
        key: str,
        max_requests: int = MAX_REQUESTS_PER_WINDOW,
        window_ms: int = WINDOW_MS,
    ) -> RateLimitResult:
        with self._lock:
            self._cleanup()
            now = self._clock()
            entry = self._store.get(key)

            if entry is None or now >= entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + window_ms)
                self._store[key] = entry
            else:
                # rejected requests are counted too
                entry.count += 1

            return RateLimitResult(
                allowed=entry.count <= max_requests,
                remaining=max(0, max_requests - entry.count),
                reset_at=entry.reset_at,
            )

    def _cleanup(self) -> None:
        now = self._clock()
        if now - self._last_cleanup < self._cleanup_interval_ms:
            return
        self._last_cleanup = now
        expired = [key for key, entry in self._store.items() if entry.reset_at <= now]
        for key in expired:
            del self._store[key]


__all__ = [
    "CLEANUP_INTERVAL_MS",
    "MAX_REQUESTS_PER_WINDOW",
    "WINDOW_MS",
    "RateLimitEntry",
    "RateLimitResult",
    "RateLimiter",
]
