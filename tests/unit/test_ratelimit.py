from __future__ import annotations

import threading
import time

from backend.app.services.ratelimit import RateLimiter, RateLimitResult


class FakeClock:
    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


def test_first_request_for_new_key_is_allowed() -> None:
    clock = FakeClock(5_000)
    limiter = RateLimiter(clock=clock)

    result = limiter.check("fresh", 10, 1000)

    assert result == RateLimitResult(allowed=True, remaining=9, reset_at=6_000)


def test_requests_within_limit_count_down_remaining() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    for n in range(1, 6):
        clock.now = n * 10
        result = limiter.check("key", 5, 1000)
        assert result.allowed
        assert result.remaining == 5 - n
        assert result.reset_at == 1010


def test_request_over_limit_is_rejected() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    for _ in range(3):
        assert limiter.check("key", 3, 1000).allowed

    result = limiter.check("key", 3, 1000)
    assert result.allowed is False
    assert result.remaining == 0


def test_fixed_window_scenario() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    observed = []
    for t in (0, 100, 200, 1100):
        clock.now = t
        result = limiter.check("k", 2, 1000)
        observed.append((result.allowed, result.remaining))

    assert observed == [(True, 1), (True, 0), (False, 0), (True, 1)]


def test_window_resets_regardless_of_overage() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(50):
        limiter.check("noisy", 2, 1000)

    clock.now = 1000
    result = limiter.check("noisy", 2, 1000)

    assert result.allowed
    assert result.remaining == 1
    assert result.reset_at == 2000


def test_rejected_requests_keep_counting() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(4):
        limiter.check("key", 1, 1000)

    # a higher limit on the same window still sees the earlier rejections
    result = limiter.check("key", 5, 1000)
    assert result.allowed is True
    assert result.remaining == 0

    assert limiter.check("key", 5, 1000).allowed is False


def test_zero_limit_rejects_first_request() -> None:
    limiter = RateLimiter(clock=FakeClock())

    result = limiter.check("key", 0, 1000)

    assert result.allowed is False
    assert result.remaining == 0


def test_keys_are_counted_independently() -> None:
    limiter = RateLimiter(clock=FakeClock())

    assert limiter.check("a", 1, 1000).allowed
    assert limiter.check("a", 1, 1000).allowed is False
    assert limiter.check("b", 1, 1000).allowed


def test_cleanup_removes_only_expired_entries() -> None:
    clock = FakeClock()
    limiter = RateLimiter(cleanup_interval_ms=60_000, clock=clock)
    limiter.check("short", 5, 1_000)
    limiter.check("long", 5, 120_000)
    assert len(limiter) == 2

    clock.now = 60_000
    limiter.check("other", 5, 1_000)

    assert "short" not in limiter
    assert "long" in limiter
    assert "other" in limiter


def test_cleanup_waits_for_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(cleanup_interval_ms=60_000, clock=clock)
    limiter.check("short", 5, 1_000)

    clock.now = 59_999
    limiter.check("other", 5, 1_000)
    assert "short" in limiter

    clock.now = 120_000
    limiter.check("trigger", 5, 1_000)
    assert "short" not in limiter
    assert "other" not in limiter


def test_default_clock_uses_wall_time(monkeypatch) -> None:
    monkeypatch.setattr(time, "time", lambda: 1_700_000_000.25)
    limiter = RateLimiter()

    result = limiter.check("key", 2, 60_000)

    assert result.reset_at == 1_700_000_000_250 + 60_000


def test_concurrent_checks_do_not_undercount() -> None:
    limiter = RateLimiter(clock=FakeClock())
    allowed: list[bool] = []
    lock = threading.Lock()

    def _hit() -> None:
        for _ in range(50):
            result = limiter.check("shared", 100, 60_000)
            with lock:
                allowed.append(result.allowed)

    threads = [threading.Thread(target=_hit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert allowed.count(True) == 100
    assert allowed.count(False) == 300
