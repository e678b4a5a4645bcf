from __future__ import annotations

import pytest

from marginalia.errors import RateLimitExceededError
from marginalia.services.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_limit_then_rejects_with_retry_hint():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(3, 900, clock=clock)

    for _ in range(3):
        limiter.hit("user-1")
    clock.now += 100

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.hit("user-1")
    assert exc_info.value.retry_after == 800
    assert exc_info.value.status_code == 429


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    limiter.hit("a")
    limiter.hit("b")
    with pytest.raises(RateLimitExceededError):
        limiter.hit("a")


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    limiter.hit("a")
    clock.now += 30
    limiter.hit("a")
    assert limiter.remaining("a") == 0

    clock.now += 31
    assert limiter.remaining("a") == 1
    limiter.hit("a")


def test_reset_clears_history():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    limiter.hit("a")
    limiter.reset()
    limiter.hit("a")


def test_expired_keys_are_evicted():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(5, 60, clock=clock)
    for i in range(1000):
        limiter.hit(f"user-{i}:127.0.0.1")
    assert len(limiter) == 1000

    clock.now += 61
    limiter.hit("fresh")
    assert len(limiter) == 1


def test_remaining_does_not_register_unknown_keys():
    limiter = SlidingWindowRateLimiter(2, 60, clock=FakeClock())
    assert limiter.remaining("never-seen") == 2
    assert len(limiter) == 0


def test_key_dropped_once_its_window_empties():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    limiter.hit("a")
    clock.now += 60
    assert limiter.remaining("a") == 2
    assert len(limiter) == 0
