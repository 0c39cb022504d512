"""Fixed-window rate limiting."""

from __future__ import annotations

import pytest

from gallery_crawler.errors import RateLimitExceeded
from gallery_crawler.ratelimit import RateLimiter


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_eleventh_check_is_rejected_and_window_reset_restores_quota() -> None:
    clock = Clock()
    limiter = RateLimiter(max_images=10, window=600, clock=clock)

    for _ in range(10):
        assert limiter.check("client").allowed
        limiter.consume("client", 1)
        clock.now += 1

    status = limiter.check("client")
    assert status.allowed is False
    assert status.remaining == 0
    assert 0 < status.reset_in <= 600

    clock.now += 600
    status = limiter.check("client")
    assert status.allowed is True
    assert status.remaining == 10


def test_identities_are_independent() -> None:
    limiter = RateLimiter(max_images=2, window=60, clock=Clock())
    limiter.consume("a", 2)
    assert not limiter.check("a").allowed
    assert limiter.check("b").remaining == 2


def test_count_never_exceeds_ceiling() -> None:
    limiter = RateLimiter(max_images=10, window=60, clock=Clock())
    limiter.consume("a", 7)
    limiter.consume("a", 7)
    assert limiter.check("a").remaining == 0
    limiter.consume("a", 0)
    assert limiter.check("a").remaining == 0


def test_require_rejects_estimates_over_remaining_quota() -> None:
    limiter = RateLimiter(max_images=10, window=60, clock=Clock())
    limiter.consume("a", 4)
    assert limiter.require("a", estimate=6).remaining == 6
    with pytest.raises(RateLimitExceeded) as info:
        limiter.require("a", estimate=7)
    assert info.value.estimate == 7
    assert info.value.status.remaining == 6


def test_require_rejects_exhausted_identity() -> None:
    limiter = RateLimiter(max_images=1, window=60, clock=Clock())
    limiter.consume("a")
    with pytest.raises(RateLimitExceeded) as info:
        limiter.require("a")
    assert info.value.estimate is None


def test_sweep_removes_only_expired_records() -> None:
    clock = Clock()
    limiter = RateLimiter(max_images=10, window=60, clock=clock)
    limiter.check("old")
    clock.now += 30
    limiter.check("new")
    clock.now += 31
    assert limiter.sweep() == 1
    assert len(limiter) == 1
