"""TokenBucket tests."""

from __future__ import annotations

import math

import pytest

from switchboard.providers.rate_limiter import TokenBucket


class TestTokenBucket:
    def test_starts_full(self, clock) -> None:
        bucket = TokenBucket("test", capacity=5, refill_per_second=1.0, clock=clock)
        assert bucket.available == 5.0

    def test_acquire_until_empty(self, clock) -> None:
        bucket = TokenBucket("test", capacity=3, refill_per_second=1.0, clock=clock)
        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]
        assert bucket.available == 0.0

    def test_never_negative(self, clock) -> None:
        bucket = TokenBucket("test", capacity=2, refill_per_second=1.0, clock=clock)
        for _ in range(10):
            bucket.try_acquire()
        assert bucket.available >= 0.0
        assert bucket.try_acquire(tokens=5) is False
        assert bucket.available >= 0.0

    def test_continuous_refill(self, clock) -> None:
        bucket = TokenBucket("test", capacity=4, refill_per_second=2.0, clock=clock)
        for _ in range(4):
            bucket.try_acquire()
        clock.advance(0.25)
        assert bucket.available == pytest.approx(0.5)
        assert bucket.try_acquire() is False
        clock.advance(0.25)
        assert bucket.try_acquire() is True

    def test_refill_capped_at_capacity(self, clock) -> None:
        bucket = TokenBucket("test", capacity=3, refill_per_second=10.0, clock=clock)
        bucket.try_acquire()
        clock.advance(60.0)
        assert bucket.available == 3.0

    def test_time_until_available(self, clock) -> None:
        bucket = TokenBucket("test", capacity=1, refill_per_second=4.0, clock=clock)
        assert bucket.time_until_available() == 0.0
        bucket.try_acquire()
        assert bucket.time_until_available() == pytest.approx(0.25)

    def test_time_until_available_never_refills(self, clock) -> None:
        bucket = TokenBucket("test", capacity=1, refill_per_second=0.0, clock=clock)
        bucket.try_acquire()
        assert math.isinf(bucket.time_until_available())

    def test_zero_capacity_is_unlimited(self, clock) -> None:
        bucket = TokenBucket("test", capacity=0, clock=clock)
        assert bucket.unlimited
        assert all(bucket.try_acquire() for _ in range(1000))
        assert bucket.available is None

    def test_reset_refills(self, clock) -> None:
        bucket = TokenBucket("test", capacity=2, refill_per_second=0.0, clock=clock)
        bucket.try_acquire()
        bucket.try_acquire()
        bucket.reset()
        assert bucket.available == 2.0

    @pytest.mark.asyncio
    async def test_acquire_waits_for_refill(self) -> None:
        bucket = TokenBucket("test", capacity=1, refill_per_second=50.0)
        assert bucket.try_acquire()
        assert await bucket.acquire(timeout=0.5) is True

    @pytest.mark.asyncio
    async def test_acquire_gives_up_when_budget_too_small(self) -> None:
        bucket = TokenBucket("test", capacity=1, refill_per_second=0.1)
        assert bucket.try_acquire()
        assert await bucket.acquire(timeout=0.05) is False

    def test_rejects_negative_configuration(self) -> None:
        with pytest.raises(ValueError):
            TokenBucket("test", capacity=-1)
        with pytest.raises(ValueError):
            TokenBucket("test", refill_per_second=-1.0)
