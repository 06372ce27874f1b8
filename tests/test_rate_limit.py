"""
Unit tests for the fixed-window rate limiter.
"""
import pytest

from services.diagnosis.rate_limit import InMemoryRateLimitStore, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryRateLimitStore:
    @pytest.mark.asyncio
    async def test_counter_expires(self):
        clock = FakeClock()
        store = InMemoryRateLimitStore(clock=clock)
        await store.increment("k")
        await store.increment("k")
        await store.expire("k", 1.0)

        assert await store.get("k") == 2
        clock.now += 1.0
        assert await store.get("k") == 0

    @pytest.mark.asyncio
    async def test_purge_drops_expired_keys(self):
        clock = FakeClock()
        store = InMemoryRateLimitStore(clock=clock)
        await store.increment("a")
        await store.expire("a", 0.5)
        await store.increment("b")
        clock.now += 1.0

        assert store.purge() == 1
        assert await store.get("b") == 1

    @pytest.mark.asyncio
    async def test_one_off_clients_are_swept(self):
        clock = FakeClock()
        store = InMemoryRateLimitStore(clock=clock, purge_interval=1.0)
        limiter = RateLimiter(store, points=10, window=1.0)

        for index in range(5000):
            await limiter.check(f"10.0.{index // 256}.{index % 256}")
            clock.now += 0.01

        assert len(store._counters) < 500

    def test_invalid_purge_interval(self):
        with pytest.raises(ValueError):
            InMemoryRateLimitStore(purge_interval=0)


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_points_per_window(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryRateLimitStore(clock=clock), points=10, window=1.0)

        decisions = [await limiter.check("10.0.0.1") for _ in range(11)]

        assert all(decision.allowed for decision in decisions[:10])
        assert decisions[9].remaining == 0
        assert not decisions[10].allowed
        assert decisions[10].retry_after == 1.0

    @pytest.mark.asyncio
    async def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryRateLimitStore(clock=clock), points=1, window=1.0)

        assert (await limiter.check("ip")).allowed
        assert not (await limiter.check("ip")).allowed
        clock.now += 1.5
        assert (await limiter.check("ip")).allowed

    @pytest.mark.asyncio
    async def test_clients_are_independent(self):
        limiter = RateLimiter(InMemoryRateLimitStore(), points=1, window=60.0)

        assert (await limiter.check("a")).allowed
        assert (await limiter.check("b")).allowed

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RateLimiter(InMemoryRateLimitStore(), points=0)
