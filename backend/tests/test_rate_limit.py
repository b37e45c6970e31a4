"""
Tests for the sliding-window search limiter.
"""
from unittest.mock import MagicMock

import pytest
import redis

from wikihub.core.errors import RateLimitedError
from wikihub.services.rate_limit import SlidingWindowLimiter


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(redis_client, clock):
    return SlidingWindowLimiter(redis_client, "search", limit=3, window_seconds=60, clock=clock)


class TestSlidingWindowLimiter:

    def test_allows_up_to_limit(self, limiter):
        for _ in range(3):
            limiter.check("10.0.0.1")

    def test_over_limit_raises_with_retry_after(self, limiter, clock):
        for _ in range(3):
            limiter.check("10.0.0.1")
            clock.now += 10

        with pytest.raises(RateLimitedError) as exc_info:
            limiter.check("10.0.0.1")

        # Oldest entry was 30s ago, so it leaves the window in ~30s
        assert 30 <= exc_info.value.retry_after <= 31

    def test_window_slides(self, limiter, clock):
        for _ in range(3):
            limiter.check("10.0.0.1")
        clock.now += 61

        limiter.check("10.0.0.1")

    def test_rejected_requests_are_not_counted(self, limiter, redis_client):
        for _ in range(3):
            limiter.check("10.0.0.1")
        for _ in range(5):
            with pytest.raises(RateLimitedError):
                limiter.check("10.0.0.1")

        assert redis_client.zcard(limiter.key("10.0.0.1")) == 3

    def test_clients_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("10.0.0.1")

        limiter.check("10.0.0.2")

    def test_missing_client_id_shares_unknown_bucket(self, limiter, redis_client):
        limiter.check(None)
        assert redis_client.exists(limiter.key("unknown"))

    def test_fails_open_when_redis_is_down(self):
        client = MagicMock()
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        limiter = SlidingWindowLimiter(client, "search", limit=1, window_seconds=60)

        limiter.check("10.0.0.1")
        limiter.check("10.0.0.1")


class TestCleanup:

    def test_trims_expired_and_drops_empty_sets(self, limiter, redis_client, clock):
        limiter.check("10.0.0.1")
        clock.now += 30
        limiter.check("10.0.0.2")
        clock.now += 40

        removed = limiter.cleanup()

        assert removed == 1
        assert not redis_client.exists(limiter.key("10.0.0.1"))
        assert redis_client.zcard(limiter.key("10.0.0.2")) == 1

    def test_leaves_other_scopes_alone(self, limiter, redis_client, clock):
        redis_client.zadd("ratelimit:other:10.0.0.1", {"x": 0})
        clock.now += 1000

        limiter.cleanup()

        assert redis_client.exists("ratelimit:other:10.0.0.1")
