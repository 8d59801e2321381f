"""
Tests for the per-actor fixed-window rate limiter
"""
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.exceptions import DependencyError, ThrottledError
from app.core.rate_limit import RateLimiter, RateLimitPolicy

POLICY = RateLimitPolicy(action="listing_create", limit=3, window_seconds=3600)


class TestRateLimiter:
    """INCR + EXPIRE window semantics"""

    @pytest.mark.unit
    async def test_counts_within_window(self, fake_redis):
        limiter = RateLimiter(POLICY)
        assert [await limiter.hit("u1") for _ in range(3)] == [1, 2, 3]

    @pytest.mark.unit
    async def test_window_ttl_set_on_first_hit(self, fake_redis):
        await RateLimiter(POLICY).hit("u1")
        assert await fake_redis.ttl("ratelimit:listing_create:u1") == 3600

    @pytest.mark.unit
    async def test_fourth_hit_throttled(self, fake_redis):
        limiter = RateLimiter(POLICY)
        for _ in range(3):
            await limiter.hit("u1")

        with pytest.raises(ThrottledError) as exc_info:
            await limiter.hit("u1")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after_seconds == 3600
        assert exc_info.value.details["action"] == "listing_create"

    @pytest.mark.unit
    async def test_actors_are_isolated(self, fake_redis):
        limiter = RateLimiter(POLICY)
        for _ in range(3):
            await limiter.hit("u1")
        assert await limiter.hit("u2") == 1

    @pytest.mark.unit
    async def test_window_elapse_resets(self, fake_redis):
        limiter = RateLimiter(POLICY)
        for _ in range(3):
            await limiter.hit("u1")
        with pytest.raises(ThrottledError):
            await limiter.hit("u1")

        fake_redis.expire_now("ratelimit:listing_create:u1")
        assert await limiter.hit("u1") == 1

    @pytest.mark.unit
    async def test_lost_ttl_restarts_window(self, fake_redis):
        """A counter without TTL (crash between INCR and EXPIRE) gets one again"""
        key = "ratelimit:listing_create:u1"
        await fake_redis.set(key, "5")

        with pytest.raises(ThrottledError) as exc_info:
            await RateLimiter(POLICY).hit("u1")

        assert exc_info.value.retry_after_seconds == 3600
        assert await fake_redis.ttl(key) == 3600

    @pytest.mark.unit
    async def test_reset(self, fake_redis):
        limiter = RateLimiter(POLICY)
        for _ in range(3):
            await limiter.hit("u1")
        await limiter.reset("u1")
        assert await limiter.hit("u1") == 1

    @pytest.mark.unit
    async def test_redis_down_fails_closed(self):
        broken = AsyncMock()
        broken.incr.side_effect = RedisConnectionError("connection refused")

        async def _get_broken():
            return broken

        with patch("app.core.rate_limit.get_redis", _get_broken):
            with pytest.raises(DependencyError) as exc_info:
                await RateLimiter(POLICY).hit("u1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["service"] == "rate_limiter"
