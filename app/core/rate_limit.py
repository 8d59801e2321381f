"""
Per-actor fixed-window rate limiter on Redis.

The counter is incremented with INCR (atomic per key) and the window TTL is
set when the count is 1, so the window resets when the key expires.
Redis failures raise DependencyError: the limiter fails closed.
"""
from dataclasses import dataclass

from redis.exceptions import RedisError

from app.core.exceptions import DependencyError, ThrottledError
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

_RATE_LIMIT_KEY_PREFIX = "ratelimit"


@dataclass(frozen=True)
class RateLimitPolicy:
    action: str
    limit: int
    window_seconds: int


class RateLimiter:
    """Counts actions per (action, actor) window"""

    def __init__(self, policy: RateLimitPolicy):
        self.policy = policy

    def _key(self, actor_id: str) -> str:
        return f"{_RATE_LIMIT_KEY_PREFIX}:{self.policy.action}:{actor_id}"

    async def hit(self, actor_id: str) -> int:
        """
        Count one action for the actor. Returns the count inside the window.

        Raises ThrottledError when count > limit, DependencyError when Redis is down.
        """
        key = self._key(actor_id)
        try:
            redis = await get_redis()
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, self.policy.window_seconds)
            elif count > self.policy.limit:
                ttl = await redis.ttl(key)
                if ttl is None or ttl < 0:
                    # key lost its TTL (crash between INCR and EXPIRE) - restart the window
                    await redis.expire(key, self.policy.window_seconds)
                    ttl = self.policy.window_seconds
        except (RedisError, ConnectionError, TimeoutError, OSError) as e:
            logger.error(
                "Rate limiter unavailable",
                extra_data={"action": self.policy.action, "actor_id": actor_id, "error": str(e)},
                exc_info=True,
            )
            raise DependencyError("rate_limiter") from e

        if count > self.policy.limit:
            logger.warning(
                "Rate limit exceeded",
                extra_data={
                    "action": self.policy.action,
                    "actor_id": actor_id,
                    "count": count,
                    "limit": self.policy.limit,
                    "window_seconds": self.policy.window_seconds,
                },
            )
            raise ThrottledError(self.policy.action, retry_after_seconds=int(ttl))
        return count

    async def reset(self, actor_id: str) -> None:
        """Drop the actor's window (admin tooling and tests)"""
        redis = await get_redis()
        await redis.delete(self._key(actor_id))
