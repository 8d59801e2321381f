"""
Read caches for marketplace listings.

Two layers:
- TaggedCache: cross-request Redis cache. Keys are a namespace plus the
  SHA-256 of the canonical JSON of the read parameters. Every key is added
  to one or more tag sets so a mutation can drop all reads it affects.
  Redis failures fail open: the read goes to the database and is logged.
- RequestMemo: per-request dict held in a ContextVar. Deduplicates
  identical repository reads inside one request, then disappears.
"""
import hashlib
import json
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Iterable, Iterator

from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

TAG_MARKETPLACE = "marketplace"
TAG_HOME_FEED = "marketplace:home-feed"

_CACHE_ERRORS = (RedisError, ConnectionError, TimeoutError, OSError, ValueError, TypeError)


def listing_tag(listing_id: str) -> str:
    return f"marketplace:listing:{listing_id}"


def build_cache_key(namespace: str, params: dict[str, Any]) -> str:
    """Stable key: namespace + sha256 of the params as sorted JSON"""
    canonical = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{settings.CACHE_KEY_PREFIX}:{namespace}:{digest}"


def _tag_key(tag: str) -> str:
    return f"{settings.CACHE_KEY_PREFIX}:tag:{tag}"


class TaggedCache:
    """Redis cache with tag-set invalidation"""

    async def get(self, key: str) -> Any | None:
        try:
            redis = await get_redis()
            data = await redis.get(key)
            if data is None:
                return None
            return json.loads(data)
        except _CACHE_ERRORS as e:
            logger.warning("Cache read failed", extra_data={"key": key, "error": str(e)})
            return None

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> bool:
        if ttl <= 0:
            return False
        try:
            serialized = json.dumps(value, default=str)
            redis = await get_redis()
            await redis.setex(key, ttl, serialized)
            for tag in tags:
                tag_key = _tag_key(tag)
                await redis.sadd(tag_key, key)
                # tag sets only need to outlive the entries they index
                await redis.expire(tag_key, max(ttl, settings.BROWSE_CACHE_TTL_SECONDS))
            return True
        except _CACHE_ERRORS as e:
            logger.warning("Cache write failed", extra_data={"key": key, "error": str(e)})
            return False

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: int,
        tags: Iterable[str] = (),
        ttl_for: Callable[[Any], int] | None = None,
    ) -> Any:
        """Read-through. ttl_for, when given, derives the TTL from the computed value."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        if ttl_for is not None:
            ttl = ttl_for(value)
        await self.set(key, value, ttl, tags)
        return value

    async def invalidate_tags(self, *tags: str) -> int:
        """Delete every key registered under the tags. Returns deleted key count."""
        deleted = 0
        try:
            redis = await get_redis()
            for tag in tags:
                tag_key = _tag_key(tag)
                keys = await redis.smembers(tag_key)
                if keys:
                    await redis.delete(*keys)
                    deleted += len(keys)
                await redis.delete(tag_key)
        except _CACHE_ERRORS as e:
            logger.error(
                "Cache invalidation failed",
                extra_data={"tags": list(tags), "error": str(e)},
                exc_info=True,
            )
            return deleted
        logger.debug("Cache invalidated", extra_data={"tags": list(tags), "deleted": deleted})
        return deleted


_request_memo_var: ContextVar[dict[str, Any] | None] = ContextVar("request_memo", default=None)


class RequestMemo:
    """Within-request memoization of repository reads"""

    @staticmethod
    @contextmanager
    def scope() -> Iterator[dict[str, Any]]:
        """Open a fresh memo for the current request"""
        memo: dict[str, Any] = {}
        token = _request_memo_var.set(memo)
        try:
            yield memo
        finally:
            _request_memo_var.reset(token)

    @staticmethod
    async def get_or_compute(key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        memo = _request_memo_var.get()
        if memo is None:
            # no request scope (worker, script) - nothing to share
            return await compute()
        if key in memo:
            return memo[key]
        value = await compute()
        memo[key] = value
        return value

    @staticmethod
    def clear() -> None:
        memo = _request_memo_var.get()
        if memo is not None:
            memo.clear()


listing_cache = TaggedCache()


async def invalidate_listing_reads(listing_id: str | None = None) -> None:
    """Invalidation hook run after every listing mutation commits"""
    tags = [TAG_MARKETPLACE, TAG_HOME_FEED]
    if listing_id:
        tags.append(listing_tag(listing_id))
    RequestMemo.clear()
    await listing_cache.invalidate_tags(*tags)
