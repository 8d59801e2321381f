"""
Listing Read Service - cached read paths.

Browse, home feed, sections and public detail go through the tagged Redis
cache; repository lookups repeated within one request go through the
request memo. Cached values are plain dicts (the public listing shape).
"""
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.cache import (
    TAG_HOME_FEED,
    TAG_MARKETPLACE,
    RequestMemo,
    TaggedCache,
    build_cache_key,
    listing_cache,
    listing_tag,
)
from app.core.config import settings
from app.core.exceptions import ListingNotFoundError
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.listing_query import ListingFilters
from app.db.listing_repository import ListingRepository
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus
from app.domain.services.feed_service import FeedSection, FeedService, FeedSortType

logger = get_logger(__name__)

SELLER_LISTINGS_ON_DETAIL = 4

# statuses anyone may open by slug; the rest only for the seller or an admin
PUBLIC_DETAIL_STATUSES = frozenset({ListingStatus.ACTIVE, ListingStatus.SOLD})


def clamp(value: Optional[int], default: int, maximum: int, minimum: int = 1) -> int:
    if value is None:
        return default
    return max(minimum, min(value, maximum))


def _serialize(items: list[MarketplaceItem]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]


def expiry_capped_ttl(ttl: int, items: Iterable[dict[str, Any]], now: datetime | None = None) -> int:
    """Cache TTL capped at the first soft expiry among the serialized active listings"""
    now = now or utcnow()
    for item in items:
        expires_at = item.get("expires_at")
        if not expires_at or item.get("status") != ListingStatus.ACTIVE.value:
            continue
        remaining = int((datetime.fromisoformat(expires_at) - now).total_seconds())
        ttl = min(ttl, remaining)
    return max(ttl, 0)


class ListingReadService:
    """Read entry points for the HTTP layer"""

    def __init__(
        self,
        db: AsyncSession,
        cache: TaggedCache | None = None,
        feed: FeedService | None = None,
    ):
        self.repository = ListingRepository(db)
        self.cache = cache or listing_cache
        self.feed = feed or FeedService(db)

    async def query_listings(
        self,
        filters: ListingFilters,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> dict[str, Any]:
        limit = clamp(limit, settings.BROWSE_DEFAULT_PAGE_SIZE, settings.BROWSE_MAX_PAGE_SIZE)
        offset = max(offset or 0, 0)
        key = build_cache_key("browse", {
            "filters": filters.cache_params(),
            "limit": limit,
            "offset": offset,
        })

        async def compute() -> dict[str, Any]:
            items, total = await self.repository.query(filters, limit, offset)
            return {"items": _serialize(items), "count": total}

        return await self.cache.get_or_compute(
            key,
            compute,
            settings.BROWSE_CACHE_TTL_SECONDS,
            tags=[TAG_MARKETPLACE],
            ttl_for=lambda page: expiry_capped_ttl(settings.BROWSE_CACHE_TTL_SECONDS, page["items"]),
        )

    async def home_feed(
        self,
        limit: Optional[int] = None,
        sort_type: FeedSortType = FeedSortType.RANDOM,
    ) -> list[dict[str, Any]]:
        limit = clamp(limit, settings.HOME_FEED_DEFAULT_LIMIT, settings.HOME_FEED_MAX_LIMIT)
        sort_type = FeedSortType(sort_type)
        key = build_cache_key("home-feed", {"limit": limit, "sort_type": sort_type.value})

        async def compute() -> list[dict[str, Any]]:
            return _serialize(await self.feed.get_home_feed(limit, sort_type))

        return await self.cache.get_or_compute(
            key,
            compute,
            settings.HOME_FEED_CACHE_TTL_SECONDS,
            tags=[TAG_MARKETPLACE, TAG_HOME_FEED],
            ttl_for=lambda items: expiry_capped_ttl(settings.HOME_FEED_CACHE_TTL_SECONDS, items),
        )

    async def section(
        self,
        section: FeedSection,
        limit: Optional[int] = None,
        area_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        section = FeedSection(section)
        limit = clamp(limit, settings.HOME_FEED_DEFAULT_LIMIT, settings.HOME_FEED_MAX_LIMIT)
        key = build_cache_key("section", {"section": section.value, "limit": limit, "area_id": area_id})

        async def compute() -> list[dict[str, Any]]:
            return _serialize(await self.feed.get_section(section, limit, area_id))

        return await self.cache.get_or_compute(
            key,
            compute,
            settings.HOME_FEED_CACHE_TTL_SECONDS,
            tags=[TAG_MARKETPLACE, TAG_HOME_FEED],
            ttl_for=lambda items: expiry_capped_ttl(settings.HOME_FEED_CACHE_TTL_SECONDS, items),
        )

    # ---- detail ----

    async def get_listing(self, slug: str) -> Optional[MarketplaceItem]:
        """Slug (or id) lookup shared by every reader in the current request"""
        return await RequestMemo.get_or_compute(
            f"listing:slug:{slug}",
            lambda: self.repository.get_by_slug(slug),
        )

    async def seller_listings(self, seller_id: str, exclude_id: str | None = None, limit: int = 20) -> list[MarketplaceItem]:
        return await RequestMemo.get_or_compute(
            f"listing:seller:{seller_id}:{exclude_id}:{limit}",
            lambda: self.repository.list_public_by_seller(seller_id, limit, exclude_id),
        )

    async def listing_detail(self, slug: str, viewer: Actor | None = None) -> dict[str, Any]:
        """
        Public detail plus a few more listings from the same seller.

        Pending, rejected and removed listings are only visible to their
        seller and administrators, and those views bypass the cache.
        """
        key = build_cache_key("detail", {"slug": slug})
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        item = await self.get_listing(slug)
        if item is None:
            raise ListingNotFoundError(slug)

        if not self._is_public(item):
            if viewer is None or (viewer.id != item.seller_id and not viewer.is_admin):
                raise ListingNotFoundError(slug)
            return await self._detail_payload(item)

        payload = await self._detail_payload(item)
        await self.cache.set(
            key,
            payload,
            expiry_capped_ttl(
                settings.DETAIL_CACHE_TTL_SECONDS, [payload["item"], *payload["seller_listings"]]
            ),
            tags=[TAG_MARKETPLACE, listing_tag(item.id)],
        )
        return payload

    async def _detail_payload(self, item: MarketplaceItem) -> dict[str, Any]:
        more = await self.seller_listings(item.seller_id, exclude_id=item.id, limit=SELLER_LISTINGS_ON_DETAIL)
        return {"item": item.to_dict(), "seller_listings": _serialize(more)}

    @staticmethod
    def _is_public(item: MarketplaceItem) -> bool:
        if item.status not in PUBLIC_DETAIL_STATUSES:
            return False
        if item.status == ListingStatus.ACTIVE and item.expires_at is not None:
            return item.expires_at > utcnow()
        return True
