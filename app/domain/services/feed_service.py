"""
Feed Service - home feed composition and home-page sections.

The random feed blends up to FEED_FEATURED_SLOTS promoted listings (by
recency) with a shuffled sample of organic listings. The sample is drawn
from the newest `remaining * FEED_OVERFETCH_FACTOR` candidates so the
shuffle has room to vary without scanning the table.
"""
import random
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.listing_query import active_unexpired
from app.db.listing_repository import ListingRepository
from app.db.models.area import Area
from app.db.models.marketplace_item import MarketplaceItem, ItemCondition

logger = get_logger(__name__)

SECTION_DEFAULT_LIMIT = 8


class FeedSortType(str, Enum):
    RANDOM = "random"
    MOST_VIEWED = "most_viewed"
    LOWEST_PRICE = "lowest_price"


class FeedSection(str, Enum):
    FRESH = "fresh"
    GOOD_AS_NEW = "good_as_new"
    NEARBY = "nearby"


def _recency(stmt):
    return stmt.order_by(
        MarketplaceItem.last_bump_at.desc(),
        MarketplaceItem.created_at.desc(),
        MarketplaceItem.id.desc(),
    )


def _public(now: datetime, *extra):
    return select(MarketplaceItem).where(and_(*active_unexpired(now), *extra))


class FeedService:
    """Home feed and section queries over active, unexpired listings"""

    def __init__(self, db: AsyncSession, rng: random.Random | None = None):
        self.repository = ListingRepository(db)
        self.db = db
        self.rng = rng or random.Random()

    async def get_home_feed(
        self,
        limit: int,
        sort_type: FeedSortType = FeedSortType.RANDOM,
        now: datetime | None = None,
    ) -> list[MarketplaceItem]:
        if limit <= 0:
            return []
        now = now or utcnow()
        sort_type = FeedSortType(sort_type)

        if sort_type == FeedSortType.MOST_VIEWED:
            stmt = _public(now).order_by(
                MarketplaceItem.view_count.desc(),
                MarketplaceItem.created_at.desc(),
                MarketplaceItem.id.desc(),
            )
            return await self.repository.fetch(stmt.limit(limit))

        if sort_type == FeedSortType.LOWEST_PRICE:
            stmt = _public(now).order_by(
                MarketplaceItem.price.asc(),
                MarketplaceItem.created_at.desc(),
                MarketplaceItem.id.desc(),
            )
            return await self.repository.fetch(stmt.limit(limit))

        return await self._random_feed(limit, now)

    async def _random_feed(self, limit: int, now: datetime) -> list[MarketplaceItem]:
        featured_slots = min(settings.FEED_FEATURED_SLOTS, limit)
        featured: list[MarketplaceItem] = []
        if featured_slots > 0:
            featured = await self.repository.fetch(
                _recency(_public(now, MarketplaceItem.is_featured.is_(True))).limit(featured_slots)
            )
        if len(featured) >= limit:
            return featured[:limit]

        remaining = limit - len(featured)
        pool_size = remaining * settings.FEED_OVERFETCH_FACTOR
        candidates = await self.repository.fetch(
            _recency(_public(now, MarketplaceItem.is_featured.is_(False))).limit(pool_size)
        )
        # random.shuffle is an in-place Fisher-Yates
        self.rng.shuffle(candidates)

        logger.debug(
            "Home feed composed",
            extra_data={
                "limit": limit,
                "featured": len(featured),
                "pool": len(candidates),
            },
        )
        return featured + candidates[:remaining]

    # ---- home sections ----

    async def get_section(
        self,
        section: FeedSection,
        limit: int = SECTION_DEFAULT_LIMIT,
        area_id: Optional[int] = None,
        now: datetime | None = None,
    ) -> list[MarketplaceItem]:
        now = now or utcnow()
        section = FeedSection(section)
        if limit <= 0:
            return []

        if section == FeedSection.FRESH:
            stmt = _public(now).order_by(MarketplaceItem.created_at.desc(), MarketplaceItem.id.desc())
            return await self.repository.fetch(stmt.limit(limit))

        if section == FeedSection.GOOD_AS_NEW:
            stmt = _public(
                now,
                MarketplaceItem.condition.in_([ItemCondition.NEW, ItemCondition.LIKE_NEW]),
            ).order_by(MarketplaceItem.created_at.desc(), MarketplaceItem.id.desc())
            return await self.repository.fetch(stmt.limit(limit))

        return await self.nearby(area_id, limit, now)

    async def nearby(
        self,
        area_id: Optional[int],
        limit: int = SECTION_DEFAULT_LIMIT,
        now: datetime | None = None,
    ) -> list[MarketplaceItem]:
        """Exact area first, then sibling areas of the same district"""
        now = now or utcnow()

        def newest(stmt):
            return stmt.order_by(MarketplaceItem.created_at.desc(), MarketplaceItem.id.desc())

        if area_id is None:
            return await self.repository.fetch(newest(_public(now)).limit(limit))

        results = await self.repository.fetch(
            newest(_public(now, MarketplaceItem.area_id == area_id)).limit(limit)
        )
        if len(results) >= limit:
            return results

        district_id = (await self.db.execute(
            select(Area.district_id).where(Area.id == area_id)
        )).scalar_one_or_none()
        if district_id is None:
            return results

        sibling_ids = select(Area.id).where(Area.district_id == district_id, Area.id != area_id)
        neighbours = await self.repository.fetch(
            newest(_public(now, MarketplaceItem.area_id.in_(sibling_ids))).limit(limit - len(results))
        )
        return results + neighbours
